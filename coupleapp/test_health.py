"""
Tests for health probes, metrics and the record store lifecycle.
"""

from datetime import date

import pytest

from coupleapp.errors import StorageError
from coupleapp.storage import RecordStore
from coupleapp.utils import parse_calendar_date


class TestHealth:
    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready_without_schema(self, client):
        client.app.state.store.drop_all()

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
        client.app.state.store.init_db()


class TestMetrics:
    def test_exposes_counters(self, client):
        client.get("/health/live")
        client.post("/api/logs", json=[{"timestamp": "t", "level": "INFO", "user": "u", "message": "m"}])

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert 'log_batch_outcomes_total{result="saved"}' in response.text


class TestRecordStore:
    def test_transaction_rolls_back_on_error(self, store):
        from coupleapp.models import LogEntry
        from coupleapp.storage import count_logs

        with pytest.raises(RuntimeError):
            with store.transaction() as db:
                db.add(LogEntry(timestamp="t", level="INFO", user="u", message="m"))
                db.flush()
                raise RuntimeError("abort")

        with store.session() as db:
            assert count_logs(db) == 0

    def test_read_failure_is_storage_error(self, store):
        from coupleapp.storage import count_logs

        store.drop_all()
        with pytest.raises(StorageError):
            with store.session() as db:
                count_logs(db)
        store.init_db()

    def test_check_health(self, store):
        assert store.check_health() is True

    def test_unreachable_database(self, tmp_path):
        missing_dir = tmp_path / "missing" / "db.sqlite"
        assert RecordStore(f"sqlite:///{missing_dir}").check_health() is False


class TestCalendarDates:
    def test_accepts_zero_padded_date(self):
        assert parse_calendar_date("2024-03-10") == date(2024, 3, 10)

    @pytest.mark.parametrize("value", ["20240310", "2024-W10-1", "2024-3-10", " 2024-03-10", "2024-03-10T00:00"])
    def test_rejects_other_iso_forms(self, value):
        with pytest.raises(ValueError):
            parse_calendar_date(value)
