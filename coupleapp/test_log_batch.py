"""
Tests for atomic log batch ingestion.

Tests cover:
- Valid batches are saved in full
- One invalid entry anywhere rejects the whole batch
- A storage failure part way through leaves no rows behind
- POST /api/logs and GET /api/logs
"""

import pytest
from sqlalchemy import text

from coupleapp.errors import StorageError, ValidationError
from coupleapp.log_batch import LogBatchCommitter
from coupleapp.schemas import LogEntryIn
from coupleapp.storage import count_logs


def make_entry(n: int, **overrides) -> dict:
    entry = {
        "timestamp": f"2024-01-01T00:00:{n:02d}Z",
        "level": "INFO",
        "user": "alice",
        "message": f"event {n}",
    }
    entry.update(overrides)
    return entry


def log_count(store) -> int:
    with store.session() as db:
        return count_logs(db)


@pytest.fixture
def committer(store):
    return LogBatchCommitter(store)


class TestCommitBatch:
    """Test LogBatchCommitter directly against the store."""

    def test_saves_every_entry(self, store, committer):
        result = committer.commit_batch([make_entry(i) for i in range(5)])

        assert result.saved_count == 5
        assert log_count(store) == 5

    def test_accepts_model_instances(self, store, committer):
        result = committer.commit_batch([LogEntryIn(**make_entry(1))])
        assert result.saved_count == 1

    def test_resubmission_duplicates_rows(self, store, committer):
        batch = [make_entry(1), make_entry(2)]
        committer.commit_batch(batch)
        committer.commit_batch(batch)
        assert log_count(store) == 4

    def test_empty_batch_rejected(self, store, committer):
        with pytest.raises(ValidationError):
            committer.commit_batch([])
        assert log_count(store) == 0

    def test_non_list_rejected(self, committer):
        with pytest.raises(ValidationError):
            committer.commit_batch("not a batch")

    @pytest.mark.parametrize("position", [0, 2, 4])
    @pytest.mark.parametrize("field", ["timestamp", "level", "user", "message"])
    def test_one_missing_field_rejects_batch(self, store, committer, position, field):
        committer.commit_batch([make_entry(99)])
        batch = [make_entry(i) for i in range(4)]
        bad = make_entry(50)
        del bad[field]
        batch.insert(position, bad)

        with pytest.raises(ValidationError) as exc_info:
            committer.commit_batch(batch)

        problems = exc_info.value.details["invalid_entries"]
        assert problems == [{"index": position, "fields": [field], "message": "missing or empty fields"}]
        assert log_count(store) == 1

    def test_blank_field_rejected(self, store, committer):
        with pytest.raises(ValidationError):
            committer.commit_batch([make_entry(1), make_entry(2, level="   ")])
        assert log_count(store) == 0

    def test_non_object_entry_rejected(self, store, committer):
        with pytest.raises(ValidationError) as exc_info:
            committer.commit_batch([make_entry(1), "oops"])
        assert exc_info.value.details["invalid_entries"][0]["index"] == 1
        assert log_count(store) == 0

    def test_storage_failure_rolls_back_whole_batch(self, store, committer):
        committer.commit_batch([make_entry(0)])
        with store.engine.begin() as conn:
            conn.execute(text(
                "CREATE TRIGGER reject_boom BEFORE INSERT ON logs "
                "WHEN NEW.message = 'boom' "
                "BEGIN SELECT RAISE(ABORT, 'simulated write failure'); END"
            ))

        batch = [make_entry(1), make_entry(2), make_entry(3, message="boom"), make_entry(4)]
        with pytest.raises(StorageError):
            committer.commit_batch(batch)

        assert log_count(store) == 1

    def test_lock_timeout_rolls_back_whole_batch(self, store, write_locked):
        with pytest.raises(StorageError):
            LogBatchCommitter(write_locked).commit_batch([make_entry(i) for i in range(3)])

        assert log_count(store) == 0


class TestLogsEndpoint:
    """Test POST/GET /api/logs."""

    def test_post_list(self, client):
        response = client.post("/api/logs", json=[make_entry(1), make_entry(2)])

        assert response.status_code == 201
        assert response.json() == {"saved": 2, "success": True}

    def test_post_single_object(self, client):
        response = client.post("/api/logs", json=make_entry(1))

        assert response.status_code == 201
        assert response.json()["saved"] == 1

    def test_invalid_entry_returns_validation_error(self, client):
        bad = make_entry(2)
        del bad["user"]
        response = client.post("/api/logs", json=[make_entry(1), bad])

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["invalid_entries"][0]["fields"] == ["user"]
        assert client.get("/api/logs").json() == []

    def test_empty_list_rejected(self, client):
        response = client.post("/api/logs", json=[])
        assert response.status_code == 422

    def test_storage_failure_returns_storage_error(self, client):
        store = client.app.state.store
        with store.engine.begin() as conn:
            conn.execute(text(
                "CREATE TRIGGER reject_boom BEFORE INSERT ON logs "
                "WHEN NEW.message = 'boom' "
                "BEGIN SELECT RAISE(ABORT, 'simulated write failure'); END"
            ))

        response = client.post("/api/logs", json=[make_entry(1), make_entry(2, message="boom")])

        assert response.status_code == 500
        assert response.json()["code"] == "STORAGE_ERROR"
        assert client.get("/api/logs").json() == []

    def test_get_newest_first_with_limit(self, client):
        client.post("/api/logs", json=[make_entry(i) for i in range(5)])

        response = client.get("/api/logs", params={"limit": 3})

        assert response.status_code == 200
        data = response.json()
        assert [entry["message"] for entry in data] == ["event 4", "event 3", "event 2"]

    def test_limit_out_of_range_rejected(self, client):
        assert client.get("/api/logs", params={"limit": 0}).status_code == 422
