"""
Tests for the /api/messages endpoints.

Tests cover:
- Creating messages and the broadcast default
- Required field validation
- All-messages and conversation listings
- Per-user listing with broadcasts
- Request id header
"""

import pytest


def create_message(client, sender: str, content: str, timestamp: str, receiver: str = None) -> dict:
    """Helper to create a message via the API."""
    body = {"sender": sender, "content": content, "timestamp": timestamp}
    if receiver is not None:
        body["receiver"] = receiver

    response = client.post("/api/messages", json=body)
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def seeded_client(client):
    """Client with a small conversation plus a broadcast and a retried send."""
    messages = [
        ("alice", "hello bob", "2024-01-01T09:00:00Z", "bob"),
        ("bob", "hello alice", "2024-01-01T09:01:00Z", "alice"),
        ("alice", "dinner?", "2024-01-01T09:02:00Z", "bob"),
        ("alice", "dinner?", "2024-01-01T09:02:00Z", "bob"),  # retried send
        ("carol", "team lunch", "2024-01-01T09:03:00Z", None),  # broadcast
        ("carol", "hi alice", "2024-01-01T09:04:00Z", "alice"),
    ]
    for sender, content, ts, receiver in messages:
        create_message(client, sender, content, ts, receiver)
    return client


class TestCreateMessage:
    """Test POST /api/messages."""

    def test_create_returns_row(self, client):
        body = create_message(client, "alice", "hi", "2024-01-01T00:00:00Z", "bob")

        assert body["id"] >= 1
        assert body["sender"] == "alice"
        assert body["receiver"] == "bob"
        assert body["content"] == "hi"
        assert body["timestamp"] == "2024-01-01T00:00:00Z"

    def test_receiver_defaults_to_all(self, client):
        body = create_message(client, "alice", "hi everyone", "2024-01-01T00:00:00Z")
        assert body["receiver"] == "all"

    def test_ids_increase(self, client):
        first = create_message(client, "alice", "one", "2024-01-01T00:00:00Z", "bob")
        second = create_message(client, "alice", "one", "2024-01-01T00:00:00Z", "bob")
        assert second["id"] > first["id"]

    @pytest.mark.parametrize("missing", ["sender", "content", "timestamp"])
    def test_missing_required_field(self, client, missing):
        body = {"sender": "alice", "content": "hi", "timestamp": "2024-01-01T00:00:00Z"}
        del body[missing]

        response = client.post("/api/messages", json=body)

        assert response.status_code == 422
        data = response.json()
        assert data["code"] == "VALIDATION_ERROR"
        assert data["details"]["errors"][0]["field"] == missing

    def test_empty_content_rejected(self, client):
        response = client.post(
            "/api/messages",
            json={"sender": "alice", "content": "", "timestamp": "2024-01-01T00:00:00Z"},
        )
        assert response.status_code == 422


class TestListMessages:
    """Test GET /api/messages."""

    def test_empty_database(self, client):
        response = client.get("/api/messages")

        assert response.status_code == 200
        assert response.json() == []

    def test_all_messages_deduplicated_newest_first(self, seeded_client):
        response = seeded_client.get("/api/messages")

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 5
        assert [m["content"] for m in data] == [
            "hi alice",
            "team lunch",
            "dinner?",
            "hello alice",
            "hello bob",
        ]

    def test_conversation_oldest_first(self, seeded_client):
        response = seeded_client.get("/api/messages", params={"user1": "bob", "user2": "alice"})

        assert response.status_code == 200
        data = response.json()
        assert [m["content"] for m in data] == ["hello bob", "hello alice", "dinner?"]

    def test_conversation_keeps_first_of_retried_send(self, seeded_client):
        everything = seeded_client.get("/api/messages").json()
        dinner = [m for m in everything if m["content"] == "dinner?"]
        assert len(dinner) == 1

        duplicates = seeded_client.get("/api/messages/duplicates").json()
        assert duplicates[0]["keep_id"] == dinner[0]["id"]

    def test_single_party_lists_everything(self, seeded_client):
        response = seeded_client.get("/api/messages", params={"user1": "alice"})
        assert len(response.json()) == 5

    def test_response_includes_request_id_header(self, seeded_client):
        response = seeded_client.get("/api/messages")

        assert response.status_code == 200
        assert "x-request-id" in response.headers


class TestUserMessages:
    """Test GET /api/messages/{username}."""

    def test_includes_broadcasts(self, seeded_client):
        response = seeded_client.get("/api/messages/bob")

        assert response.status_code == 200
        contents = [m["content"] for m in response.json()]
        assert contents == ["team lunch", "dinner?", "hello alice", "hello bob"]

    def test_unknown_user_sees_only_broadcasts(self, seeded_client):
        response = seeded_client.get("/api/messages/dave")
        assert [m["content"] for m in response.json()] == ["team lunch"]


class TestPurgeEndpoint:
    def test_purge_reports_removed(self, seeded_client):
        response = seeded_client.post("/api/messages/purge-duplicates")

        assert response.status_code == 200
        assert response.json() == {"removed": 1}
        assert seeded_client.get("/api/messages/duplicates").json() == []
