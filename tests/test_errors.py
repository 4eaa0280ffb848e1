"""Tests for error rendering."""
import logging

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from kanban_core import tickets
from kanban_core.api.main import app
from kanban_core.errors import INTERNAL_ERROR_MESSAGE, sanitize_server_error


class TestSanitize:
    def test_plain_message_passes(self):
        assert sanitize_server_error("Counter update failed") == "Counter update failed"

    def test_leaky_messages_are_replaced(self):
        for message in (
            "(psycopg.errors.UniqueViolation) duplicate key",
            "[SQL: UPDATE tickets SET ...]",
            'Traceback (most recent call last):\n  File "x.py"',
            "",
            None,
        ):
            assert sanitize_server_error(message) == INTERNAL_ERROR_MESSAGE


class TestErrorResponses:
    def test_unknown_api_route(self, client):
        for method in ("GET", "POST", "DELETE"):
            response = client.request(method, "/api/nope/at/all")
            assert response.status_code == 404
            assert response.json() == {"error": "Not found"}

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_malformed_json(self, client, agent_headers):
        response = client.post(
            "/api/tickets",
            content=b"{not json",
            headers={**agent_headers, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request body"}

    def test_query_validation_names_field(self, client, agent_headers):
        response = client.get("/api/tickets", params={"limit": "0"}, headers=agent_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid limit"}

    def test_database_error_is_sanitized(self, client, agent_headers, monkeypatch, caplog):
        def fail(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        monkeypatch.setattr(tickets, "list_tickets", fail)
        with caplog.at_level(logging.ERROR, logger="kanban-core.api"):
            response = client.get("/api/tickets", headers=agent_headers)

        assert response.status_code == 500
        assert response.json() == {"error": INTERNAL_ERROR_MESSAGE}
        assert "database is locked" in caplog.text

    def test_unhandled_exception(self, client, agent_headers, monkeypatch):
        def fail(*args, **kwargs):
            raise RuntimeError("connection reset by peer")

        monkeypatch.setattr(tickets, "list_tickets", fail)
        unsafe_client = TestClient(app, raise_server_exceptions=False)
        response = unsafe_client.get("/api/tickets", headers=agent_headers)

        assert response.status_code == 500
        assert response.json() == {"error": INTERNAL_ERROR_MESSAGE}
