"""Tests for the AI proxy HTTP server.

Runs a real server on an ephemeral port with a mocked interpreter.
"""

import threading
from http.client import HTTPConnection
from unittest.mock import MagicMock, patch

import httpx
import pytest

from mailsweep.errors import ConfigurationError, ParseError
from mailsweep.google.gmail import ActionKind
from mailsweep.proxy.server import MAX_BODY_BYTES, create_server
from mailsweep.services.interpreter import CommandInterpreter
from mailsweep.services.schemas import ParsedCommand, ReplySuggestion


@pytest.fixture
def interpreter():
    return MagicMock(spec=CommandInterpreter)


@pytest.fixture
def base_url(interpreter):
    server = create_server("127.0.0.1", 0, interpreter=interpreter)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    try:
        yield f"http://{host}:{port}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.fixture
def http(base_url):
    with httpx.Client(base_url=base_url, timeout=5.0) as client:
        yield client


# =============================================================================
# /ai/parse
# =============================================================================


class TestParseEndpoint:
    """Tests for POST /ai/parse."""

    def test_returns_parsed_command(self, http, interpreter):
        interpreter.parse_command.return_value = ParsedCommand(
            action=ActionKind.DELETE, query="category:promotions older_than:6m"
        )

        response = http.post(
            "/ai/parse", json={"command": "Delete promotional emails older than 6 months"}
        )

        assert response.status_code == 200
        assert response.json() == {"action": "delete", "query": "category:promotions older_than:6m"}
        interpreter.parse_command.assert_called_once_with(
            "Delete promotional emails older than 6 months"
        )

    def test_label_included_when_present(self, http, interpreter):
        interpreter.parse_command.return_value = ParsedCommand(
            action=ActionKind.LABEL, query="from:amazon.com", label="Receipts"
        )

        response = http.post("/ai/parse", json={"command": "Label receipts"})

        assert response.json()["label"] == "Receipts"

    def test_missing_command(self, http, interpreter):
        response = http.post("/ai/parse", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Command is required"}
        interpreter.parse_command.assert_not_called()

    def test_blank_command(self, http):
        response = http.post("/ai/parse", json={"command": "   "})
        assert response.status_code == 400

    def test_malformed_json(self, http):
        response = http.post(
            "/ai/parse", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    def test_non_object_body(self, http):
        response = http.post("/ai/parse", json=["delete"])
        assert response.status_code == 400

    def test_body_too_large(self, base_url):
        # Headers only; the server must refuse before reading the body
        parsed = httpx.URL(base_url)
        conn = HTTPConnection(parsed.host, parsed.port, timeout=5)
        try:
            conn.putrequest("POST", "/ai/parse")
            conn.putheader("Content-Type", "application/json")
            conn.putheader("Content-Length", str(MAX_BODY_BYTES + 1))
            conn.endheaders()
            response = conn.getresponse()
            assert response.status == 413
        finally:
            conn.close()

    def test_invalid_model_output(self, http, interpreter):
        interpreter.parse_command.side_effect = ParseError("AI returned invalid JSON")

        response = http.post("/ai/parse", json={"command": "Do something"})

        assert response.status_code == 500
        assert response.json() == {
            "error": "Failed to parse command",
            "message": "AI returned invalid JSON",
        }

    def test_upstream_failure(self, http, interpreter):
        interpreter.parse_command.side_effect = RuntimeError("upstream down")

        response = http.post("/ai/parse", json={"command": "Archive all"})

        assert response.status_code == 500
        assert response.json()["message"] == "upstream down"


# =============================================================================
# /ai/suggestReplies
# =============================================================================


class TestSuggestRepliesEndpoint:
    """Tests for POST /ai/suggestReplies."""

    MESSAGES = [
        {"id": "m1", "from": "Jane <jane@example.com>", "subject": "Hello", "snippet": "Hi"},
        {"id": "m2", "from": "news@example.com", "subject": "Weekly", "snippet": "Top stories"},
    ]

    def test_returns_suggestions(self, http, interpreter):
        interpreter.suggest_replies.return_value = [
            ReplySuggestion(text="Thanks, noted."),
            ReplySuggestion(text="Please unsubscribe me."),
        ]

        response = http.post(
            "/ai/suggestReplies",
            json={
                "command": "Archive newsletters",
                "parsed": {"action": "archive", "query": "category:updates"},
                "messages": self.MESSAGES,
            },
        )

        assert response.status_code == 200
        assert response.json() == {
            "suggestions": [{"text": "Thanks, noted."}, {"text": "Please unsubscribe me."}]
        }
        interpreter.suggest_replies.assert_called_once_with(
            self.MESSAGES, command="Archive newsletters"
        )

    def test_missing_messages(self, http, interpreter):
        response = http.post("/ai/suggestReplies", json={"command": "x"})

        assert response.status_code == 400
        assert response.json() == {"error": "Messages array is required"}
        interpreter.suggest_replies.assert_not_called()

    def test_empty_messages(self, http):
        response = http.post("/ai/suggestReplies", json={"messages": []})
        assert response.status_code == 400

    def test_messages_not_objects(self, http):
        response = http.post("/ai/suggestReplies", json={"messages": ["m1"]})
        assert response.status_code == 400

    def test_missing_command_passes_none(self, http, interpreter):
        interpreter.suggest_replies.return_value = []

        response = http.post("/ai/suggestReplies", json={"messages": self.MESSAGES})

        assert response.status_code == 200
        interpreter.suggest_replies.assert_called_once_with(self.MESSAGES, command=None)

    def test_generation_failure(self, http, interpreter):
        interpreter.suggest_replies.side_effect = ParseError("AI returned invalid JSON")

        response = http.post("/ai/suggestReplies", json={"messages": self.MESSAGES})

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to generate suggestions"


# =============================================================================
# Misc routes
# =============================================================================


class TestRoutes:
    """Tests for health, CORS and unknown paths."""

    def test_health(self, http):
        response = http.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "timestamp" in data

    def test_cors_headers_on_json_responses(self, http):
        response = http.get("/health")
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    def test_preflight(self, http):
        response = http.options("/ai/parse")

        assert response.status_code == 204
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "POST" in response.headers["Access-Control-Allow-Methods"]

    def test_unknown_post_path(self, http):
        assert http.post("/ai/unknown", json={}).status_code == 404

    def test_unknown_get_path(self, http):
        assert http.get("/nope").status_code == 404


class TestCreateServer:
    def test_missing_credentials_fail_at_startup(self):
        with (
            patch("mailsweep.config.settings.azure_openai_endpoint", ""),
            patch("mailsweep.config.settings.azure_openai_api_key", ""),
        ):
            with pytest.raises(ConfigurationError):
                create_server("127.0.0.1", 0)
