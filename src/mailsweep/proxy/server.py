"""HTTP proxy between the cleanup client and the LLM provider.

Endpoints (JSON in, JSON out, CORS open):
    POST /ai/parse           {command}                    -> {action, query, label?}
    POST /ai/suggestReplies  {command, parsed, messages}  -> {suggestions: [{text}]}
    GET  /health                                          -> {status, timestamp}

The upstream credential is checked once when the server is created, so a
misconfigured proxy fails at startup instead of on the first request.
"""

import json
import logging
from datetime import UTC, datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from mailsweep.errors import ParseError
from mailsweep.sentry import capture_exception
from mailsweep.services.interpreter import CommandInterpreter

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 10 * 1024 * 1024

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class BadRequest(Exception):
    """Raised by request helpers to short-circuit with a 4xx answer."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


class AIProxyServer(ThreadingHTTPServer):
    """Threaded HTTP server carrying the shared CommandInterpreter."""

    daemon_threads = True

    def __init__(self, address: tuple[str, int], interpreter: CommandInterpreter) -> None:
        self.interpreter = interpreter
        super().__init__(address, AIProxyRequestHandler)


class AIProxyRequestHandler(BaseHTTPRequestHandler):
    server: AIProxyServer

    POST_ROUTES = {
        "/ai/parse": "_handle_parse",
        "/ai/suggestReplies": "_handle_suggest_replies",
    }

    def do_OPTIONS(self) -> None:
        self.send_response(204)
        for name, value in CORS_HEADERS.items():
            self.send_header(name, value)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self) -> None:
        if self._path() == "/health":
            self._send_json(200, {"status": "ok", "timestamp": datetime.now(UTC).isoformat()})
            return
        self._send_json(404, {"error": "Not found"})

    def do_POST(self) -> None:
        handler_name = self.POST_ROUTES.get(self._path())
        if handler_name is None:
            self._send_json(404, {"error": "Not found"})
            return

        try:
            payload = self._read_json()
            status, body = getattr(self, handler_name)(payload)
        except BadRequest as e:
            status, body = e.status, {"error": e.message}

        self._send_json(status, body)

    def _handle_parse(self, payload: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        command = payload.get("command")
        if not isinstance(command, str) or not command.strip():
            raise BadRequest(400, "Command is required")

        try:
            parsed = self.server.interpreter.parse_command(command)
        except Exception as e:
            logger.exception(f"Error parsing command: {e}")
            if not isinstance(e, ParseError):
                capture_exception(e)
            return 500, {"error": "Failed to parse command", "message": str(e)}

        return 200, parsed.to_wire()

    def _handle_suggest_replies(self, payload: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        messages = payload.get("messages")
        if not isinstance(messages, list) or not messages:
            raise BadRequest(400, "Messages array is required")
        if not all(isinstance(m, dict) for m in messages):
            raise BadRequest(400, "Each message must be an object")

        command = payload.get("command")
        logger.debug("Suggesting replies for parsed command %s", payload.get("parsed"))

        try:
            suggestions = self.server.interpreter.suggest_replies(
                messages, command=command if isinstance(command, str) else None
            )
        except Exception as e:
            logger.exception(f"Error generating suggestions: {e}")
            if not isinstance(e, ParseError):
                capture_exception(e)
            return 500, {"error": "Failed to generate suggestions", "message": str(e)}

        return 200, {"suggestions": [s.model_dump() for s in suggestions]}

    def _path(self) -> str:
        return self.path.split("?", 1)[0]

    def _read_json(self) -> dict[str, Any]:
        try:
            length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            raise BadRequest(400, "Invalid Content-Length") from None
        if length > MAX_BODY_BYTES:
            raise BadRequest(413, "Request body too large")

        raw = self.rfile.read(length) if length else b""
        try:
            data = json.loads(raw or b"{}")
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise BadRequest(400, "Request body must be valid JSON") from None
        if not isinstance(data, dict):
            raise BadRequest(400, "Request body must be a JSON object")
        return data

    def _send_json(self, status: int, payload: dict[str, Any]) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        for name, value in CORS_HEADERS.items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        logger.info("%s - %s", self.address_string(), format % args)


def create_server(
    host: str | None = None,
    port: int | None = None,
    interpreter: CommandInterpreter | None = None,
) -> AIProxyServer:
    """Build the proxy server.

    Raises:
        ConfigurationError: If no interpreter is given and the Azure OpenAI
            credentials are missing.
    """
    from mailsweep.config import settings

    if interpreter is None:
        from mailsweep.services.llm_client import create_llm_client

        interpreter = CommandInterpreter(
            create_llm_client(), sample_size=settings.suggestion_sample_size
        )

    address = (
        host if host is not None else settings.proxy_host,
        port if port is not None else settings.proxy_port,
    )
    return AIProxyServer(address, interpreter)


def serve(host: str | None = None, port: int | None = None) -> None:
    """Run the proxy until interrupted."""
    server = create_server(host, port)
    bound_host, bound_port = server.server_address[:2]
    logger.info(f"AI proxy listening on http://{bound_host}:{bound_port}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("AI proxy shutting down")
    finally:
        server.server_close()
        server.interpreter.llm.close()
