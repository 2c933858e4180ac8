import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Self

from src.utils.crypto import verify_hmac

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_ID_HEADER = "X-Event-ID"

REQUIRED_FIELDS = ("id", "type", "createdAt", "data")


class _WebhookHandler(BaseHTTPRequestHandler):
    """HTTP request handler for receiving signed webhook events."""

    def do_POST(self):
        content_length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(content_length)

        server_config = self.server.config  # type: ignore[attr-defined]

        with server_config["lock"]:
            server_config["request_count"] += 1

        # Simulate slow response
        if server_config["response_delay"] > 0:
            time.sleep(server_config["response_delay"])

        # Signature is checked over the raw bytes, before any parsing
        if server_config["signature_secret"]:
            sig = self.headers.get(SIGNATURE_HEADER, "")
            if not sig:
                self._reply(401, {"error": "missing signature"})
                return
            if not verify_hmac(body, sig, server_config["signature_secret"]):
                self._reply(401, {"error": "invalid signature"})
                return

        try:
            event = json.loads(body)
        except (json.JSONDecodeError, ValueError):
            self._reply(400, {"error": "invalid JSON"})
            return

        if not isinstance(event, dict):
            self._reply(400, {"error": "event must be a JSON object"})
            return
        missing = [f for f in REQUIRED_FIELDS if f not in event]
        if missing:
            self._reply(400, {"error": f"missing fields: {missing}"})
            return

        header_id = self.headers.get(EVENT_ID_HEADER)
        if header_id is not None and header_id != event["id"]:
            self._reply(400, {"error": "event id header does not match body"})
            return

        code = server_config["response_code"]
        if not 200 <= code < 300:
            self._reply(code, None)
            return

        event_id = event["id"]
        with server_config["lock"]:
            if event_id in server_config["processed_event_ids"]:
                server_config["duplicates"] += 1
                duplicate = True
            else:
                server_config["received_events"].append({
                    "event_id": event_id,
                    "event": event,
                    "body": body,
                    "headers": dict(self.headers),
                })
                server_config["processed_event_ids"].add(event_id)
                duplicate = False

        self._reply(code, {"status": "already_processed" if duplicate else "ok"})

    def _reply(self, code: int, payload: dict | None) -> None:
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.end_headers()
        if payload is not None:
            self.wfile.write(json.dumps(payload).encode())

    def log_message(self, format, *args):
        """Suppress default request logging."""
        pass


class WebhookReceiverServer:
    """Webhook subscriber: verifies signatures and de-duplicates by event id.

    Response code and delay are configurable so tests can make deliveries fail
    or time out.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0, secret: str | None = None):
        self._host = host
        self._port = port
        self._config = {
            "response_code": 200,
            "response_delay": 0,
            "signature_secret": secret,
            "received_events": [],
            "processed_event_ids": set(),
            "request_count": 0,
            "duplicates": 0,
            "lock": threading.Lock(),
        }
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def set_response_code(self, code: int) -> Self:
        self._config["response_code"] = code
        return self

    def set_response_delay(self, seconds: float) -> Self:
        self._config["response_delay"] = seconds
        return self

    def enable_signature_verification(self, secret: str) -> Self:
        self._config["signature_secret"] = secret
        return self

    def start(self) -> None:
        self._server = ThreadingHTTPServer((self._host, self._port), _WebhookHandler)
        self._server.config = self._config  # type: ignore[attr-defined]
        # Get the actual port (useful when port=0)
        self._port = self._server.server_address[1]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self._port}/webhook"

    @property
    def port(self) -> int:
        return self._port

    def get_received_events(self) -> list[dict]:
        with self._config["lock"]:
            return list(self._config["received_events"])

    def get_event_types(self) -> list[str]:
        with self._config["lock"]:
            return [r["event"]["type"] for r in self._config["received_events"]]

    def get_request_count(self) -> int:
        with self._config["lock"]:
            return self._config["request_count"]

    def get_duplicate_count(self) -> int:
        with self._config["lock"]:
            return self._config["duplicates"]

    def was_event_processed(self, event_id: str) -> bool:
        with self._config["lock"]:
            return event_id in self._config["processed_event_ids"]

    def clear_events(self) -> None:
        with self._config["lock"]:
            self._config["received_events"].clear()
            self._config["processed_event_ids"].clear()
            self._config["request_count"] = 0
            self._config["duplicates"] = 0
