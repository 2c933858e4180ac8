import json
import logging
import re
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

from src.core.config import Settings
from src.core.errors import SettlementServiceError, ValidationError
from src.gateway.handler import GatewayResponse, PaymentGate
from src.observability.alerting import AlertManager
from src.observability.metrics import MetricsCollector
from src.payments.chain import ChainClient, Web3ChainClient
from src.payments.proof import PROOF_HEADER
from src.payments.replay import ReplayGuard
from src.payments.sandbox import SandboxVerifier
from src.payments.verifier import PaymentVerifier
from src.replay.manager import WebhookReplayManager
from src.settlement.invoices import InvoiceService
from src.settlement.state_machine import SettlementStateMachine
from src.storage.store import InMemoryStore
from src.utils.pagination import parse_pagination
from src.webhooks.dispatcher import WebhookDispatcher
from src.webhooks.engine import WebhookDeliveryEngine
from src.webhooks.events import canonical_event_type
from src.webhooks.logger import DeliveryLogger
from src.webhooks.retry import RetryManager
from src.webhooks.scheduler import DeliveryScheduler

logger = logging.getLogger(__name__)


class SellerApp:
    """Wires the seller's components together from settings.

    In test mode payments are verified by the sandbox rules; otherwise by chain
    lookups and signature recovery.
    """

    def __init__(
        self,
        settings: Settings,
        chain_client: ChainClient | None = None,
        scheduler: DeliveryScheduler | None = None,
        verifier=None,
    ):
        self.settings = settings
        self.store = InMemoryStore()
        self.scheduler = scheduler or DeliveryScheduler(max_workers=settings.delivery_workers)
        self.metrics = MetricsCollector()
        self.alerts = AlertManager(self.metrics, threshold=settings.alert_failure_rate_threshold)
        self.delivery_log = DeliveryLogger()
        self.dispatcher = WebhookDispatcher(
            engine=WebhookDeliveryEngine(self.delivery_log, timeout_seconds=settings.webhook_timeout_seconds),
            store=self.store,
            scheduler=self.scheduler,
            retry_manager=RetryManager(settings.webhook_retry_schedule),
            failure_threshold=settings.webhook_failure_threshold,
            metrics=self.metrics,
            alerts=self.alerts,
        )
        self.state_machine = SettlementStateMachine(self.store, self.dispatcher.emit, settings.chain)
        self.invoices = InvoiceService(
            self.store,
            self.state_machine,
            self.dispatcher.emit,
            recipient=settings.seller_address,
            currency=settings.currency,
            ttl_seconds=settings.invoice_ttl_seconds,
        )
        self.replay_guard = ReplayGuard()
        self.verifier = verifier or self._build_verifier(chain_client)
        self.gate = PaymentGate(
            self.store,
            self.state_machine,
            self.invoices,
            self.verifier,
            self.scheduler,
            metrics=self.metrics,
        )
        self.replay = WebhookReplayManager(self.store, self.dispatcher, self.delivery_log)

    def _build_verifier(self, chain_client: ChainClient | None):
        settings = self.settings
        if settings.test_mode and settings.is_production:
            logger.warning("Sandbox payments are accepted in a production environment")
        if settings.test_mode and chain_client is None:
            return SandboxVerifier(self.replay_guard, delay_seconds=settings.sandbox_delay_seconds)
        live = PaymentVerifier(
            chain_client or Web3ChainClient(
                settings.rpc_url, settings.rpc_timeout_seconds, asset_address=settings.asset_address,
            ),
            self.replay_guard,
            settings.token_domain,
            min_confirmations=settings.min_confirmations,
        )
        if settings.test_mode:
            return SandboxVerifier(self.replay_guard, delay_seconds=settings.sandbox_delay_seconds, inner=live)
        return live

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()


ROUTES = [
    ("GET", re.compile(r"/health"), "health"),
    ("POST", re.compile(r"/v1/invoices"), "create_invoice"),
    ("GET", re.compile(r"/v1/invoices/([\w-]+)"), "get_invoice"),
    ("GET", re.compile(r"/v1/resources/([\w-]+)"), "get_resource"),
    ("GET", re.compile(r"/v1/settlements"), "list_settlements"),
    ("GET", re.compile(r"/v1/settlements/([\w-]+)"), "get_settlement"),
    ("POST", re.compile(r"/v1/webhooks"), "register_webhook"),
    ("GET", re.compile(r"/v1/webhooks"), "list_webhooks"),
    ("POST", re.compile(r"/v1/webhooks/([\w-]+)/enable"), "enable_webhook"),
    ("GET", re.compile(r"/v1/events"), "list_events"),
    ("POST", re.compile(r"/v1/events/([\w-]+)/replay"), "replay_event"),
    ("GET", re.compile(r"/v1/metrics"), "get_metrics"),
]


class _SellerHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the seller API."""

    def do_GET(self):
        self._dispatch("GET")

    def do_POST(self):
        self._dispatch("POST")

    def _dispatch(self, method: str) -> None:
        app: SellerApp = self.server.app  # type: ignore[attr-defined]
        parsed = urlparse(self.path)
        query = {k: v[-1] for k, v in parse_qs(parsed.query).items()}

        for route_method, pattern, name in ROUTES:
            if route_method != method:
                continue
            match = pattern.fullmatch(parsed.path.rstrip("/") or "/")
            if match is None:
                continue
            try:
                response = getattr(self, name)(app, query, *match.groups())
            except SettlementServiceError as e:
                response = GatewayResponse(e.http_status, e.to_dict())
            except Exception:
                logger.exception("Unhandled error on %s %s", method, parsed.path)
                response = GatewayResponse(500, {"error": "internal_error", "message": "Internal server error"})
            self._reply(response)
            return

        self._reply(GatewayResponse(404, {"error": "not_found", "message": f"No route for {method} {parsed.path}"}))

    # Routes

    def health(self, app, query):
        return GatewayResponse(200, {"status": "ok", "testMode": app.settings.test_mode, "chain": app.settings.chain})

    def create_invoice(self, app, query):
        body = self._read_json()
        invoice, settlement = app.invoices.create(
            body.get("amount"),
            currency=body.get("currency"),
            description=body.get("description", ""),
        )
        return GatewayResponse(201, {"invoice": invoice.to_dict(), "settlement": settlement.to_dict()})

    def get_invoice(self, app, query, invoice_id):
        return GatewayResponse(200, app.invoices.get(invoice_id).to_dict())

    def get_resource(self, app, query, invoice_id):
        return app.gate.handle(invoice_id, self.headers.get(PROOF_HEADER))

    def list_settlements(self, app, query):
        limit, offset = parse_pagination(query)
        settlements, total = app.store.list_settlements(limit, offset)
        return GatewayResponse(200, {
            "settlements": [s.to_dict() for s in settlements],
            "total": total,
            "limit": limit,
            "offset": offset,
        })

    def get_settlement(self, app, query, settlement_id):
        return GatewayResponse(200, app.store.get_settlement(settlement_id).to_dict())

    def register_webhook(self, app, query):
        body = self._read_json()
        endpoint = app.dispatcher.register_endpoint(body.get("url"), body.get("events") or [])
        return GatewayResponse(201, endpoint.to_dict(include_secret=True))

    def list_webhooks(self, app, query):
        return GatewayResponse(200, {"webhooks": [e.to_dict() for e in app.store.list_endpoints()]})

    def enable_webhook(self, app, query, endpoint_id):
        return GatewayResponse(200, app.dispatcher.enable_endpoint(endpoint_id).to_dict())

    def list_events(self, app, query):
        limit, offset = parse_pagination(query)
        event_type = query.get("type")
        if event_type:
            event_type = canonical_event_type(event_type)
        events, total = app.store.list_events(limit, offset, event_type=event_type)
        return GatewayResponse(200, {
            "events": [e.to_dict() for e in events],
            "total": total,
            "limit": limit,
            "offset": offset,
        })

    def replay_event(self, app, query, event_id):
        body = self._read_json()
        queued = app.replay.replay_event(event_id, body.get("endpointId"))
        return GatewayResponse(202, {"eventId": event_id, "queued": queued})

    def get_metrics(self, app, query):
        return GatewayResponse(200, app.metrics.snapshot())

    # Helpers

    def _read_json(self) -> dict:
        try:
            content_length = int(self.headers.get("Content-Length", 0))
        except ValueError as e:
            raise ValidationError("Content-Length is not a number", reason="invalid_json") from e
        if content_length < 0:
            raise ValidationError("Content-Length is negative", reason="invalid_json")
        raw = self.rfile.read(content_length) if content_length else b""
        if not raw:
            return {}
        try:
            body = json.loads(raw)
        except (json.JSONDecodeError, ValueError) as e:
            raise ValidationError("Request body is not valid JSON", reason="invalid_json") from e
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object", reason="invalid_json")
        return body

    def _reply(self, response: GatewayResponse) -> None:
        payload = json.dumps(response.body).encode()
        self.send_response(response.status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(payload)))
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)


class SellerServer:
    """Threaded HTTP server exposing the seller API for one SellerApp."""

    def __init__(self, app: SellerApp, host: str = "127.0.0.1", port: int = 0):
        self.app = app
        self._host = host
        self._port = port
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def _bind(self) -> ThreadingHTTPServer:
        self._server = ThreadingHTTPServer((self._host, self._port), _SellerHandler)
        self._server.app = self.app  # type: ignore[attr-defined]
        # Get the actual port (useful when port=0)
        self._port = self._server.server_address[1]
        return self._server

    def start(self) -> None:
        server = self._bind()
        self._thread = threading.Thread(target=server.serve_forever, daemon=True)
        self._thread.start()

    def serve_forever(self) -> None:
        """Serve on the calling thread until interrupted."""
        server = self._bind()
        try:
            server.serve_forever()
        finally:
            server.server_close()
            self._server = None

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
        return f"http://{self._host}:{self._port}"

    @property
    def port(self) -> int:
        return self._port
