import pytest

from src.core.config import Settings
from src.gateway.server import SellerApp, SellerServer
from src.observability.alerting import AlertManager
from src.observability.metrics import MetricsCollector
from src.payments.chain import ChainClient
from src.payments.replay import ReplayGuard
from src.receiver.server import WebhookReceiverServer
from src.replay.manager import WebhookReplayManager
from src.settlement.invoices import InvoiceService
from src.settlement.state_machine import SettlementStateMachine
from src.storage.store import InMemoryStore
from src.utils.factories import SELLER_ADDRESS, ChainTransactionFactory, EndpointFactory, InvoiceFactory
from src.webhooks.dispatcher import WebhookDispatcher
from src.webhooks.engine import WebhookDeliveryEngine
from src.webhooks.logger import DeliveryLogger
from src.webhooks.retry import RetryManager
from src.webhooks.scheduler import DeliveryScheduler
from src.webhooks.signer import WebhookSigner


WEBHOOK_SECRET = "whsec_" + "5e" * 24

TOKEN_DOMAIN = {
    "name": "USDC",
    "version": "2",
    "chainId": 84532,
    "verifyingContract": "0x036cbd53842c5426634e7929541ec2318f3dcf7e",
}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChain(ChainClient):
    """Chain client backed by a dict of known transactions."""

    def __init__(self):
        self.transactions = {}
        self.lookups = 0
        self.error: Exception | None = None
        self.used_authorizations: set[tuple[str, str]] = set()

    def add(self, **overrides):
        tx = ChainTransactionFactory.create(**overrides)
        self.transactions[tx.tx_hash.lower()] = tx
        return tx

    def get_transaction(self, tx_hash):
        self.lookups += 1
        if self.error is not None:
            raise self.error
        return self.transactions.get(tx_hash.lower())

    def authorization_used(self, authorizer, nonce):
        return (authorizer.lower(), nonce.lower()) in self.used_authorizations


class EventRecorder:
    """Stands in for the dispatcher's emit, keeping (type, data) pairs."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def __call__(self, event_type, data):
        self.events.append((event_type, data))

    @property
    def types(self) -> list[str]:
        return [t for t, _ in self.events]


@pytest.fixture
def webhook_secret():
    return WEBHOOK_SECRET


@pytest.fixture
def token_domain():
    return dict(TOKEN_DOMAIN)


@pytest.fixture
def seller_address():
    return SELLER_ADDRESS


@pytest.fixture
def signer():
    return WebhookSigner(WEBHOOK_SECRET)


@pytest.fixture
def retry_manager():
    return RetryManager()


@pytest.fixture
def logger():
    return DeliveryLogger()


@pytest.fixture
def engine(logger):
    return WebhookDeliveryEngine(logger=logger, timeout_seconds=5)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    """Scheduler that only runs tasks when the test calls run_due()."""
    return DeliveryScheduler(clock=clock)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def metrics(clock):
    return MetricsCollector(window_seconds=300, clock=clock)


@pytest.fixture
def alert_manager(metrics):
    return AlertManager(metrics=metrics, threshold=0.10)


@pytest.fixture
def dispatcher(engine, store, scheduler, retry_manager, metrics, alert_manager):
    return WebhookDispatcher(
        engine=engine,
        store=store,
        scheduler=scheduler,
        retry_manager=retry_manager,
        failure_threshold=3,
        metrics=metrics,
        alerts=alert_manager,
    )


@pytest.fixture
def replay_manager(store, dispatcher, logger):
    return WebhookReplayManager(store=store, dispatcher=dispatcher, logger=logger)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def state_machine(store, recorder):
    return SettlementStateMachine(store, recorder, chain="base-sepolia")


@pytest.fixture
def invoices(store, state_machine, recorder):
    return InvoiceService(store, state_machine, recorder, recipient=SELLER_ADDRESS)


@pytest.fixture
def fake_chain():
    return FakeChain()


@pytest.fixture
def replay_guard():
    return ReplayGuard()


@pytest.fixture
def receiver():
    """Webhook receiver without signature verification."""
    server = WebhookReceiverServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def endpoint_factory():
    return EndpointFactory


@pytest.fixture
def invoice_factory():
    return InvoiceFactory


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        test_mode=True,
        seller_address=SELLER_ADDRESS,
        sandbox_delay_seconds=30,
        webhook_timeout_seconds=2,
    )


@pytest.fixture
def app(settings, scheduler):
    """Seller app in sandbox mode with a manually driven scheduler."""
    return SellerApp(settings, scheduler=scheduler)


@pytest.fixture
def seller_server(app):
    server = SellerServer(app)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def live_app(settings):
    """Seller app whose scheduler runs on its own threads."""
    application = SellerApp(settings)
    application.start()
    yield application
    application.stop()


@pytest.fixture
def live_server(live_app):
    server = SellerServer(live_app)
    server.start()
    yield server
    server.stop()
