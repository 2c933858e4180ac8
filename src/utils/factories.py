import secrets
import time
import uuid
from datetime import datetime, timedelta, timezone

from eth_account import Account

from src.models.invoice import Invoice, InvoiceStatus
from src.models.payment import ChainTransaction
from src.models.settlement import Settlement, SettlementStatus
from src.models.webhook import WebhookEndpoint, WebhookEvent
from src.payments.authorization import sign_authorization
from src.payments.proof import encode_proof_header
from src.utils.crypto import generate_webhook_secret
from src.webhooks.events import create_event

SELLER_ADDRESS = "0x5fb6e1c7b6a7a6b5bb16bb4cbc3f0c3e9a1a4c10"


def random_tx_hash() -> str:
    return "0x" + secrets.token_hex(32)


def random_address() -> str:
    return Account.create().address


class InvoiceFactory:
    """Factory for creating Invoice instances with sensible defaults."""

    @staticmethod
    def create(**overrides) -> Invoice:
        now = datetime.now(timezone.utc).replace(microsecond=0)
        defaults = {
            "invoice_id": f"inv_{uuid.uuid4().hex[:16]}",
            "amount": 100,
            "currency": "USDC",
            "description": "API call",
            "status": InvoiceStatus.SENT,
            "created_at": now,
            "recipient": SELLER_ADDRESS,
            "nonce": "0x" + secrets.token_hex(32),
            "expires_at": now + timedelta(minutes=15),
        }
        defaults.update(overrides)
        return Invoice(**defaults)


class SettlementFactory:
    """Factory for creating Settlement instances with sensible defaults."""

    @staticmethod
    def create(**overrides) -> Settlement:
        defaults = {
            "settlement_id": f"stl_{uuid.uuid4().hex[:16]}",
            "invoice_id": f"inv_{uuid.uuid4().hex[:16]}",
            "status": SettlementStatus.PENDING,
            "chain": "base-sepolia",
            "amount": 100,
            "currency": "USDC",
            "created_at": datetime.now(timezone.utc),
        }
        defaults.update(overrides)
        return Settlement(**defaults)


class EndpointFactory:
    """Factory for creating WebhookEndpoint instances."""

    @staticmethod
    def create(url: str = "http://127.0.0.1:9/webhook", **overrides) -> WebhookEndpoint:
        defaults = {
            "endpoint_id": f"we_{uuid.uuid4().hex[:16]}",
            "url": url,
            "events": ("settlement.confirmed", "settlement.failed", "invoice.paid"),
            "secret": generate_webhook_secret(),
            "created_at": datetime.now(timezone.utc),
        }
        defaults.update(overrides)
        if isinstance(defaults["events"], list):
            defaults["events"] = tuple(defaults["events"])
        return WebhookEndpoint(**defaults)


class EventFactory:
    """Factory for creating WebhookEvent instances."""

    @staticmethod
    def create(event_type: str = "settlement.confirmed", **data) -> WebhookEvent:
        defaults = {
            "id": f"stl_{uuid.uuid4().hex[:16]}",
            "invoiceId": f"inv_{uuid.uuid4().hex[:16]}",
            "status": "completed",
            "amount": 100,
            "currency": "USDC",
        }
        defaults.update(data)
        return create_event(event_type, defaults)


class ChainTransactionFactory:
    """Factory for creating mined ChainTransaction instances."""

    @staticmethod
    def create(**overrides) -> ChainTransaction:
        defaults = {
            "tx_hash": random_tx_hash(),
            "to": SELLER_ADDRESS,
            "value": 100,
            "block_number": 1_000,
            "status": 1,
            "confirmations": 3,
        }
        defaults.update(overrides)
        return ChainTransaction(**defaults)


class ProofFactory:
    """Builds ``X-Payment`` header values."""

    @staticmethod
    def tx_hash(tx_hash: str | None = None) -> str:
        return tx_hash or random_tx_hash()

    @staticmethod
    def onchain(tx_hash: str | None = None, payer: str | None = None, network: str = "base-sepolia") -> str:
        payload = {"txHash": tx_hash or random_tx_hash()}
        if payer is not None:
            payload["from"] = payer
        return encode_proof_header({
            "x402Version": 1,
            "scheme": "exact",
            "network": network,
            "payload": payload,
        })

    @staticmethod
    def authorization(
        domain: dict,
        to: str = SELLER_ADDRESS,
        value: int = 100,
        account=None,
        valid_after: int = 0,
        valid_before: int | None = None,
        nonce: str | None = None,
        network: str = "base-sepolia",
    ) -> tuple[str, dict]:
        """Sign a transfer authorization with a throwaway key.

        Returns the header value and the authorization that was signed.
        """
        account = account or Account.create()
        authorization = {
            "from": account.address,
            "to": to,
            "value": value,
            "validAfter": valid_after,
            "validBefore": valid_before if valid_before is not None else int(time.time()) + 3600,
            "nonce": nonce or "0x" + secrets.token_hex(32),
        }
        signature = sign_authorization(account.key, authorization, domain)
        header = encode_proof_header({
            "x402Version": 1,
            "scheme": "exact",
            "network": network,
            "payload": {"signature": signature, "authorization": authorization},
        })
        return header, authorization
