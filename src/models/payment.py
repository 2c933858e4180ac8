from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ProofScheme(Enum):
    ONCHAIN_TX = "onchain-tx"
    EIP3009_AUTHORIZATION = "eip3009-authorization"


@dataclass(frozen=True)
class PaymentProof:
    """Evidence of payment taken from the ``X-Payment`` header. Never stored."""

    scheme: ProofScheme
    signer: str | None = None
    payload: dict = field(default_factory=dict)
    signature: str | None = None
    tx_hash: str | None = None

    @property
    def identifier(self) -> str:
        """Tx hash for on-chain proofs, authorization nonce otherwise."""
        if self.scheme is ProofScheme.ONCHAIN_TX:
            return self.tx_hash.lower()
        return str(self.payload["nonce"]).lower()

    @property
    def replay_key(self) -> str:
        if self.scheme is ProofScheme.ONCHAIN_TX:
            return self.identifier
        return f"{self.signer.lower()}:{self.identifier}"


@dataclass(frozen=True)
class VerifiedPayment:
    identifier: str
    scheme: ProofScheme
    payer: str | None
    recipient: str
    amount: int
    verified_at: datetime
    # Seconds to wait before the settlement may be completed
    confirmation_delay: float = 0.0


@dataclass(frozen=True)
class ChainTransaction:
    tx_hash: str
    to: str | None
    value: int
    block_number: int | None
    status: int | None
    confirmations: int
