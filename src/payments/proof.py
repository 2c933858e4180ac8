"""
Decoding of the ``X-Payment`` proof header.

Two forms are accepted:

* a bare ``0x``-prefixed 32-byte transaction hash, and
* base64-encoded JSON ``{"x402Version", "scheme", "network", "payload"}`` where
  ``payload`` is either ``{"txHash", "from"}`` for an on-chain transfer or
  ``{"authorization", "signature"}`` for an EIP-3009 transfer authorization.

Only the shape is checked here. Whether the payment happened is the
verifier's job.
"""

import base64
import json
import re

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from src.core.errors import ValidationError
from src.models.payment import PaymentProof, ProofScheme

PROOF_HEADER = "X-Payment"

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]{130}$")

ACCEPTED_SCHEMES = [scheme.value for scheme in ProofScheme]


class TransferAuthorization(BaseModel):
    from_: str = Field(..., alias="from", pattern=ADDRESS_RE.pattern)
    to: str = Field(..., pattern=ADDRESS_RE.pattern)
    value: int = Field(..., ge=0)
    validAfter: int = Field(..., ge=0)
    validBefore: int = Field(..., ge=0)
    nonce: str = Field(..., pattern=TX_HASH_RE.pattern)


class ProofPayload(BaseModel):
    txHash: str | None = Field(None, pattern=TX_HASH_RE.pattern)
    from_: str | None = Field(None, alias="from", pattern=ADDRESS_RE.pattern)
    authorization: TransferAuthorization | None = None
    signature: str | None = Field(None, pattern=SIGNATURE_RE.pattern)


class PaymentEnvelope(BaseModel):
    x402Version: int = 1
    scheme: str = "exact"
    network: str | None = None
    payload: ProofPayload


def decode_proof_header(header: str) -> PaymentProof:
    """Parse the proof header or raise ValidationError."""
    value = (header or "").strip()
    if not value:
        raise ValidationError("Empty payment proof", reason="malformed_proof")

    if TX_HASH_RE.match(value):
        return PaymentProof(scheme=ProofScheme.ONCHAIN_TX, tx_hash=value.lower())

    try:
        raw = base64.b64decode(value, validate=True)
        envelope = PaymentEnvelope.model_validate(json.loads(raw))
    except PydanticValidationError as e:
        raise ValidationError(
            "Payment proof JSON has the wrong shape",
            reason="malformed_proof",
            details={"fields": [".".join(str(p) for p in err["loc"]) for err in e.errors()]},
        ) from e
    except ValueError as e:
        # Covers binascii.Error, JSONDecodeError and non-ASCII input
        raise ValidationError(
            "Payment proof is neither a transaction hash nor base64 JSON",
            reason="malformed_proof",
        ) from e

    payload = envelope.payload
    if payload.authorization is not None and payload.signature is not None:
        auth = payload.authorization
        return PaymentProof(
            scheme=ProofScheme.EIP3009_AUTHORIZATION,
            signer=auth.from_,
            payload={
                "from": auth.from_,
                "to": auth.to,
                "value": auth.value,
                "validAfter": auth.validAfter,
                "validBefore": auth.validBefore,
                "nonce": auth.nonce,
            },
            signature=payload.signature,
        )
    if payload.txHash is not None:
        return PaymentProof(
            scheme=ProofScheme.ONCHAIN_TX,
            signer=payload.from_,
            tx_hash=payload.txHash.lower(),
        )
    raise ValidationError(
        "Payment proof carries neither a txHash nor a signed authorization",
        reason="malformed_proof",
    )


def encode_proof_header(envelope: dict) -> str:
    """Base64-encode a JSON proof envelope for the ``X-Payment`` header."""
    return base64.b64encode(json.dumps(envelope).encode("utf-8")).decode("ascii")
