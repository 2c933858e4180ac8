from .chain import ChainClient, Web3ChainClient
from .proof import ACCEPTED_SCHEMES, PROOF_HEADER, decode_proof_header, encode_proof_header
from .replay import ReplayGuard
from .sandbox import SandboxVerifier
from .verifier import PaymentVerifier

__all__ = [
    "ChainClient", "Web3ChainClient",
    "ACCEPTED_SCHEMES", "PROOF_HEADER", "decode_proof_header", "encode_proof_header",
    "ReplayGuard",
    "PaymentVerifier", "SandboxVerifier",
]
