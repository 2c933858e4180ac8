import logging

import requests
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception

from src.core.config import DEFAULT_ASSET_ADDRESS
from src.core.errors import VerificationError
from src.models.payment import ChainTransaction

logger = logging.getLogger(__name__)

AUTHORIZATION_STATE_ABI = [{
    "type": "function",
    "name": "authorizationState",
    "stateMutability": "view",
    "inputs": [
        {"name": "authorizer", "type": "address"},
        {"name": "nonce", "type": "bytes32"},
    ],
    "outputs": [{"name": "", "type": "bool"}],
}]


class ChainClient:
    """Read-only view of the chain used by the payment verifier."""

    def get_transaction(self, tx_hash: str) -> ChainTransaction | None:
        """Return the transaction, or None when the node does not know it."""
        raise NotImplementedError

    def authorization_used(self, authorizer: str, nonce: str) -> bool:
        """Whether the token contract already consumed this EIP-3009 nonce."""
        raise NotImplementedError


class Web3ChainClient(ChainClient):
    """Looks transactions up over JSON-RPC with a bounded per-call timeout."""

    def __init__(
        self,
        rpc_url: str,
        timeout_seconds: float = 10,
        web3: Web3 | None = None,
        asset_address: str = DEFAULT_ASSET_ADDRESS,
    ):
        self.rpc_url = rpc_url
        self.asset_address = asset_address
        self.web3 = web3 or Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout_seconds})
        )

    def authorization_used(self, authorizer: str, nonce: str) -> bool:
        token = self.web3.eth.contract(
            address=Web3.to_checksum_address(self.asset_address), abi=AUTHORIZATION_STATE_ABI,
        )
        try:
            return bool(token.functions.authorizationState(
                Web3.to_checksum_address(authorizer), HexBytes(nonce),
            ).call())
        except (requests.exceptions.RequestException, Web3Exception, ValueError) as e:
            # An unreachable node does not block the payment
            logger.warning("Could not read authorizationState for %s: %s", authorizer, e)
            return False

    def get_transaction(self, tx_hash: str) -> ChainTransaction | None:
        try:
            return self._lookup(tx_hash)
        except TransactionNotFound:
            return None
        except requests.exceptions.Timeout as e:
            logger.warning("RPC timeout looking up %s at %s", tx_hash, self.rpc_url)
            raise VerificationError(
                "Timed out querying the chain",
                reason="chain_timeout",
                retryable=True,
            ) from e
        except requests.exceptions.RequestException as e:
            logger.warning("RPC error looking up %s: %s", tx_hash, e)
            raise VerificationError(
                "Chain node unavailable",
                reason="chain_unavailable",
                retryable=True,
            ) from e

    def _lookup(self, tx_hash: str) -> ChainTransaction:
        tx = self.web3.eth.get_transaction(tx_hash)
        block_number = tx.get("blockNumber")
        to = tx.get("to")
        value = int(tx.get("value", 0))

        if block_number is None:
            return ChainTransaction(
                tx_hash=tx_hash, to=to, value=value,
                block_number=None, status=None, confirmations=0,
            )

        receipt = self.web3.eth.get_transaction_receipt(tx_hash)
        head = self.web3.eth.block_number
        return ChainTransaction(
            tx_hash=tx_hash,
            to=to,
            value=value,
            block_number=block_number,
            status=receipt.get("status"),
            confirmations=max(head - block_number + 1, 0),
        )
