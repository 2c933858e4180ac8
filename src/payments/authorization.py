"""
EIP-3009 ``TransferWithAuthorization`` typed data.

The buyer signs the typed data off-chain; the seller recomputes it from the
claimed fields and checks that the recovered signer is the claimed payer.
"""

from typing import Any

from eth_account import Account
from eth_account.messages import encode_typed_data
from hexbytes import HexBytes

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

TRANSFER_WITH_AUTHORIZATION_TYPE = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]


def build_typed_data(authorization: dict[str, Any], domain: dict[str, Any]) -> dict[str, Any]:
    """Full EIP-712 message for an authorization under the token's domain."""
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_TYPE,
            "TransferWithAuthorization": TRANSFER_WITH_AUTHORIZATION_TYPE,
        },
        "primaryType": "TransferWithAuthorization",
        "domain": domain,
        "message": {
            "from": authorization["from"],
            "to": authorization["to"],
            "value": int(authorization["value"]),
            "validAfter": int(authorization["validAfter"]),
            "validBefore": int(authorization["validBefore"]),
            "nonce": HexBytes(authorization["nonce"]),
        },
    }


def sign_authorization(
    private_key: str,
    authorization: dict[str, Any],
    domain: dict[str, Any],
) -> str:
    """Sign an authorization; returns a ``0x``-prefixed 65-byte signature."""
    signable = encode_typed_data(full_message=build_typed_data(authorization, domain))
    signature = Account.sign_message(signable, private_key=private_key).signature
    return "0x" + bytes(signature).hex()


def recover_signer(
    authorization: dict[str, Any],
    signature: str,
    domain: dict[str, Any],
) -> str:
    """Address that produced ``signature`` over the authorization."""
    signable = encode_typed_data(full_message=build_typed_data(authorization, domain))
    return Account.recover_message(signable, signature=HexBytes(signature))
