from src.utils.crypto import generate_signature, verify_hmac


class WebhookSigner:
    """Signs and verifies raw webhook bodies using HMAC-SHA256."""

    def __init__(self, secret: str):
        self.secret = secret

    def sign(self, body: bytes | str) -> str:
        return generate_signature(body, self.secret)

    def verify(self, body: bytes | str, signature: str) -> bool:
        return verify_hmac(body, signature, self.secret)
