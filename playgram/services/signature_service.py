"""
Signature Service

HMAC-SHA256 signing and verification for webhook payloads, plus at-rest
encryption for the secrets used to sign them.
"""
import base64
import hashlib
import hmac
import secrets
from typing import Iterable, TypeVar

from cryptography.fernet import Fernet, InvalidToken

from playgram.services.errors import WebhookConfigurationError

T = TypeVar("T")


def _as_bytes(value: str | bytes) -> bytes:
    return value if isinstance(value, bytes) else value.encode()


def generate_signature(payload: str | bytes, secret: str) -> str:
    """Generate hex HMAC-SHA256 signature for a payload."""
    return hmac.new(
        secret.encode(),
        _as_bytes(payload),
        hashlib.sha256
    ).hexdigest()


def verify_signature(payload: str | bytes, signature: str, secret: str) -> bool:
    """
    Check a signature in constant time.

    A signature of the wrong length is rejected without comparing.
    """
    if not signature:
        return False

    expected = generate_signature(payload, secret)
    if len(expected) != len(signature):
        return False

    return hmac.compare_digest(expected.encode(), signature.encode())


def find_matching_secret(
    payload: str | bytes,
    signature: str,
    candidates: Iterable[tuple[T, str]],
) -> T | None:
    """
    Try each (key, secret) pair and return the key of the first that verifies.

    Used for secret rotation, where several secrets can be live at once.
    """
    for key, secret in candidates:
        if verify_signature(payload, signature, secret):
            return key
    return None


def generate_secret() -> str:
    """Generate a new signing secret (32 random bytes, hex)."""
    return secrets.token_hex(32)


class SecretCipher:
    """
    Symmetric encryption for secrets stored in the database.

    The Fernet key is derived from the process-wide APP_SECRET_KEY.
    """

    def __init__(self, app_secret: str):
        key = base64.urlsafe_b64encode(hashlib.sha256(app_secret.encode()).digest())
        self.cipher = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self.cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        """Decrypt a stored secret. Raises WebhookConfigurationError if it cannot be read."""
        try:
            return self.cipher.decrypt(token.encode()).decode()
        except (InvalidToken, ValueError) as e:
            raise WebhookConfigurationError("Stored secret could not be decrypted") from e
