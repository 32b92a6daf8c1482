"""Crypto gateway.

Seals structured payloads into AES-256-GCM envelopes and provides the
hashing and token primitives used by the compliance services.

Envelope format::

    {"cipher": <hex>, "iv": <hex>, "tag": <hex>, "algorithm": "aes-256-gcm"}
"""

import hashlib
import hmac
import json
import secrets
import uuid
from collections.abc import Mapping
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from reved_compliance.services.errors import CryptoError
from reved_compliance.settings import settings
from reved_compliance.utils.logger import setup_logger

logger = setup_logger("services.crypto")

ALGORITHM = "aes-256-gcm"
_NONCE_BYTES = 12
_TAG_BYTES = 16
_ENVELOPE_KEYS = frozenset({"cipher", "iv", "tag"})


def canonical_json(data: Any) -> str:
    """Deterministic JSON used for checksums.

    Args:
        data: JSON-compatible value.

    Returns:
        Compact JSON with sorted keys.
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def is_envelope(value: Any) -> bool:
    """Whether a value looks like an encrypted envelope."""
    return isinstance(value, Mapping) and _ENVELOPE_KEYS.issubset(value.keys())


class CryptoGateway:
    """Encrypt/decrypt envelopes, hash and generate tokens.

    Attributes:
        key_id: Short fingerprint of the derived key.
    """

    def __init__(
        self,
        secret: str | None = None,
        salt: str | None = None,
        iterations: int | None = None,
    ) -> None:
        """Derive the AES key from a passphrase.

        Args:
            secret: Passphrase (defaults to ENCRYPTION_KEY).
            salt: KDF salt (defaults to ENCRYPTION_SALT).
            iterations: PBKDF2 iterations (defaults to settings).

        Raises:
            CryptoError: If no passphrase is configured.
        """
        secret = secret if secret is not None else settings.encryption.key
        if not secret:
            raise CryptoError("ENCRYPTION_KEY is not configured")

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=(salt or settings.encryption.salt).encode("utf-8"),
            iterations=iterations or settings.encryption.kdf_iterations,
        )
        key = kdf.derive(secret.encode("utf-8"))
        self._aead = AESGCM(key)
        self.key_id = hashlib.sha256(key).hexdigest()[:16]

    # =========================================================================
    # ENVELOPES
    # =========================================================================

    def encrypt_envelope(self, data: Any) -> dict[str, str]:
        """Encrypt a JSON-compatible value.

        Args:
            data: Value to seal.

        Returns:
            Envelope with hex cipher, iv and tag.
        """
        nonce = secrets.token_bytes(_NONCE_BYTES)
        plaintext = json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")
        sealed = self._aead.encrypt(nonce, plaintext, None)
        return {
            "cipher": sealed[:-_TAG_BYTES].hex(),
            "iv": nonce.hex(),
            "tag": sealed[-_TAG_BYTES:].hex(),
            "algorithm": ALGORITHM,
        }

    def decrypt_envelope(self, envelope: Mapping[str, Any]) -> Any:
        """Decrypt an envelope produced by :meth:`encrypt_envelope`.

        Args:
            envelope: Envelope mapping.

        Returns:
            Original value.

        Raises:
            CryptoError: If the envelope is malformed or fails authentication.
        """
        if not is_envelope(envelope):
            raise CryptoError("Malformed encryption envelope")
        try:
            nonce = bytes.fromhex(envelope["iv"])
            sealed = bytes.fromhex(envelope["cipher"]) + bytes.fromhex(envelope["tag"])
            plaintext = self._aead.decrypt(nonce, sealed, None)
        except (InvalidTag, ValueError) as e:
            logger.error(f"decrypt_failed: key={self.key_id}")
            raise CryptoError("Decryption failed") from e
        return json.loads(plaintext.decode("utf-8"))

    # =========================================================================
    # HASHING AND TOKENS
    # =========================================================================

    @staticmethod
    def sha256(data: str | bytes) -> str:
        """SHA-256 hex digest.

        Args:
            data: Text (UTF-8 encoded) or bytes.

        Returns:
            64-character hex digest.
        """
        if isinstance(data, str):
            data = data.encode("utf-8")
        return hashlib.sha256(data).hexdigest()

    def checksum(self, data: Any) -> str:
        """SHA-256 over the canonical JSON of a value."""
        return self.sha256(canonical_json(data))

    @staticmethod
    def random_token(nbytes: int = 32) -> str:
        """Random hex token.

        Args:
            nbytes: Entropy in bytes.

        Returns:
            Hex string of length 2 * nbytes.
        """
        return secrets.token_hex(nbytes)

    @staticmethod
    def random_id() -> str:
        """Random UUID4 string."""
        return str(uuid.uuid4())

    @staticmethod
    def secure_compare(left: str, right: str) -> bool:
        """Constant-time string comparison."""
        return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


# =============================================================================
# SINGLETON
# =============================================================================

_crypto: CryptoGateway | None = None


def get_crypto_gateway() -> CryptoGateway:
    """Get the application-wide crypto gateway.

    Returns:
        CryptoGateway built from settings.
    """
    global _crypto  # noqa: PLW0603
    if _crypto is None:
        _crypto = CryptoGateway()
    return _crypto
