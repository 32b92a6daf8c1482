"""Encryption configuration settings.

Key material used by the crypto gateway to seal audit details and
cold-storage snapshots.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EncryptionSettings(BaseSettings):
    """Symmetric encryption configuration.

    Attributes:
        key: Secret passphrase the AES key is derived from.
        salt: KDF salt.
        kdf_iterations: PBKDF2 iteration count.
    """

    key: str = Field(default="", alias="ENCRYPTION_KEY")
    salt: str = Field(default="reved-kids-compliance", alias="ENCRYPTION_SALT")
    kdf_iterations: int = Field(default=390_000, alias="ENCRYPTION_KDF_ITERATIONS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        """Reject short keys while allowing an unset one."""
        if v and len(v) < 16:
            raise ValueError("ENCRYPTION_KEY must be at least 16 characters")
        return v

    @property
    def is_configured(self) -> bool:
        """Check if an encryption key is configured."""
        return bool(self.key)
