"""Crypto gateway: envelopes, hashes and tokens."""

from reved_compliance.services.crypto.gateway import (
    CryptoGateway,
    canonical_json,
    get_crypto_gateway,
    is_envelope,
)

__all__ = ["CryptoGateway", "canonical_json", "get_crypto_gateway", "is_envelope"]
