"""Key material utilities for integration API keys.

Generation, one-way hashing and format checks for the credentials handed to
integration partners. Nothing in this module keeps state.
"""

import base64
import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass, field

# Fixed product prefix for identification
API_KEY_PREFIX = "b2b_"
API_KEY_BYTES = 32  # 32 bytes = 256 bits of entropy

# base64url of 32 bytes without padding is 43 characters
API_KEY_MIN_RANDOM_LENGTH = 43
API_KEY_MAX_RANDOM_LENGTH = 128

# Number of characters of the random portion kept in cleartext
KEY_PREFIX_LENGTH = 8

# Fixed key for HMAC hashing.
# API keys are already high-entropy, so no per-key salt is needed and the
# hash stays deterministic for indexed lookup.
_HASH_SECRET = b"b2b-integration-api-key-hash-v1"

_FORMAT_PATTERN = re.compile(
    rf"^{re.escape(API_KEY_PREFIX)}"
    rf"[A-Za-z0-9_-]{{{API_KEY_MIN_RANDOM_LENGTH},{API_KEY_MAX_RANDOM_LENGTH}}}$"
)


@dataclass(frozen=True)
class GeneratedApiKey:
    """Freshly generated key material.

    The plaintext lives only as long as this object. Only ``key_hash`` and
    ``key_prefix`` may be persisted.
    """

    plaintext: str = field(repr=False)
    key_hash: str
    key_prefix: str


def generate_api_key() -> GeneratedApiKey:
    """Generate a new API key.

    Returns:
        GeneratedApiKey with plaintext in format ``b2b_<base64url>``,
        its hash and its display prefix
    """
    random_part = (
        base64.urlsafe_b64encode(secrets.token_bytes(API_KEY_BYTES))
        .decode("ascii")
        .rstrip("=")
    )
    plaintext = f"{API_KEY_PREFIX}{random_part}"
    return GeneratedApiKey(
        plaintext=plaintext,
        key_hash=hash_api_key(plaintext),
        key_prefix=random_part[:KEY_PREFIX_LENGTH],
    )


def hash_api_key(api_key: str) -> str:
    """Hash an API key for storage and lookup using HMAC-SHA256.

    Args:
        api_key: The full plaintext API key, including its prefix

    Returns:
        The hex-encoded HMAC-SHA256 hash
    """
    return hmac.new(
        _HASH_SECRET,
        api_key.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_api_key(plain_key: str, hashed_key: str) -> bool:
    """Verify a plaintext API key against its hash.

    Args:
        plain_key: The plaintext API key to verify
        hashed_key: The stored hash to verify against

    Returns:
        True if the key matches, False otherwise
    """
    return hmac.compare_digest(hash_api_key(plain_key), hashed_key.lower())


def is_valid_api_key_format(api_key: str | None) -> bool:
    """Check if an API key has valid format.

    Cheap first-line filter applied before any hashing or lookup.

    Args:
        api_key: The presented API key

    Returns:
        True if the format is valid, False otherwise
    """
    if not api_key:
        return False
    return _FORMAT_PATTERN.match(api_key) is not None


def display_prefix(key_prefix: str) -> str:
    """Render a stored key prefix for humans, e.g. ``b2b_AbCd1234...``."""
    return f"{API_KEY_PREFIX}{key_prefix}..."
