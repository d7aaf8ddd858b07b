"""Tests for key material utilities."""

import re

from src.core.security import (
    API_KEY_MIN_RANDOM_LENGTH,
    API_KEY_PREFIX,
    KEY_PREFIX_LENGTH,
    GeneratedApiKey,
    display_prefix,
    generate_api_key,
    hash_api_key,
    is_valid_api_key_format,
    verify_api_key,
)


class TestGenerateApiKey:
    """Tests for generate_api_key function."""

    def test_generates_key_with_prefix(self) -> None:
        """Test that generated key has correct prefix."""
        material = generate_api_key()
        assert material.plaintext.startswith(API_KEY_PREFIX)

    def test_generates_unique_keys(self) -> None:
        """Test that each call generates a unique key."""
        keys = {generate_api_key().plaintext for _ in range(100)}
        assert len(keys) == 100

    def test_random_part_is_unpadded_base64url(self) -> None:
        """Test that the random part is 43 base64url characters."""
        material = generate_api_key()
        random_part = material.plaintext[len(API_KEY_PREFIX) :]
        assert len(random_part) == API_KEY_MIN_RANDOM_LENGTH
        assert re.fullmatch(r"[A-Za-z0-9_-]+", random_part)

    def test_hash_matches_plaintext(self) -> None:
        """Test that the returned hash is the hash of the plaintext."""
        material = generate_api_key()
        assert material.key_hash == hash_api_key(material.plaintext)

    def test_prefix_is_start_of_random_part(self) -> None:
        """Test that the stored prefix is the first characters after b2b_."""
        material = generate_api_key()
        assert len(material.key_prefix) == KEY_PREFIX_LENGTH
        assert material.plaintext[len(API_KEY_PREFIX) :].startswith(material.key_prefix)

    def test_repr_hides_plaintext(self) -> None:
        """Test that the plaintext never appears in repr."""
        material = generate_api_key()
        assert isinstance(material, GeneratedApiKey)
        assert material.plaintext not in repr(material)


class TestHashAndVerify:
    """Tests for hash_api_key and verify_api_key functions."""

    def test_hash_is_hex_sha256(self) -> None:
        """Test that the hash is 64 lowercase hex characters."""
        hashed = hash_api_key(generate_api_key().plaintext)
        assert re.fullmatch(r"[0-9a-f]{64}", hashed)

    def test_same_key_same_hash(self) -> None:
        """Test that same key produces same hash (deterministic HMAC)."""
        key = generate_api_key().plaintext
        assert hash_api_key(key) == hash_api_key(key)

    def test_verify_correct_key(self) -> None:
        """Test that verification succeeds with correct key."""
        material = generate_api_key()
        assert verify_api_key(material.plaintext, material.key_hash) is True

    def test_verify_accepts_uppercase_hash(self) -> None:
        """Test that stored hashes compare case-insensitively."""
        material = generate_api_key()
        assert verify_api_key(material.plaintext, material.key_hash.upper()) is True

    def test_verify_wrong_key(self) -> None:
        """Test that verification fails with wrong key."""
        first = generate_api_key()
        second = generate_api_key()
        assert verify_api_key(second.plaintext, first.key_hash) is False


class TestIsValidApiKeyFormat:
    """Tests for is_valid_api_key_format function."""

    def test_generated_key_is_valid(self) -> None:
        assert is_valid_api_key_format(generate_api_key().plaintext) is True

    def test_empty_and_none_are_invalid(self) -> None:
        assert is_valid_api_key_format("") is False
        assert is_valid_api_key_format(None) is False

    def test_wrong_prefix_is_invalid(self) -> None:
        random_part = generate_api_key().plaintext[len(API_KEY_PREFIX) :]
        assert is_valid_api_key_format(f"sk_{random_part}") is False

    def test_too_short_is_invalid(self) -> None:
        assert is_valid_api_key_format(API_KEY_PREFIX + "a" * 42) is False

    def test_too_long_is_invalid(self) -> None:
        assert is_valid_api_key_format(API_KEY_PREFIX + "a" * 129) is False

    def test_longest_allowed_is_valid(self) -> None:
        assert is_valid_api_key_format(API_KEY_PREFIX + "a" * 128) is True

    def test_illegal_characters_are_invalid(self) -> None:
        assert is_valid_api_key_format(API_KEY_PREFIX + "a" * 42 + "=") is False
        assert is_valid_api_key_format(API_KEY_PREFIX + "a" * 42 + "+") is False


def test_display_prefix() -> None:
    """Test the human-readable prefix."""
    assert display_prefix("AbCd1234") == "b2b_AbCd1234..."
