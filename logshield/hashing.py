from __future__ import annotations

import os

from cryptography.hazmat.primitives import hashes, hmac


def generate_salt(length: int = 16) -> str:
    """Return a random hex salt of *length* bytes."""
    return os.urandom(length).hex()


def keyed_digest(value: str, salt: str) -> str:
    """HMAC-SHA256 of *value* keyed with *salt*, as a hex string.

    Same value and salt always give the same digest, which is what lets
    hashed log values be correlated across entries without storing them.
    """
    h = hmac.HMAC(salt.encode("utf-8"), hashes.SHA256())
    h.update(value.encode("utf-8"))
    return h.finalize().hex()


def sha256_hex(value: str) -> str:
    """Unkeyed SHA-256 of *value*, as a hex string."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(value.encode("utf-8"))
    return digest.finalize().hex()


def hash_user_id(user_id: str) -> str:
    """One-way reference to a user id, kept in audit entries after erasure."""
    return f"user_{sha256_hex(user_id)[:16]}"
