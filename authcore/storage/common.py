"""Helpers shared between the memory and postgres account stores.

Both backends hash, compare and mint verification keys the same way so an
account created by one can be read back by the other.
"""

from __future__ import annotations

import secrets
from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from authcore.storage.models import Account

_pwd_hasher = PasswordHasher(type=Type.ID)

# Verified against when the account is missing so lookups of unknown
# usernames cost the same as a password mismatch.
_DUMMY_HASH = _pwd_hasher.hash(secrets.token_urlsafe(16))


def hash_password(password: str) -> str:
    return _pwd_hasher.hash(password)


def verify_password_hash(stored_hash: Optional[str], password: str) -> bool:
    if not stored_hash:
        stored_hash = _DUMMY_HASH
        missing = True
    else:
        missing = False
    try:
        matched = _pwd_hasher.verify(stored_hash, password)
    except (InvalidHash, VerifyMismatchError, VerificationError):
        return False
    return matched and not missing


def compare_account_password(account: Optional[Account], password: str) -> bool:
    return verify_password_hash(account.password_hash if account else None, password)


def generate_verify_key() -> str:
    """URL-safe single-use key emailed to confirm an address."""
    return secrets.token_urlsafe(32)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()
