from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from authcore.logging import get_logger
from authcore.service.errors import (
    AccountNotVerifiedError,
    InvalidCredentialsError,
    ValidationError,
)
from authcore.service.tokens import TokenClaims, TokenCodec
from authcore.storage.models import Account

logger = get_logger(__name__)

USERNAME_MIN_LENGTH = 4
USERNAME_MAX_LENGTH = 20
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 20


class AccountStore(Protocol):
    def find_by_username_or_email(self, username: str, email: str) -> Optional[Account]: ...

    def find_by_username(self, username: str) -> Optional[Account]: ...

    def find_by_verify_key(self, key: str) -> Optional[Account]: ...

    def compare_password(self, account: Optional[Account], plaintext: str) -> bool: ...

    def mark_verified(self, account: Account) -> bool: ...

    def create_pending(self, username: str, email: str, password: str) -> Account: ...


def check_username(username: str) -> str:
    if not isinstance(username, str):
        raise ValidationError("username is required", detail={"field": "username"})
    username = username.strip()
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise ValidationError(
            f"username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters",
            detail={"field": "username"},
        )
    return username


def check_password(password: str) -> str:
    if not isinstance(password, str):
        raise ValidationError("password is required", detail={"field": "password"})
    password = password.strip()
    if not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
        raise ValidationError(
            f"password must be between {PASSWORD_MIN_LENGTH} and {PASSWORD_MAX_LENGTH} characters",
            detail={"field": "password"},
        )
    return password


@dataclass(frozen=True)
class IssuedToken:
    token: str
    claims: TokenClaims


class CredentialIssuer:
    """Password sign-in for verified accounts."""

    def __init__(self, store: AccountStore, codec: TokenCodec, *, token_ttl_hours: int = 24) -> None:
        self.store = store
        self.codec = codec
        self.token_ttl_seconds = int(token_ttl_hours) * 3600

    def issue_session(self, username: str, password: str) -> IssuedToken:
        username = check_username(username)
        password = check_password(password)

        account = self.store.find_by_username(username)
        # Always run the hash compare so unknown users cost the same as a mismatch
        password_ok = self.store.compare_password(account, password)
        if account is None:
            logger.info("signin_rejected", reason="unknown_user")
            raise InvalidCredentialsError()
        if not password_ok:
            logger.info("signin_rejected", reason="password_mismatch", user_id=account.id)
            raise InvalidCredentialsError()
        if not account.is_verified:
            logger.info("signin_rejected", reason="unverified", user_id=account.id)
            raise AccountNotVerifiedError()

        token, claims = self.codec.mint(
            {
                "id": account.id,
                "username": account.username,
                "is_verified": account.is_verified,
                "is_admin": account.is_admin,
            },
            self.token_ttl_seconds,
        )
        logger.info("signin_succeeded", user_id=account.id, exp=claims.exp)
        return IssuedToken(token=token, claims=claims)

    def sign_in(self, username: str, password: str) -> str:
        return self.issue_session(username, password).token
