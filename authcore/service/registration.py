from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from authcore.logging import get_logger
from authcore.service.auth import AccountStore, check_password, check_username
from authcore.service.email import Notifier
from authcore.service.errors import ConflictError, NotFoundError, ValidationError
from authcore.storage.common import normalize_email
from authcore.storage.errors import ConstraintViolation
from authcore.storage.models import Account

logger = get_logger(__name__)

VERIFY_PATH = "/api/users/signup"


def build_verification_url(base_url: str, verify_key: str) -> str:
    return f"{base_url.rstrip('/')}{VERIFY_PATH}?verify_key={quote(verify_key, safe='')}"


@dataclass(frozen=True)
class SignupResult:
    account: Account
    email_sent: bool


class RegistrationService:
    """Sign-up and the one-shot email verification that follows it."""

    def __init__(
        self,
        store: AccountStore,
        notifier: Notifier,
        *,
        base_url: Optional[str] = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.base_url = base_url

    async def signup(
        self, username: str, email: str, password: str, *, base_url: Optional[str] = None
    ) -> SignupResult:
        username = check_username(username)
        password = check_password(password)
        email = normalize_email(email)
        if not email or "@" not in email:
            raise ValidationError("invalid email format", detail={"field": "email"})

        if self.store.find_by_username_or_email(username, email) is not None:
            logger.info("signup_rejected", reason="duplicate")
            raise ConflictError("Email or Username in use")
        try:
            account = self.store.create_pending(username, email, password)
        except ConstraintViolation as exc:
            # Lost a race with a concurrent sign-up for the same name or address
            logger.info("signup_rejected", reason="duplicate", field=exc.detail.get("field"))
            raise ConflictError("Email or Username in use", detail=exc.detail) from exc
        logger.info("account_created", user_id=account.id)

        url = build_verification_url(base_url or self.base_url or "", account.verify_key or "")
        try:
            # Notifier delivery is blocking I/O and runs on a worker thread
            email_sent = bool(
                await asyncio.to_thread(self.notifier.send_verification_email, account, url)
            )
        except Exception as exc:
            # The pending account stays usable; verification mail can be re-sent later
            logger.error(
                "verification_email_failed",
                user_id=account.id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            email_sent = False
        if not email_sent:
            logger.warning("verification_email_not_sent", user_id=account.id)
        return SignupResult(account=account, email_sent=email_sent)

    def verify(self, verify_key: str) -> Account:
        if not verify_key:
            raise NotFoundError("verification key not found")
        account = self.store.find_by_verify_key(verify_key)
        if account is None:
            logger.info("verification_rejected", reason="unknown_key")
            raise NotFoundError("verification key not found")
        if not self.store.mark_verified(account):
            logger.info("verification_rejected", reason="already_consumed", user_id=account.id)
            raise NotFoundError("verification key not found")
        logger.info("account_verified", user_id=account.id)
        return account
