from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable, Optional, Union
from urllib.parse import urlparse, urlunparse

from redis.exceptions import RedisError

from authcore.config import Settings, get_settings, reset_settings_cache
from authcore.logging import get_logger
from authcore.service.auth import CredentialIssuer
from authcore.service.email import EmailService
from authcore.service.registration import RegistrationService
from authcore.service.revocation import RevocationManager
from authcore.service.sessions import SessionValidator
from authcore.service.tokens import TokenCodec
from authcore.storage.memory import MemoryAccountStore, MemoryRevocationStore
from authcore.storage.postgres import PostgresAccountStore
from authcore.storage.redis_cache import RedisRevocationStore, SyncRedisRevocationStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password in a connection URL with ``***`` for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Process-wide wiring of stores and services for the FastAPI app."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: Union[MemoryAccountStore, PostgresAccountStore] = (
                MemoryAccountStore(fs_root=self.settings.shared_fs_root)
                if self.settings.use_memory_store
                else PostgresAccountStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.revocation_store = self._build_revocation_store(clock)

        self.codec = TokenCodec(
            self.settings.jwt_secret,
            clock=clock,
            leeway_seconds=self.settings.clock_skew_leeway_seconds,
        )
        self.issuer = CredentialIssuer(
            self.store, self.codec, token_ttl_hours=self.settings.token_ttl_hours
        )
        self.revocations = RevocationManager(
            self.revocation_store, clock=clock, leeway_seconds=self.codec.leeway_seconds
        )
        self.validator = SessionValidator(self.codec, self.revocations)
        self.email = EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.email_from_address,
            from_name=self.settings.email_from_name,
        )
        self.registration = RegistrationService(
            self.store, self.email, base_url=self.settings.app_base_url
        )
        logger.info("runtime_init_completed")

    def _build_revocation_store(self, clock: Callable[[], float]):
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                # Sync client in test mode avoids binding a pool to one event loop
                store_cls = SyncRedisRevocationStore if self.settings.test_mode else RedisRevocationStore
                store = store_cls(
                    self.settings.redis_url,
                    operation_timeout=self.settings.store_timeout_seconds,
                )
                store.verify_connection()
                return store
            except (RedisError, OSError) as exc:
                redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for token revocation; start Redis or set "
                "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for the in-memory fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            mode=fallback_mode,
            message="Revocations are held in process memory and lost on restart.",
        )
        return MemoryRevocationStore(clock=clock)

    async def check_health(self) -> dict[str, str]:
        """Probe both stores, each bounded by the store timeout."""
        timeout = self.settings.store_timeout_seconds
        status: dict[str, str] = {}
        try:
            await asyncio.wait_for(asyncio.to_thread(self.store.ping), timeout=timeout)
            status["account_store"] = "ok"
        except Exception as exc:
            logger.warning("health_check_failed", component="account_store", error=str(exc))
            status["account_store"] = "unavailable"
        try:
            await asyncio.wait_for(self.revocation_store.ping(), timeout=timeout)
            status["revocation_store"] = "ok"
        except Exception as exc:
            logger.warning("health_check_failed", component="revocation_store", error=str(exc))
            status["revocation_store"] = "unavailable"
        return status

    async def aclose(self) -> None:
        await self.revocation_store.close()
        self.store.close()


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Return the process Runtime, creating it on first use.

    Double-checked locking keeps the common path lock-free.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the runtime from a fresh read of the environment."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            if isinstance(runtime.revocation_store, SyncRedisRevocationStore):
                runtime.revocation_store._sync_client.close()
            runtime.store.close()
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
