from __future__ import annotations

import math
import time
from typing import Callable, Optional, Protocol

from authcore.logging import get_logger
from authcore.service.tokens import TokenClaims

logger = get_logger(__name__)

REVOKED_SENTINEL = "invalid"


class RevocationStore(Protocol):
    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def close(self) -> None: ...


class RevocationManager:
    """Records signed-out tokens until the moment they would expire anyway."""

    def __init__(
        self,
        store: RevocationStore,
        *,
        clock: Callable[[], float] = time.time,
        leeway_seconds: int = 0,
    ) -> None:
        self.store = store
        self._clock = clock
        # Must match the codec leeway, or the entry lapses while the token still verifies
        self.leeway_seconds = max(0, int(leeway_seconds))

    def remaining_ttl(self, claims: TokenClaims) -> int:
        # Round up so the entry never lapses before the token does
        return math.ceil(claims.exp + self.leeway_seconds - self._clock())

    async def sign_out(self, claims: TokenClaims) -> None:
        ttl = self.remaining_ttl(claims)
        if ttl <= 0:
            logger.info("signout_token_already_expired", user_id=claims.id)
            return
        await self.store.set_with_ttl(claims.revocation_key(), REVOKED_SENTINEL, ttl)
        logger.info("token_revoked", user_id=claims.id, ttl=ttl)

    async def is_revoked(self, claims: TokenClaims) -> bool:
        return await self.store.get(claims.revocation_key()) is not None
