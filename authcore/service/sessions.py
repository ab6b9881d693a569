from __future__ import annotations

from typing import Optional

from authcore.logging import get_logger
from authcore.service.errors import TokenRevokedError, UnauthenticatedError
from authcore.service.revocation import RevocationManager
from authcore.service.tokens import TokenClaims, TokenCodec

logger = get_logger(__name__)


def extract_token(
    access_token: Optional[str], authorization: Optional[str]
) -> Optional[str]:
    """Pick the token from ``x-access-token`` first, then a bearer header."""
    if access_token and access_token.strip():
        return access_token.strip()
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


class SessionValidator:
    def __init__(self, codec: TokenCodec, revocations: RevocationManager) -> None:
        self.codec = codec
        self.revocations = revocations

    def identify(
        self,
        access_token: Optional[str] = None,
        authorization: Optional[str] = None,
    ) -> TokenClaims:
        """Verify the presented token without consulting the revocation store."""
        token = extract_token(access_token, authorization)
        if token is None:
            raise UnauthenticatedError()
        return self.codec.verify(token)

    async def authenticate(
        self,
        access_token: Optional[str] = None,
        authorization: Optional[str] = None,
    ) -> TokenClaims:
        """Resolve the caller's claims from request headers.

        Raises the codec's token errors unchanged, ``TokenRevokedError`` for a
        signed-out token, and lets ``StoreUnavailable`` propagate so an outage
        is never read as "not revoked".
        """
        claims = self.identify(access_token, authorization)
        if await self.revocations.is_revoked(claims):
            logger.info("token_rejected_revoked", user_id=claims.id)
            raise TokenRevokedError()
        return claims
