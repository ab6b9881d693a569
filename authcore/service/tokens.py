"""Compact HS256 session tokens.

Tokens are ``header.payload.signature`` with each segment base64url-encoded
without padding. The signature is an HMAC-SHA256 over the first two segments
exactly as transmitted, so any change to the signed text is caught before the
payload is parsed.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Mapping, Tuple

from authcore.logging import get_logger
from authcore.service.errors import (
    InvalidSignatureError,
    MalformedTokenError,
    TokenExpiredError,
)

logger = get_logger(__name__)

REVOCATION_KEY_PREFIX = "auth:revoked:"
_HEADER = {"alg": "HS256", "typ": "JWT"}
_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_MAX_TOKEN_LENGTH = 4096


@dataclass(frozen=True)
class TokenClaims:
    id: str
    username: str
    is_verified: bool
    is_admin: bool
    iat: int
    exp: int

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    def canonical(self) -> str:
        """Deterministic serialization: sorted keys, no whitespace."""
        return json.dumps(self.to_payload(), sort_keys=True, separators=(",", ":"))

    def revocation_key(self) -> str:
        digest = hashlib.sha256(self.canonical().encode("utf-8")).hexdigest()
        return f"{REVOCATION_KEY_PREFIX}{digest}"

    @classmethod
    def from_payload(cls, payload: Any) -> "TokenClaims":
        if not isinstance(payload, dict):
            raise MalformedTokenError()
        try:
            ident = payload["id"]
            username = payload["username"]
            is_verified = payload["is_verified"]
            is_admin = payload["is_admin"]
            iat = payload["iat"]
            exp = payload["exp"]
        except KeyError as exc:
            raise MalformedTokenError(detail={"missing": exc.args[0]}) from exc
        if not isinstance(ident, str) or not isinstance(username, str):
            raise MalformedTokenError()
        if not isinstance(is_verified, bool) or not isinstance(is_admin, bool):
            raise MalformedTokenError()
        # bool is an int subclass; reject it for timestamps
        for stamp in (iat, exp):
            if isinstance(stamp, bool) or not isinstance(stamp, int):
                raise MalformedTokenError()
        return cls(
            id=ident,
            username=username,
            is_verified=is_verified,
            is_admin=is_admin,
            iat=iat,
            exp=exp,
        )


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenCodec:
    def __init__(
        self,
        secret: str,
        *,
        clock: Callable[[], float] = time.time,
        leeway_seconds: int = 0,
    ) -> None:
        if not secret:
            raise ValueError("signing secret is required")
        self._key = secret.encode("utf-8")
        self._clock = clock
        self.leeway_seconds = max(0, int(leeway_seconds))

    def _sign(self, signing_input: str) -> str:
        return _encode_segment(
            hmac.new(self._key, signing_input.encode("ascii"), hashlib.sha256).digest()
        )

    def mint(self, identity: Mapping[str, Any], ttl_seconds: int) -> Tuple[str, TokenClaims]:
        """Sign ``identity`` with ``iat``/``exp`` stamped from the clock."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        iat = int(self._clock())
        claims = TokenClaims(
            id=str(identity["id"]),
            username=identity["username"],
            is_verified=bool(identity["is_verified"]),
            is_admin=bool(identity["is_admin"]),
            iat=iat,
            exp=iat + int(ttl_seconds),
        )
        header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
        payload_enc = _encode_segment(claims.canonical().encode("utf-8"))
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}", claims

    def issue(self, identity: Mapping[str, Any], ttl_seconds: int) -> str:
        token, _ = self.mint(identity, ttl_seconds)
        return token

    def verify(self, token: str) -> TokenClaims:
        if not isinstance(token, str) or not token or len(token) > _MAX_TOKEN_LENGTH:
            logger.info("token_malformed", reason="length")
            raise MalformedTokenError()
        parts = token.split(".")
        if len(parts) != 3 or not all(_SEGMENT_RE.match(part) for part in parts):
            logger.info("token_malformed", reason="structure")
            raise MalformedTokenError()
        header_b64, payload_b64, sig_b64 = parts

        expected = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected.encode("ascii"), sig_b64.encode("ascii")):
            logger.warning("token_signature_invalid")
            raise InvalidSignatureError()

        try:
            header = json.loads(_decode_segment(header_b64))
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.info("token_malformed", reason="decode", error=str(exc))
            raise MalformedTokenError() from exc
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("token_malformed", reason="algorithm")
            raise MalformedTokenError()
        claims = TokenClaims.from_payload(payload)

        now = self._clock()
        if not now < claims.exp + self.leeway_seconds:
            logger.info("token_expired", user_id=claims.id, exp=claims.exp)
            raise TokenExpiredError()
        return claims
