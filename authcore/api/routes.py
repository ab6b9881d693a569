from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response

from authcore.api.schemas import (
    CurrentUserResponse,
    Envelope,
    SigninRequest,
    SigninResponse,
    SignupRequest,
    SignupResponse,
)
from authcore.logging import get_logger
from authcore.service.errors import ForbiddenError
from authcore.service.runtime import get_runtime
from authcore.service.tokens import TokenClaims

logger = get_logger(__name__)

router = APIRouter(prefix="/api/users")


async def get_identity(
    x_access_token: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> TokenClaims:
    """Authenticated caller for protected routes; raises on any rejection."""
    runtime = get_runtime()
    return await runtime.validator.authenticate(x_access_token, authorization)


async def get_presented_identity(
    x_access_token: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> TokenClaims:
    """Signed, unexpired caller; an already signed-out token still qualifies."""
    runtime = get_runtime()
    return runtime.validator.identify(x_access_token, authorization)


@router.post("/signup", response_model=Envelope, status_code=201, tags=["auth"])
async def signup(body: SignupRequest, request: Request):
    """Create a pending account and email its verification link.

    Raises:
        403: If sign-up is disabled
        409: If the username or email is already registered
    """
    runtime = get_runtime()
    if not runtime.settings.allow_signup:
        raise ForbiddenError("signup is disabled")
    result = await runtime.registration.signup(
        body.username,
        body.email,
        body.password,
        base_url=runtime.settings.app_base_url or str(request.base_url),
    )
    return Envelope(
        status="ok",
        data=SignupResponse(
            username=result.account.username,
            email=result.account.email,
            email_sent=result.email_sent,
        ),
    )


@router.get("/signup", response_model=Envelope, tags=["auth"])
async def verify_signup(
    response: Response,
    verify_key: Optional[str] = Query(None, max_length=256),
):
    """Consume a verification key, or acknowledge a sent verification email.

    Without ``verify_key`` this is where clients land after sign-up.
    """
    if verify_key is None:
        response.status_code = 201
        return Envelope(status="ok", data={"message": "Email has been sent"})
    runtime = get_runtime()
    runtime.registration.verify(verify_key)
    return Envelope(status="ok", data={"status": "verified"})


@router.post("/signin", response_model=Envelope, tags=["auth"])
async def signin(body: SigninRequest):
    runtime = get_runtime()
    issued = runtime.issuer.issue_session(body.username, body.password)
    return Envelope(
        status="ok",
        data=SigninResponse(
            token=issued.token,
            expires_at=datetime.fromtimestamp(issued.claims.exp, tz=timezone.utc),
        ),
    )


@router.post("/signout", response_model=Envelope, tags=["auth"])
async def signout(identity: TokenClaims = Depends(get_presented_identity)):
    """Revoke the presented token until its natural expiry.

    Repeating the call with the same token succeeds again.
    """
    runtime = get_runtime()
    await runtime.revocations.sign_out(identity)
    return Envelope(status="ok", data={})


@router.get("/currentuser", response_model=Envelope, tags=["auth"])
async def current_user(identity: TokenClaims = Depends(get_identity)):
    return Envelope(
        status="ok",
        data=CurrentUserResponse(user_id=identity.id, username=identity.username),
    )
