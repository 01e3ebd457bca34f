from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Path

from blur.api.schemas import (
    AuthCodeRequest,
    Envelope,
    MemberResponse,
    PasswordResetRequest,
    ReissueRequest,
    RoleChangeRequest,
    SigninRequest,
    SignupRequest,
    TokenPairResponse,
)
from blur.service.auth import AuthContext
from blur.service.runtime import get_runtime
from blur.service.tokens import TokenPair
from blur.service.validation import SignupData
from blur.storage.models import Role

router = APIRouter(prefix="/v1")


def _token_response(pair: TokenPair) -> TokenPairResponse:
    return TokenPairResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        access_expires_at=pair.access_expires_at,
        refresh_expires_at=pair.refresh_expires_at,
    )


async def get_member(authorization: Optional[str] = Header(None)) -> AuthContext:
    runtime = get_runtime()
    return await runtime.auth.authenticate(authorization)


async def get_admin_member(authorization: Optional[str] = Header(None)) -> AuthContext:
    runtime = get_runtime()
    return await runtime.auth.authenticate(authorization, required_role=Role.ADMIN)


@router.post("/auth/signup", response_model=Envelope, status_code=201, tags=["auth"])
async def signup(body: SignupRequest):
    """Register a member with email, nickname and password.

    Raises:
        400: If a field fails validation
        409: If the email or nickname is already registered
    """
    runtime = get_runtime()
    created = await runtime.auth.create_account(
        SignupData(email=body.email, nickname=body.nickname, password=body.password)
    )
    return Envelope(status="ok", data=created)


@router.post("/auth/signin", response_model=Envelope, tags=["auth"])
async def signin(body: SigninRequest):
    """Exchange email and password for an access/refresh token pair.

    Raises:
        401: If the credentials do not match an account
        403: If the account is inactive
    """
    runtime = get_runtime()
    pair = await runtime.auth.login(body.email, body.password)
    return Envelope(status="ok", data=_token_response(pair))


@router.post("/auth/reissue", response_model=Envelope, tags=["auth"])
async def reissue(body: ReissueRequest):
    """Trade the current refresh token for a new pair; the old one stops working."""
    runtime = get_runtime()
    pair = await runtime.auth.reissue_token(body.refresh_token)
    return Envelope(status="ok", data=_token_response(pair))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(principal: AuthContext = Depends(get_member)):
    runtime = get_runtime()
    await runtime.auth.logout(principal.account_id)
    return Envelope(status="ok", data=True)


@router.get("/auth/check/nickname/{nickname}", response_model=Envelope, tags=["auth"])
async def check_nickname(nickname: str = Path(..., max_length=64)):
    runtime = get_runtime()
    available = await runtime.auth.check_nickname_availability(nickname)
    return Envelope(status="ok", data=available)


@router.get("/auth/email/{email}", response_model=Envelope, tags=["auth"])
async def send_email_auth_code(email: str = Path(..., max_length=320)):
    """Email a verification code that proves ownership of the address."""
    runtime = get_runtime()
    sent = await runtime.auth.create_email_auth_code(email)
    return Envelope(status="ok", data=sent)


@router.post("/auth/email", response_model=Envelope, tags=["auth"])
async def verify_email_auth_code(body: AuthCodeRequest):
    runtime = get_runtime()
    verified = await runtime.auth.validate_email_auth_code(body.email, body.code)
    return Envelope(status="ok", data=verified)


@router.get("/auth/password/email/{email}", response_model=Envelope, tags=["auth"])
async def send_password_auth_code(email: str = Path(..., max_length=320)):
    """Email a password-reset code.

    Always answers ``true`` so callers cannot probe which addresses are registered.
    """
    runtime = get_runtime()
    sent = await runtime.auth.create_password_auth_code(email)
    return Envelope(status="ok", data=sent)


@router.post("/auth/password/email", response_model=Envelope, tags=["auth"])
async def verify_password_auth_code(body: AuthCodeRequest):
    runtime = get_runtime()
    verified = await runtime.auth.validate_password_auth_code(body.email, body.code)
    return Envelope(status="ok", data=verified)


@router.post("/auth/password/reset", response_model=Envelope, tags=["auth"])
async def reset_password(body: PasswordResetRequest):
    runtime = get_runtime()
    changed = await runtime.auth.reset_password(body.email, body.new_password)
    return Envelope(status="ok", data=changed)


@router.get("/members/me", response_model=Envelope, tags=["members"])
async def get_me(principal: AuthContext = Depends(get_member)):
    runtime = get_runtime()
    account = await runtime.auth.get_account(principal.account_id)
    return Envelope(status="ok", data=MemberResponse.from_account(account))


@router.post("/admin/members/{account_id}/role", response_model=Envelope, tags=["admin"])
async def change_member_role(
    body: RoleChangeRequest,
    account_id: str = Path(..., max_length=64),
    principal: AuthContext = Depends(get_admin_member),
):
    runtime = get_runtime()
    account = await runtime.auth.set_account_role(account_id, body.role)
    return Envelope(status="ok", data=MemberResponse.from_account(account))
