"""Credential endpoints.

Thin adapters over the credential services: each endpoint validates the
body, calls one service method and wraps the result in the standard
envelope. Errors raised by the services are rendered by the APIError
handler in ``wildauth.main``.

Security considerations:
- login: same 401 for unknown account, inactive account and wrong password
- verification-codes: per-(email, purpose) cooldown on top of the IP limit
- forgot-password: identical response whether or not the email has an account
- refresh: rotated refresh tokens cannot be replayed
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from wildauth.api.deps import Services
from wildauth.core.rate_limiting import (
    EMAIL_REQUEST_LIMIT,
    LOGIN_LIMIT,
    TOKEN_LIMIT,
    limiter,
)
from wildauth.core.responses import DataResponse
from wildauth.schemas.credentials import CodePurpose, TokenPair

router = APIRouter()

_FORGOT_PASSWORD_ACK = (
    "If an account exists for this email, a password reset link has been sent."
)


# ===================================================================
# Request models
# ===================================================================


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(extra="forbid")

    identifier: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class CodeRequest(BaseModel):
    """Request body for POST /auth/verification-codes."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    purpose: CodePurpose


class CodeConfirmRequest(BaseModel):
    """Request body for POST /auth/verification-codes/verify."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    code: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")
    purpose: CodePurpose


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(extra="forbid")

    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    display_name: str | None = Field(None, max_length=100)
    verification_code: str | None = Field(None, max_length=6)


class ForgotPasswordRequest(BaseModel):
    """Request body for POST /auth/forgot-password."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(min_length=1, max_length=256)
    new_password: str = Field(min_length=1, max_length=128)


class RefreshTokenRequest(BaseModel):
    """Request body for POST /auth/refresh and POST /auth/logout."""

    model_config = ConfigDict(extra="forbid")

    refresh_token: str = Field(min_length=1, max_length=4096)


def _token_data(tokens: TokenPair) -> dict:
    return {
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
        "token_type": tokens.token_type,
        "expires_in": tokens.expires_in,
    }


# ===================================================================
# POST /auth/login
# ===================================================================


@router.post("/login")
@limiter.limit(LOGIN_LIMIT)
async def login(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: LoginRequest,
    services: Services,
) -> DataResponse[dict]:
    """Log in with username or email and password.

    Returns an access token, a refresh token and the public user.
    """
    result = await services.authenticator.login(body.identifier, body.password)
    return DataResponse(
        data={**_token_data(result.tokens), "user": result.principal.to_public()}
    )


# ===================================================================
# Verification codes
# ===================================================================


@router.post("/verification-codes", status_code=202)
@limiter.limit(EMAIL_REQUEST_LIMIT)
async def request_verification_code(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: CodeRequest,
    services: Services,
) -> DataResponse[dict]:
    """Email a six-digit code for the given purpose.

    The code itself is never returned in the response.
    """
    issued = await services.codes.issue_code(body.email, body.purpose)
    return DataResponse(
        data={
            "email": issued.email,
            "purpose": issued.purpose.value,
            "expires_at": issued.expires_at,
            "message": "Verification code sent",
        }
    )


@router.post("/verification-codes/verify")
@limiter.limit(TOKEN_LIMIT)
async def confirm_verification_code(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: CodeConfirmRequest,
    services: Services,
) -> DataResponse[dict]:
    """Consume a verification code."""
    await services.codes.consume_code(body.email, body.code, body.purpose)
    return DataResponse(data={"verified": True})


# ===================================================================
# POST /auth/register
# ===================================================================


@router.post("/register", status_code=201)
@limiter.limit(EMAIL_REQUEST_LIMIT)
async def register(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: RegisterRequest,
    services: Services,
) -> DataResponse[dict]:
    """Create an account, consuming a register code when one is given."""
    principal = await services.authenticator.register(
        username=body.username,
        email=body.email,
        password=body.password,
        display_name=body.display_name,
        verification_code=body.verification_code,
    )
    return DataResponse(data=principal.to_public())


# ===================================================================
# Password reset
# ===================================================================


@router.post("/forgot-password")
@limiter.limit(EMAIL_REQUEST_LIMIT)
async def forgot_password(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ForgotPasswordRequest,
    services: Services,
) -> DataResponse[dict]:
    """Send a reset link. The response never reveals whether the email exists."""
    await services.authenticator.request_password_reset(body.email)
    return DataResponse(data={"message": _FORGOT_PASSWORD_ACK})


@router.post("/reset-password")
@limiter.limit(TOKEN_LIMIT)
async def reset_password(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ResetPasswordRequest,
    services: Services,
) -> DataResponse[dict]:
    """Set a new password with a reset token."""
    await services.authenticator.confirm_reset(body.token, body.new_password)
    return DataResponse(data={"message": "Password has been reset"})


# ===================================================================
# Tokens
# ===================================================================


@router.post("/refresh")
@limiter.limit(TOKEN_LIMIT)
async def refresh(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: RefreshTokenRequest,
    services: Services,
) -> DataResponse[dict]:
    """Exchange a refresh token for a new access token (and refresh token)."""
    tokens = await services.authenticator.refresh_access_token(body.refresh_token)
    return DataResponse(data=_token_data(tokens))


@router.post("/logout")
@limiter.limit(TOKEN_LIMIT)
async def logout(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: RefreshTokenRequest,
    services: Services,
) -> DataResponse[dict]:
    """Revoke a refresh token."""
    await services.authenticator.logout(body.refresh_token)
    return DataResponse(data={"message": "Logged out"})
