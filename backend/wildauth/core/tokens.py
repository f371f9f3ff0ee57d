"""Signed access and refresh tokens.

Access and refresh tokens are HS256 JWTs signed by two independent
TokenSigner instances, each with its own secret and TTL. Tokens are not
stored server-side; validity is signature plus expiry, with the refresh
revocation list layered on top by the authenticator.

Claims:
- sub: principal id (string, as required by RFC 7519)
- username, role (access tokens only)
- typ: "access" or "refresh"
- iss, aud: issuer and audience from settings
- iat, exp: issued-at and expiry (integer seconds)
- jti: unique token id, used for refresh rotation and logout
"""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import jwt

from wildauth.core.clock import Clock, utc_now
from wildauth.core.config import Settings
from wildauth.core.errors import TokenExpiredError, TokenInvalidError

_ALGORITHM = "HS256"

_REQUIRED_CLAIMS = ["sub", "typ", "iss", "aud", "iat", "exp", "jti"]


class TokenType(str, Enum):
    """Token class, bound into the typ claim."""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """Verified payload of an access or refresh token.

    Attributes:
        principal_id: Numeric id of the principal.
        username: Username at issuance time.
        role: Role at issuance time (access tokens only).
        issued_at: Issue time (UTC, second precision).
        expires_at: Expiry time (UTC, second precision).
        token_id: Unique jti of this token.
        token_type: ACCESS or REFRESH.
    """

    principal_id: int
    username: str
    role: str | None
    issued_at: datetime
    expires_at: datetime
    token_id: str
    token_type: TokenType


class TokenSigner:
    """Signs and verifies one class of token with one secret.

    Expiry is checked against the injected clock rather than PyJWT's wall
    clock so that time-dependent behaviour is testable.
    """

    def __init__(
        self,
        *,
        token_type: TokenType,
        secret: str,
        ttl: timedelta,
        issuer: str,
        audience: str,
        clock: Clock = utc_now,
    ) -> None:
        if not secret:
            msg = f"{token_type.value} token secret must not be empty"
            raise ValueError(msg)
        if ttl <= timedelta(0):
            msg = f"{token_type.value} token TTL must be positive"
            raise ValueError(msg)
        self.token_type = token_type
        self._secret = secret
        self._ttl = ttl
        self._issuer = issuer
        self._audience = audience
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def sign(
        self, *, principal_id: int, username: str, role: str | None = None
    ) -> str:
        """Issue a signed token for the principal.

        Returns:
            Encoded JWT string.
        """
        now = self._clock().replace(microsecond=0)
        payload: dict[str, Any] = {
            "sub": str(principal_id),
            "username": username,
            "typ": self.token_type.value,
            "iss": self._issuer,
            "aud": self._audience,
            "iat": now,
            "exp": now + self._ttl,
            "jti": uuid.uuid4().hex,
        }
        if role is not None:
            payload["role"] = role
        return jwt.encode(payload, self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Verify signature, issuer, audience, type and expiry.

        Signature is checked before expiry, so an expired token signed with
        another secret reports TokenInvalidError, not TokenExpiredError.

        Args:
            token: Encoded JWT.

        Returns:
            Verified claims.

        Raises:
            TokenInvalidError: Bad signature, malformed token, wrong type,
                wrong issuer/audience, or missing claims.
            TokenExpiredError: Valid token past its expiry.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
                options={
                    "require": _REQUIRED_CLAIMS,
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
            if payload["typ"] != self.token_type.value:
                raise TokenInvalidError()
            claims = TokenClaims(
                principal_id=int(payload["sub"]),
                username=str(payload.get("username", "")),
                role=payload.get("role"),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), UTC),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), UTC),
                token_id=str(payload["jti"]),
                token_type=self.token_type,
            )
        except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as exc:
            raise TokenInvalidError() from exc

        if self._clock() >= claims.expires_at:
            raise TokenExpiredError()
        return claims


class TokenIssuer:
    """Issues and verifies access and refresh tokens.

    Holds two signers with independent secrets: an access token never
    verifies against the refresh secret and vice versa.
    """

    def __init__(self, access: TokenSigner, refresh: TokenSigner) -> None:
        if access.token_type is not TokenType.ACCESS:
            raise ValueError("access signer must sign access tokens")
        if refresh.token_type is not TokenType.REFRESH:
            raise ValueError("refresh signer must sign refresh tokens")
        if access._secret == refresh._secret:
            raise ValueError("access and refresh secrets must differ")
        self._access = access
        self._refresh = refresh

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        access_secret: str | None = None,
        refresh_secret: str | None = None,
        clock: Clock = utc_now,
    ) -> "TokenIssuer":
        """Build an issuer from application settings.

        Args:
            settings: Application settings (TTLs, issuer, audience, secrets).
            access_secret: Override for the access secret.
            refresh_secret: Override for the refresh secret.
            clock: Time source for iat/exp and expiry checks.
        """
        common = {
            "issuer": settings.auth_issuer,
            "audience": settings.auth_audience,
            "clock": clock,
        }
        access = TokenSigner(
            token_type=TokenType.ACCESS,
            secret=access_secret or settings.auth_access_secret.get_secret_value(),
            ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            **common,
        )
        refresh = TokenSigner(
            token_type=TokenType.REFRESH,
            secret=refresh_secret or settings.auth_refresh_secret.get_secret_value(),
            ttl=timedelta(days=settings.refresh_token_ttl_days),
            **common,
        )
        return cls(access, refresh)

    @property
    def access_ttl(self) -> timedelta:
        return self._access.ttl

    def issue_access_token(self, principal_id: int, username: str, role: str) -> str:
        return self._access.sign(principal_id=principal_id, username=username, role=role)

    def issue_refresh_token(self, principal_id: int, username: str) -> str:
        return self._refresh.sign(principal_id=principal_id, username=username)

    def verify_access_token(self, token: str) -> TokenClaims:
        return self._access.verify(token)

    def verify_refresh_token(self, token: str) -> TokenClaims:
        return self._refresh.verify(token)
