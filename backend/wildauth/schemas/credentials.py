"""Domain types shared by the credential stores and services.

Enums are ``(str, Enum)`` so their values compare equal to the strings
stored in the database and sent over the wire.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class CodePurpose(str, Enum):
    """What a verification code authorises."""

    REGISTER = "register"
    RESET_PASSWORD = "reset_password"
    CHANGE_EMAIL = "change_email"


class AccountStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    PENDING = "pending"


class Role(str, Enum):
    ADMIN = "admin"
    AUTHOR = "author"
    USER = "user"


@dataclass(frozen=True)
class Principal:
    """An account that can authenticate.

    Attributes:
        id: Numeric account id.
        username: Unique login name.
        email: Unique email address, lower-cased.
        password_hash: bcrypt hash. Never exposed via to_public().
        status: Only ACTIVE principals may log in.
        role: Authorisation role, carried in access tokens.
        display_name: Name shown on the blog.
        email_verified: Whether a register code was consumed at signup.
        last_login_at: Time of the last successful login.
        created_at: Account creation time.
    """

    id: int
    username: str
    email: str
    password_hash: str
    status: AccountStatus = AccountStatus.ACTIVE
    role: Role = Role.USER
    display_name: str | None = None
    email_verified: bool = False
    last_login_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def to_public(self) -> dict[str, Any]:
        """Return the principal without its password hash."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role.value,
            "status": self.status.value,
            "email_verified": self.email_verified,
            "last_login_at": self.last_login_at,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class NewPrincipal:
    """Fields for an account that does not exist yet."""

    username: str
    email: str
    password_hash: str
    display_name: str | None = None
    email_verified: bool = False
    status: AccountStatus = AccountStatus.ACTIVE
    role: Role = Role.USER


@dataclass(frozen=True)
class IssuedCode:
    """Acknowledgement for an issued verification code.

    The code itself travels only by email; this carries what the caller
    may show the user.
    """

    email: str
    purpose: CodePurpose
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


@dataclass(frozen=True)
class LoginResult:
    """Successful login: a token pair and the public principal."""

    tokens: TokenPair
    principal: Principal
