"""Domain types and Pydantic request/response schemas."""

from wildauth.schemas.credentials import (
    AccountStatus,
    CodePurpose,
    IssuedCode,
    LoginResult,
    NewPrincipal,
    Principal,
    Role,
    TokenPair,
)

__all__ = [
    "AccountStatus",
    "CodePurpose",
    "IssuedCode",
    "LoginResult",
    "NewPrincipal",
    "Principal",
    "Role",
    "TokenPair",
]
