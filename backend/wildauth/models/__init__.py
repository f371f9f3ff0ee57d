"""SQLAlchemy ORM models for the credential subsystem.

All models are exported from this module for convenient imports:
    from wildauth.models import User, EmailVerificationCode, ...

- user.py: User
- verification_code.py: EmailVerificationCode
- reset_token.py: PasswordResetToken
- rate_limit_slot.py: RateLimitSlot
- revoked_token.py: RevokedToken
"""

from wildauth.models.base import Base
from wildauth.models.rate_limit_slot import RateLimitSlot
from wildauth.models.reset_token import PasswordResetToken
from wildauth.models.revoked_token import RevokedToken
from wildauth.models.user import User
from wildauth.models.verification_code import EmailVerificationCode

__all__ = [
    "Base",
    "EmailVerificationCode",
    "PasswordResetToken",
    "RateLimitSlot",
    "RevokedToken",
    "User",
]
