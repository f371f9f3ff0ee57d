"""Revoked refresh token model.

Rows can be purged once ``expires_at`` has passed: an expired token is
rejected by its signature check regardless.
"""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from wildauth.models.base import Base


class RevokedToken(Base):
    """Refresh token id that must no longer be accepted.

    Attributes:
        jti: JWT id of the revoked token.
        expires_at: Original expiry of the token.
        revoked_at: When it was rotated out or logged out.
    """

    __tablename__ = "revoked_tokens"

    jti: Mapped[str] = mapped_column(String(64), primary_key=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    revoked_at: Mapped[datetime] = mapped_column(nullable=False)
