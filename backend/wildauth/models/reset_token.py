"""Password reset token model.

Only the SHA-256 digest of the emailed token is stored. A token is claimed
by flipping ``is_used`` with a conditional UPDATE.
"""

from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from wildauth.models.base import Base, UTCDateTime


class PasswordResetToken(Base):
    """Outstanding or spent password reset token.

    Attributes:
        id: Integer primary key.
        token_hash: Hex SHA-256 of the plaintext token. Unique.
        principal_id: User the token resets.
        expires_at: Token is rejected at or after this time.
        is_used: Redeemed or revoked.
        used_at: When it was redeemed or revoked.
        created_at: Issue time.
    """

    __tablename__ = "password_reset_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    principal_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    is_used: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
    )
    used_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
