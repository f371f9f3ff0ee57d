"""Email verification code model.

Six-digit codes sent by email, one purpose each. Rows are never deleted;
superseded and consumed codes keep ``is_used = true``. A partial unique
index allows at most one unused code per (email, purpose).
"""

from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from wildauth.models.base import Base, UTCDateTime

_UNUSED = text("NOT is_used")


class EmailVerificationCode(Base):
    """One issued verification code.

    Attributes:
        id: Integer primary key.
        email: Lower-cased recipient address.
        code: Six-digit numeric string.
        purpose: "register", "reset_password" or "change_email".
        expires_at: Code is rejected at or after this time.
        is_used: Consumed or superseded.
        created_at: Issue time.
    """

    __tablename__ = "email_verification_codes"
    __table_args__ = (
        Index(
            "uq_email_verification_codes_unused",
            "email",
            "purpose",
            unique=True,
            postgresql_where=_UNUSED,
            sqlite_where=_UNUSED,
        ),
        Index("ix_email_verification_codes_lookup", "email", "code", "purpose"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    purpose: Mapped[str] = mapped_column(String(20), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    is_used: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )
