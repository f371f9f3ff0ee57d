"""User model - principals that can authenticate.

Email addresses are stored lower-cased so the unique index is
case-insensitive in effect.
"""

from datetime import datetime

from sqlalchemy import Boolean, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from wildauth.models.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """Blog account.

    Attributes:
        id: Integer primary key.
        username: Unique login name.
        email: Unique email address, lower-cased.
        password_hash: bcrypt hash.
        display_name: Name shown on the blog.
        avatar: Avatar URL.
        bio: Profile text.
        role: "admin", "author" or "user".
        status: "active", "suspended" or "pending". Only active users log in.
        email_verified: True once a register code was consumed.
        last_login_at: Time of the last successful login.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    avatar: Mapped[str | None] = mapped_column(Text(), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text(), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default="user",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default="active",
    )
    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
    )
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)
