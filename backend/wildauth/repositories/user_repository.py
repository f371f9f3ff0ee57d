"""Repository for User lookups and the few writes the credential flows make.

The credential subsystem only writes ``last_login_at`` (login),
``password_hash`` (reset confirmation) and whole rows (registration).
"""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wildauth.models.user import User


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static; there is no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: int) -> User | None:
        """Fetch a user by primary key.

        Args:
            db: Async database session.
            user_id: Integer primary key.

        Returns:
            User if found, None otherwise.
        """
        return await db.get(User, user_id)

    @staticmethod
    async def get_by_username(db: AsyncSession, username: str) -> User | None:
        stmt = select(User).where(User.username == username)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        """Fetch a user by email address (case-insensitive).

        Args:
            db: Async database session.
            email: Email address to look up.

        Returns:
            User if found, None otherwise.
        """
        stmt = select(User).where(User.email == email.lower())
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        username: str,
        email: str,
        password_hash: str,
        display_name: str | None = None,
        email_verified: bool = False,
        status: str = "active",
        role: str = "user",
    ) -> User:
        """Create a new user.

        Email is normalized to lowercase before storage.

        Returns:
            Created User with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If username or email already exists.
        """
        user = User(
            username=username,
            email=email.lower(),
            password_hash=password_hash,
            display_name=display_name,
            email_verified=email_verified,
            status=status,
            role=role,
        )
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def update_password_hash(
        db: AsyncSession, user_id: int, password_hash: str
    ) -> bool:
        """Replace a user's password hash.

        Returns:
            True if the user exists and was updated.
        """
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(password_hash=password_hash)
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count == 1

    @staticmethod
    async def update_last_login(
        db: AsyncSession, user_id: int, logged_in_at: datetime
    ) -> None:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(last_login_at=logged_in_at)
        )
        await db.execute(stmt)
