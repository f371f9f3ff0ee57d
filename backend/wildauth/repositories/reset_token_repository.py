"""Repository for password reset tokens.

Tokens are looked up by the SHA-256 digest of the plaintext; the plaintext
never reaches the database.
"""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wildauth.models.reset_token import PasswordResetToken


class ResetTokenRepository:
    """Stateless repository for PasswordResetToken table operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        token_hash: str,
        principal_id: int,
        expires_at: datetime,
        created_at: datetime,
    ) -> PasswordResetToken:
        row = PasswordResetToken(
            token_hash=token_hash,
            principal_id=principal_id,
            expires_at=expires_at,
            is_used=False,
            created_at=created_at,
        )
        db.add(row)
        await db.flush()
        return row

    @staticmethod
    async def claim(
        db: AsyncSession,
        *,
        token_hash: str,
        now: datetime,
    ) -> int | None:
        """Mark an unused, unexpired token as used.

        The SELECT only finds the owner; the conditional UPDATE decides
        whether this caller won.

        Args:
            db: Async database session.
            token_hash: Hex SHA-256 of the plaintext token.
            now: Current time.

        Returns:
            The owning principal id if this call claimed the token,
            None otherwise.
        """
        owner = await db.execute(
            select(PasswordResetToken.principal_id).where(
                PasswordResetToken.token_hash == token_hash
            )
        )
        principal_id = owner.scalar_one_or_none()
        if principal_id is None:
            return None

        stmt = (
            update(PasswordResetToken)
            .where(
                PasswordResetToken.token_hash == token_hash,
                PasswordResetToken.is_used.is_(False),
                PasswordResetToken.expires_at > now,
            )
            .values(is_used=True, used_at=now)
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return principal_id if row_count == 1 else None

    @staticmethod
    async def revoke_all_for_principal(
        db: AsyncSession,
        *,
        principal_id: int,
        now: datetime,
    ) -> int:
        """Mark every outstanding token of a principal as used.

        Returns:
            Number of revoked tokens.
        """
        stmt = (
            update(PasswordResetToken)
            .where(
                PasswordResetToken.principal_id == principal_id,
                PasswordResetToken.is_used.is_(False),
            )
            .values(is_used=True, used_at=now)
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
