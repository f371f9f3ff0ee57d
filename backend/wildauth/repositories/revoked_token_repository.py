"""Repository for revoked refresh token ids."""

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from wildauth.models.revoked_token import RevokedToken


class RevokedTokenRepository:
    """Stateless repository for RevokedToken table operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        jti: str,
        expires_at: datetime,
        revoked_at: datetime,
    ) -> None:
        """Insert a revocation.

        Raises:
            sqlalchemy.exc.IntegrityError: If the jti is already revoked.
        """
        db.add(RevokedToken(jti=jti, expires_at=expires_at, revoked_at=revoked_at))
        await db.flush()

    @staticmethod
    async def exists(db: AsyncSession, jti: str) -> bool:
        result = await db.execute(
            select(RevokedToken.jti).where(RevokedToken.jti == jti)
        )
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def delete_expired(db: AsyncSession, now: datetime) -> int:
        """Delete revocations whose tokens have expired anyway.

        Args:
            db: Async database session.
            now: Current time.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(RevokedToken).where(RevokedToken.expires_at <= now)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
