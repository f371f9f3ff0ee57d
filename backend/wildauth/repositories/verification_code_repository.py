"""Repository for email verification codes.

Claiming is a conditional UPDATE: the row count tells the caller whether
it won. Codes are never deleted.
"""

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wildauth.models.verification_code import EmailVerificationCode


class VerificationCodeRepository:
    """Stateless repository for EmailVerificationCode table operations."""

    @staticmethod
    async def supersede_unused(db: AsyncSession, *, email: str, purpose: str) -> int:
        """Mark every unused code for (email, purpose) as used.

        Args:
            db: Async database session.
            email: Lower-cased email address.
            purpose: Code purpose.

        Returns:
            Number of superseded codes.
        """
        stmt = (
            update(EmailVerificationCode)
            .where(
                EmailVerificationCode.email == email,
                EmailVerificationCode.purpose == purpose,
                EmailVerificationCode.is_used.is_(False),
            )
            .values(is_used=True)
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        code: str,
        purpose: str,
        expires_at: datetime,
        created_at: datetime,
    ) -> EmailVerificationCode:
        """Insert a new unused code.

        Raises:
            sqlalchemy.exc.IntegrityError: If an unused code for
                (email, purpose) still exists.
        """
        row = EmailVerificationCode(
            email=email,
            code=code,
            purpose=purpose,
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
        email: str,
        code: str,
        purpose: str,
        now: datetime,
    ) -> bool:
        """Mark the matching unused, unexpired code as used.

        Returns:
            True if exactly this call consumed the code.
        """
        stmt = (
            update(EmailVerificationCode)
            .where(
                EmailVerificationCode.email == email,
                EmailVerificationCode.code == code,
                EmailVerificationCode.purpose == purpose,
                EmailVerificationCode.is_used.is_(False),
                EmailVerificationCode.expires_at > now,
            )
            .values(is_used=True)
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count == 1

    @staticmethod
    async def release(
        db: AsyncSession,
        *,
        email: str,
        code: str,
        purpose: str,
    ) -> bool:
        """Mark the newest code for (email, purpose) unused again.

        Superseded codes are never revived: the row must be the newest for
        the pair. The partial unique index rejects the update if another
        code for the pair is already unused.

        Returns:
            True if the code was released.

        Raises:
            sqlalchemy.exc.IntegrityError: If an unused code for
                (email, purpose) already exists.
        """
        newest_id = (
            select(func.max(EmailVerificationCode.id))
            .where(
                EmailVerificationCode.email == email,
                EmailVerificationCode.purpose == purpose,
            )
            .scalar_subquery()
        )
        stmt = (
            update(EmailVerificationCode)
            .where(
                EmailVerificationCode.id == newest_id,
                EmailVerificationCode.code == code,
                EmailVerificationCode.is_used.is_(True),
            )
            .values(is_used=False)
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count == 1
