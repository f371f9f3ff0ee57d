"""Repository for rate limit slots.

``try_advance`` is the compare-and-set: it moves ``last_action_at`` forward
only if the previous action is at least one cooldown old.
"""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wildauth.models.rate_limit_slot import RateLimitSlot


class RateLimitRepository:
    """Stateless repository for RateLimitSlot table operations."""

    @staticmethod
    async def try_advance(
        db: AsyncSession,
        *,
        subject_key: str,
        purpose: str,
        now: datetime,
        threshold: datetime,
    ) -> bool:
        """Record ``now`` if the last action happened at or before ``threshold``.

        Returns:
            True if the slot existed and was advanced.
        """
        stmt = (
            update(RateLimitSlot)
            .where(
                RateLimitSlot.subject_key == subject_key,
                RateLimitSlot.purpose == purpose,
                RateLimitSlot.last_action_at <= threshold,
            )
            .values(last_action_at=now)
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count == 1

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        subject_key: str,
        purpose: str,
        now: datetime,
    ) -> None:
        """Insert the first slot for (subject_key, purpose).

        Raises:
            sqlalchemy.exc.IntegrityError: If the slot already exists.
        """
        db.add(
            RateLimitSlot(subject_key=subject_key, purpose=purpose, last_action_at=now)
        )
        await db.flush()

    @staticmethod
    async def get_last_action(
        db: AsyncSession,
        *,
        subject_key: str,
        purpose: str,
    ) -> datetime | None:
        stmt = select(RateLimitSlot.last_action_at).where(
            RateLimitSlot.subject_key == subject_key,
            RateLimitSlot.purpose == purpose,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()
