"""Rate limit slot model - last allowed action per (subject, purpose)."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from wildauth.models.base import Base


class RateLimitSlot(Base):
    """Cooldown bookkeeping row.

    Attributes:
        subject_key: Who is throttled (a lower-cased email address).
        purpose: Which action is throttled.
        last_action_at: Time of the last allowed action.
    """

    __tablename__ = "rate_limit_slots"

    subject_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    purpose: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_action_at: Mapped[datetime] = mapped_column(nullable=False)
