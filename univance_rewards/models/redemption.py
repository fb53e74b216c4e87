from __future__ import annotations
import secrets
import string
import time
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, JSON, Index, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.base_class import Base
from ..errors import RedemptionStateError
from . import utcnow

if TYPE_CHECKING:
    from .reward import Reward

_BASE36 = string.digits + string.ascii_lowercase


class RedemptionStatus(StrEnum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    CANCELED = "canceled"
    EXPIRED = "expired"


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_BASE36[r])
    return "".join(reversed(out))


def generate_redemption_code() -> str:
    timestamp = _to_base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"RDM-{timestamp}-{random_part}".upper()


class RewardRedemption(Base):
    __tablename__ = "reward_redemption"
    __table_args__ = (
        Index("ix_redemption_student_status", "student_id", "status"),
        Index("ix_redemption_reward_status", "reward_id", "status"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    reward_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("reward.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    points_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    redemption_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(16), default=RedemptionStatus.PENDING.value, nullable=False
    )

    fulfillment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    fulfiller_id: Mapped[str | None] = mapped_column(String(64))
    redemption_code: Mapped[str | None] = mapped_column(String(32), unique=True)
    feedback: Mapped[str | None] = mapped_column(Text)
    extra: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)

    cancel_reason: Mapped[str | None] = mapped_column(Text)
    cancelled_by: Mapped[str | None] = mapped_column(String(64))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    reward: Mapped["Reward"] = relationship(back_populates="redemptions")

    def _require_pending(self, action: str) -> None:
        if self.status != RedemptionStatus.PENDING:
            raise RedemptionStateError(f"Can only {action} pending redemptions")

    def fulfill(self, fulfiller_id: str | None, feedback: str | None = None) -> None:
        self._require_pending("fulfill")
        self.status = RedemptionStatus.FULFILLED.value
        self.fulfillment_date = utcnow()
        self.fulfiller_id = fulfiller_id
        if feedback:
            self.feedback = feedback

    def cancel(self, user_id: str | None, reason: str | None = None) -> None:
        self._require_pending("cancel")
        self.status = RedemptionStatus.CANCELED.value
        self.cancelled_by = user_id
        self.cancelled_at = utcnow()
        self.cancel_reason = reason

    def mark_expired(self) -> None:
        self._require_pending("expire")
        self.status = RedemptionStatus.EXPIRED.value


@event.listens_for(RewardRedemption, "before_insert")
def _assign_redemption_code(mapper, connection, target: RewardRedemption) -> None:
    if not target.redemption_code:
        target.redemption_code = generate_redemption_code()
