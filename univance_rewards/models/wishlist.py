from __future__ import annotations
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.base_class import Base
from . import utcnow

if TYPE_CHECKING:
    from .reward import Reward


class RewardWishlist(Base):
    __tablename__ = "reward_wishlist"
    __table_args__ = (UniqueConstraint("student_id", "reward_id", name="uq_wishlist_student_reward"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    student_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    reward_id: Mapped[str] = mapped_column(String(36), ForeignKey("reward.id", ondelete="CASCADE"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    reward: Mapped["Reward"] = relationship()
