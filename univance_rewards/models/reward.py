from __future__ import annotations
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Iterable
from uuid import uuid4

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Boolean, JSON, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.base_class import Base
from . import utcnow, as_utc

if TYPE_CHECKING:
    from .reward_category import RewardCategory
    from .redemption import RewardRedemption


class CreatorType(StrEnum):
    PARENT = "parent"
    TEACHER = "teacher"
    SCHOOL = "school"
    SCHOOL_ADMIN = "school_admin"
    SOCIAL_WORKER = "social_worker"
    SPONSOR = "sponsor"
    SYSTEM = "system"


# deprecated enum fields, still accepted on input and in filters
class LegacyCategory(StrEnum):
    FAMILY = "family"
    SCHOOL = "school"
    SPONSOR = "sponsor"


class LegacySubcategory(StrEnum):
    PRIVILEGE = "privilege"
    ITEM = "item"
    EXPERIENCE = "experience"
    DIGITAL = "digital"


class Reward(Base):
    __tablename__ = "reward"
    __table_args__ = (
        Index("ix_reward_creator_category", "creator_id", "category"),
        Index("ix_reward_school_active", "school_id", "is_active"),
        Index("ix_reward_class_active", "class_id", "is_active"),
        Index("ix_reward_category_id_active", "category_id", "is_active"),
        Index("ix_reward_expiry_active", "expiry_date", "is_active"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    category: Mapped[str | None] = mapped_column(String(32))
    subcategory: Mapped[str | None] = mapped_column(String(32))
    category_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("reward_category.id", ondelete="SET NULL"),
    )
    category_name: Mapped[str | None] = mapped_column(String(128))
    subcategory_name: Mapped[str | None] = mapped_column(String(32))

    points_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    auth_user_id: Mapped[str | None] = mapped_column(String(64))
    creator_type: Mapped[str] = mapped_column(String(32), nullable=False)
    school_id: Mapped[str | None] = mapped_column(String(64))
    class_id: Mapped[str | None] = mapped_column(String(64))

    limited_quantity: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    quantity: Mapped[int | None] = mapped_column(Integer)
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    image: Mapped[str | None] = mapped_column(String(512))

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_visible_to_children: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    redemption_instructions: Mapped[str | None] = mapped_column(Text)
    restrictions: Mapped[str | None] = mapped_column(Text)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    extra: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    category_ref: Mapped["RewardCategory | None"] = relationship(back_populates="rewards")
    parent_hides: Mapped[list["RewardParentHide"]] = relationship(
        back_populates="reward",
        cascade="all,delete-orphan",
    )
    redemptions: Mapped[list["RewardRedemption"]] = relationship(back_populates="reward")

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return self.expiry_date is not None and as_utc(self.expiry_date) < now

    def can_be_redeemed(self, now: datetime | None = None) -> bool:
        if not self.is_active or self.is_deleted:
            return False
        if self.is_expired(now):
            return False
        if self.limited_quantity and (self.quantity or 0) <= 0:
            return False
        return True

    def unavailable_reason(self, now: datetime | None = None) -> str:
        if not self.is_active:
            return "Reward is not active"
        if self.is_expired(now):
            return "Reward has expired"
        if self.limited_quantity and (self.quantity or 0) <= 0:
            return "Reward is out of stock"
        return "Unknown reason"

    def decrement_quantity(self) -> bool:
        if self.limited_quantity and (self.quantity or 0) > 0:
            self.quantity -= 1
            return True
        return False

    def restore_quantity(self) -> None:
        if self.limited_quantity:
            self.quantity = (self.quantity or 0) + 1

    def soft_delete(self) -> None:
        self.is_deleted = True
        self.is_active = False

    def is_hidden_by(self, parent_id: str | None) -> bool:
        return any(h.parent_id == parent_id for h in self.parent_hides)

    def is_visible_to_student(self, parent_ids: Iterable[str]) -> bool:
        if not self.is_visible_to_children:
            return False
        parent_ids = set(parent_ids or [])
        return not any(h.parent_id in parent_ids for h in self.parent_hides)

    def controllable_by_parent(self, parent_id: str | None, children: list[dict]) -> bool:
        """Whether the reward reaches one of the parent's children."""
        if self.creator_type == CreatorType.SYSTEM:
            return True
        if self.creator_type == CreatorType.PARENT and self.creator_id == parent_id:
            return True
        for child in children:
            if self.class_id and self.class_id in child.get("class_ids", []):
                return True
            if self.school_id and not self.class_id and self.school_id == child.get("school_id"):
                return True
        return False

    def toggle_parent_visibility(self, parent_id: str, is_visible: bool) -> tuple[bool, str]:
        hidden = self.is_hidden_by(parent_id)
        if is_visible:
            if not hidden:
                return False, "Reward is already visible to your children"
            self.parent_hides = [h for h in self.parent_hides if h.parent_id != parent_id]
        else:
            if hidden:
                return False, "Reward is already hidden from your children"
            self.parent_hides.append(RewardParentHide(parent_id=parent_id))
        return True, "ok"


class RewardParentHide(Base):
    """A parent hiding a reward from its children."""
    __tablename__ = "reward_parent_hide"
    __table_args__ = (UniqueConstraint("reward_id", "parent_id", name="uq_hide_reward_parent"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    reward_id: Mapped[str] = mapped_column(String(36), ForeignKey("reward.id", ondelete="CASCADE"), index=True)
    parent_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    hidden_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    reward: Mapped["Reward"] = relationship(back_populates="parent_hides")
