from __future__ import annotations
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Boolean, JSON, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.base_class import Base
from . import utcnow

if TYPE_CHECKING:
    from .reward import Reward


class CategoryType(StrEnum):
    FAMILY = "family"
    SCHOOL = "school"
    SPONSOR = "sponsor"
    CUSTOM = "custom"


class SubcategoryType(StrEnum):
    PRIVILEGE = "privilege"
    ITEM = "item"
    EXPERIENCE = "experience"
    DIGITAL = "digital"
    CUSTOM = "custom"


class CreatorRole(StrEnum):
    PARENT = "parent"
    TEACHER = "teacher"
    SCHOOL_ADMIN = "school_admin"
    SOCIAL_WORKER = "social_worker"
    PLATFORM_ADMIN = "platform_admin"
    SYSTEM = "system"


class CategoryVisibility(StrEnum):
    PRIVATE = "private"
    FAMILY = "family"
    CLASS = "class"
    SCHOOL = "school"
    PUBLIC = "public"


class RewardCategory(Base):
    """Classification for rewards.

    System categories are seeded by platform admins and cannot be changed;
    everyone else creates categories scoped by ``visibility``. A category
    with ``parent_category_id`` is a subcategory (one level deep).
    """
    __tablename__ = "reward_category"
    __table_args__ = (
        # names only need to be unique among live categories
        Index(
            "uq_category_name_creator",
            "name",
            "created_by",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("NOT is_deleted"),
        ),
        Index("ix_category_deleted_active", "is_deleted", "is_active"),
        Index("ix_category_featured", "is_featured", "featured_order"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    image: Mapped[str | None] = mapped_column(String(512))
    description: Mapped[str | None] = mapped_column(Text)
    icon: Mapped[str | None] = mapped_column(String(64))
    color: Mapped[str | None] = mapped_column(String(32))
    parent_category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("reward_category.id", ondelete="SET NULL"), index=True
    )

    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    creator_role: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    subcategory_type: Mapped[str | None] = mapped_column(String(32))
    school_id: Mapped[str | None] = mapped_column(String(64), index=True)

    min_point_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_point_value: Mapped[int | None] = mapped_column(Integer)

    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    visibility: Mapped[str] = mapped_column(String(32), default=CategoryVisibility.PRIVATE.value, index=True)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    featured_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # "metadata" is reserved on declarative classes
    extra: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    parent_category: Mapped["RewardCategory | None"] = relationship(remote_side="RewardCategory.id")
    rewards: Mapped[list["Reward"]] = relationship(back_populates="category_ref")

    def soft_delete(self) -> None:
        self.is_deleted = True
        self.is_active = False
