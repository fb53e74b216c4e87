from pydantic import BaseModel, Field, StrictBool, field_validator, model_validator
from datetime import datetime
from typing import Any
from .common import ORMModel, Pagination, metadata_field
from .category import CategorySummary
from ..models.reward import LegacyCategory, LegacySubcategory


class RewardCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    points_cost: int = Field(ge=0)
    category_id: str | None = None
    category: LegacyCategory | None = None
    subcategory: LegacySubcategory | None = None
    limited_quantity: bool = False
    quantity: int | None = Field(default=None, ge=0)
    expiry_date: datetime | None = None
    redemption_instructions: str | None = None
    restrictions: str | None = None
    school_id: str | None = None
    class_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_featured: bool = False
    is_visible_to_children: bool = True
    # acting role of a multi-role user; decides creator_type/creator_id
    role: str | None = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    @model_validator(mode="after")
    def quantity_for_limited(self):
        if self.limited_quantity and self.quantity is None:
            raise ValueError("quantity is required when limited_quantity is set")
        return self


class RewardUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    points_cost: int | None = Field(default=None, ge=0)
    category_id: str | None = None
    category: LegacyCategory | None = None
    subcategory: LegacySubcategory | None = None
    limited_quantity: bool | None = None
    quantity: int | None = Field(default=None, ge=0)
    expiry_date: datetime | None = None
    redemption_instructions: str | None = None
    restrictions: str | None = None
    school_id: str | None = None
    class_id: str | None = None
    metadata: dict[str, Any] | None = None
    is_active: bool | None = None
    is_featured: bool | None = None
    is_visible_to_children: bool | None = None
    role: str | None = None

    @field_validator(
        "description", "points_cost", "limited_quantity", "is_active", "is_featured", "is_visible_to_children"
    )
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("field cannot be null")
        return v

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str | None) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("title must not be blank")
        return v


class RewardOut(ORMModel):
    id: str
    title: str
    description: str
    category: str | None = None
    subcategory: str | None = None
    category_id: str | None = None
    category_name: str | None = None
    subcategory_name: str | None = None
    category_info: CategorySummary | None = Field(default=None, validation_alias="category_ref")
    points_cost: int
    creator_id: str
    creator_type: str
    school_id: str | None = None
    class_id: str | None = None
    limited_quantity: bool
    quantity: int | None = None
    expiry_date: datetime | None = None
    image: str | None = None
    is_active: bool
    is_featured: bool
    is_visible_to_children: bool
    redemption_instructions: str | None = None
    restrictions: str | None = None
    metadata: dict[str, Any] = metadata_field()
    created_at: datetime
    updated_at: datetime


class ParentRewardOut(RewardOut):
    can_parent_control: bool = False
    is_hidden_by_parent: bool = False
    is_visible_to_my_children: bool = True


class StudentRewardOut(RewardOut):
    is_in_wishlist: bool = False


class RewardPage(BaseModel):
    rewards: list[RewardOut]
    pagination: Pagination


class VisibilityToggle(BaseModel):
    is_visible: StrictBool


class StudentRef(BaseModel):
    # defaults to the calling student's own profile
    student_id: str | None = None


class EligibilityOut(BaseModel):
    eligible: bool
    points_required: int | None = None
    current_balance: int | None = None
    reason: str | None = None


class WishlistItemOut(ORMModel):
    id: str
    student_id: str
    reward_id: str
    reward: RewardOut | None = None
    created_at: datetime
