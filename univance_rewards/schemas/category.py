from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field, field_validator
from .common import ORMModel, Pagination, metadata_field
from ..models.reward_category import CategoryType, SubcategoryType, CategoryVisibility


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1)
    type: CategoryType
    description: str | None = None
    image: str | None = None
    icon: str | None = None
    color: str | None = None
    parent_category_id: str | None = None
    subcategory_type: SubcategoryType | None = None
    school_id: str | None = None
    min_point_value: int = 0
    max_point_value: int | None = None
    visibility: CategoryVisibility = CategoryVisibility.PRIVATE
    display_order: int = 0
    is_featured: bool = False
    featured_order: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class CategoryUpdate(BaseModel):
    name: str | None = None
    type: CategoryType | None = None
    description: str | None = None
    image: str | None = None
    icon: str | None = None
    color: str | None = None
    parent_category_id: str | None = None
    subcategory_type: SubcategoryType | None = None
    school_id: str | None = None
    min_point_value: int | None = None
    max_point_value: int | None = None
    visibility: CategoryVisibility | None = None
    display_order: int | None = None
    is_featured: bool | None = None
    featured_order: int | None = None
    is_active: bool | None = None
    metadata: dict[str, Any] | None = None

    @field_validator(
        "name", "type", "min_point_value", "visibility", "display_order", "is_featured", "featured_order", "is_active"
    )
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("field cannot be null")
        return v

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str | None) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("name must not be blank")
        return v


class CategorySummary(ORMModel):
    id: str
    name: str
    type: str
    subcategory_type: str | None = None


class CategoryOut(ORMModel):
    id: str
    name: str
    description: str | None = None
    image: str | None = None
    icon: str | None = None
    color: str | None = None
    parent_category_id: str | None = None
    parent_category: CategorySummary | None = None
    created_by: str
    creator_role: str
    type: str
    subcategory_type: str | None = None
    school_id: str | None = None
    min_point_value: int
    max_point_value: int | None = None
    is_system: bool
    visibility: str
    display_order: int
    is_featured: bool
    featured_order: int
    is_active: bool
    metadata: dict[str, Any] = metadata_field()
    created_at: datetime
    updated_at: datetime


class CategoryNode(ORMModel):
    category: CategoryOut
    subcategories: list[CategoryOut] = []


class CategoryPage(BaseModel):
    categories: list[CategoryOut]
    pagination: Pagination
