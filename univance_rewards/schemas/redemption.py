from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field
from .common import ORMModel, Pagination, metadata_field


class RedeemRequest(BaseModel):
    student_id: str | None = None


class FulfillRequest(BaseModel):
    feedback: str | None = None
    role: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None
    role: str | None = None


class RedemptionReward(ORMModel):
    id: str
    title: str
    category: str | None = None
    subcategory: str | None = None
    points_cost: int
    image: str | None = None
    creator_id: str
    creator_type: str
    school_id: str | None = None
    class_id: str | None = None


class StudentInfo(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    avatar: str | None = None
    grade: str | int | None = None

    @classmethod
    def from_details(cls, details: dict | None) -> "StudentInfo | None":
        if not details:
            return None
        user = details.get("userId") or {}
        if not isinstance(user, dict):
            user = {}
        return cls(
            first_name=user.get("firstName") or "",
            last_name=user.get("lastName") or "",
            email=user.get("email") or "",
            avatar=user.get("avatar"),
            grade=details.get("grade"),
        )


class RedemptionOut(ORMModel):
    id: str
    reward_id: str
    reward: RedemptionReward | None = None
    student_id: str
    points_spent: int
    redemption_date: datetime
    status: str
    fulfillment_date: datetime | None = None
    fulfiller_id: str | None = None
    redemption_code: str | None = None
    feedback: str | None = None
    metadata: dict[str, Any] = metadata_field()
    cancel_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    student_info: StudentInfo | None = Field(default=None)


class RedemptionPage(BaseModel):
    redemptions: list[RedemptionOut]
    pagination: Pagination
