import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...clients import NotificationClient, PointsServiceClient, UserServiceClient
from ...errors import InsufficientPointsError, RedemptionStateError, ServiceClientError
from ...models.redemption import RewardRedemption
from ...schemas.common import Pagination
from ...schemas.redemption import RedeemRequest, FulfillRequest, CancelRequest, RedemptionOut
from ...services import redemption_service, reward_service
from ...services.permissions import (
    school_of,
    teacher_class_ids,
    can_handle_redemption,
    owns_redemption,
    can_view_redemption,
)
from ..deps import (
    CurrentUser,
    get_db,
    get_current_user,
    get_user_client,
    get_points_client,
    get_notification_client,
    require_roles,
    valid_id,
)

logger = logging.getLogger(__name__)

router = APIRouter()

SCHOOL_CREATOR_TYPES = ("school", "school_admin", "teacher")


def _out(redemption: RewardRedemption, directory: redemption_service.StudentDirectory) -> RedemptionOut:
    out = RedemptionOut.model_validate(redemption)
    out.student_info = directory.info(redemption.student_id)
    return out


def _student_profile_id(current: CurrentUser, users: UserServiceClient) -> str:
    student_id = current.profile_id("student")
    if student_id:
        return student_id
    try:
        return str(users.get_student_me()["_id"])
    except (ServiceClientError, KeyError, TypeError) as e:
        logger.error(f"Failed to get student profile for user {current.id}: {e}")
        raise HTTPException(500, {"message": "Failed to get student profile", "error": str(e)})


def _children_of(current: CurrentUser, users: UserServiceClient) -> list[str]:
    try:
        parent = users.get_parent_by_user(current.id) or {}
    except ServiceClientError as e:
        logger.error(f"Failed to get parent details for user {current.id}: {e}")
        return []
    return [str(c) for c in parent.get("childIds") or []]


def _load(db: Session, redemption_id: str) -> RewardRedemption:
    valid_id(redemption_id, "redemption")
    redemption = redemption_service.get_redemption(db, redemption_id)
    if not redemption:
        raise HTTPException(404, "Redemption not found")
    return redemption


def _actor_id(current: CurrentUser, role: str | None) -> str | None:
    if role in ("parent", "student"):
        return current.profile_id(role)
    return current.id


@router.post("/{reward_id}/redeem", status_code=201)
def redeem(
    reward_id: str,
    payload: RedeemRequest | None = None,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_roles("student", "parent")),
    users: UserServiceClient = Depends(get_user_client),
    points: PointsServiceClient = Depends(get_points_client),
    notifier: NotificationClient = Depends(get_notification_client),
):
    payload = payload or RedeemRequest()
    valid_id(reward_id, "reward")
    reward = reward_service.get_reward(db, reward_id)
    if not reward:
        raise HTTPException(404, "Reward not found")
    if not reward.can_be_redeemed():
        raise HTTPException(400, {"message": "Reward cannot be redeemed", "reason": reward.unavailable_reason()})

    if current.has_role("student"):
        student_id = _student_profile_id(current, users)
        if payload.student_id and payload.student_id != student_id:
            raise HTTPException(403, "Students can only redeem rewards for themselves")
    else:
        student_id = payload.student_id
        if not student_id or student_id not in _children_of(current, users):
            raise HTTPException(403, "You can only redeem rewards for your own children")

    try:
        redemption = redemption_service.redeem_reward(
            db, reward,
            student_id=student_id,
            awarded_by=current.id,
            awarded_by_role=current.roles[0] if current.roles else None,
            points=points,
            notifier=notifier,
        )
    except InsufficientPointsError as e:
        raise HTTPException(400, {
            "message": str(e),
            "data": {"current_balance": e.current_balance, "required": e.required},
        })
    except ServiceClientError as e:
        logger.error(f"Points service error while redeeming reward {reward.id}: {e}")
        raise HTTPException(500, {"message": "Failed to process points transaction", "error": str(e)})

    directory = redemption_service.StudentDirectory(users)
    return {
        "success": True,
        "message": "Reward redeemed successfully",
        "data": {
            "redemption": _out(redemption, directory),
            "redemption_code": redemption.redemption_code,
        },
    }


@router.get("/redemptions")
def history(
    student_id: str | None = None,
    reward_id: str | None = None,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    role: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = "redemptionDate",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    users: UserServiceClient = Depends(get_user_client),
):
    scope: dict = {}
    if current.has_role("student"):
        scope["student_ids"] = [_student_profile_id(current, users)]
    elif current.has_role("parent"):
        children = _children_of(current, users)
        if student_id:
            if student_id not in children:
                raise HTTPException(403, "You can only view redemptions of your own children")
            children = [student_id]
        scope["student_ids"] = children
    elif role == "school_admin" and current.has_role("school_admin"):
        scope["school_id"] = school_of(current)
        scope["school_creator_types"] = SCHOOL_CREATOR_TYPES
    elif role == "teacher" and current.has_role("teacher"):
        scope["class_ids"] = teacher_class_ids(current)
    elif not current.is_admin:
        raise HTTPException(403, "Not authorized to view redemption history")

    if student_id and "student_ids" not in scope:
        scope["student_ids"] = [student_id]

    try:
        redemptions, total = redemption_service.redemption_history(
            db, **scope,
            reward_id=reward_id, status=status, start_date=start_date, end_date=end_date,
            page=page, limit=limit, sort=sort, order=order,
        )
    except redemption_service.InvalidSortError as e:
        raise HTTPException(400, str(e))

    directory = redemption_service.StudentDirectory(users)
    return {
        "success": True,
        "data": {
            "redemptions": [_out(r, directory) for r in redemptions],
            "pagination": Pagination.build(total, page, limit),
        },
    }


@router.get("/redemptions/pending")
def pending(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    users: UserServiceClient = Depends(get_user_client),
):
    if current.has_role("parent"):
        scope = {"creator_id": current.profile_id("parent")}
    elif current.has_role("school_admin"):
        scope = {"school_id": school_of(current)}
    elif current.has_role("platform_admin"):
        scope = {}
    else:
        raise HTTPException(403, "Not authorized to view pending redemptions")

    redemptions, total = redemption_service.pending_redemptions(db, **scope, page=page, limit=limit)
    directory = redemption_service.StudentDirectory(users)
    return {
        "success": True,
        "data": {
            "redemptions": [_out(r, directory) for r in redemptions],
            "pagination": Pagination.build(total, page, limit),
        },
    }


@router.get("/redemptions/{redemption_id}")
def get_one(
    redemption_id: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    users: UserServiceClient = Depends(get_user_client),
):
    redemption = _load(db, redemption_id)
    if not can_view_redemption(current, redemption):
        raise HTTPException(403, "Not authorized to view this redemption")
    return {"success": True, "data": _out(redemption, redemption_service.StudentDirectory(users))}


@router.put("/redemptions/{redemption_id}/fulfill")
def fulfill(
    redemption_id: str,
    payload: FulfillRequest,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    users: UserServiceClient = Depends(get_user_client),
    notifier: NotificationClient = Depends(get_notification_client),
):
    redemption = _load(db, redemption_id)
    if not can_handle_redemption(current, payload.role, redemption.reward):
        raise HTTPException(403, "Not authorized to fulfill this redemption")
    try:
        redemption = redemption_service.fulfill_redemption(
            db, redemption,
            fulfiller_id=_actor_id(current, payload.role),
            feedback=payload.feedback,
            notifier=notifier,
        )
    except RedemptionStateError as e:
        raise HTTPException(400, str(e))
    return {
        "success": True,
        "message": "Redemption fulfilled successfully",
        "data": _out(redemption, redemption_service.StudentDirectory(users)),
    }


@router.post("/redemptions/{redemption_id}/cancel")
def cancel(
    redemption_id: str,
    payload: CancelRequest,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    users: UserServiceClient = Depends(get_user_client),
    points: PointsServiceClient = Depends(get_points_client),
    notifier: NotificationClient = Depends(get_notification_client),
):
    redemption = _load(db, redemption_id)
    is_owner = payload.role == "student" and owns_redemption(current, redemption)
    if not is_owner and not can_handle_redemption(current, payload.role, redemption.reward):
        raise HTTPException(403, "Not authorized to cancel this redemption")
    try:
        redemption = redemption_service.cancel_redemption(
            db, redemption,
            cancelled_by=_actor_id(current, payload.role),
            role=payload.role,
            reason=payload.reason,
            points=points,
            notifier=notifier,
        )
    except RedemptionStateError as e:
        raise HTTPException(400, str(e))
    return {
        "success": True,
        "message": "Redemption cancelled successfully",
        "data": _out(redemption, redemption_service.StudentDirectory(users)),
    }
