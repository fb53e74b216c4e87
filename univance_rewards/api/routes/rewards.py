import logging

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.orm import Session

from ...clients import PointsServiceClient, UserServiceClient
from ...core.config import settings
from ...errors import CategoryResolutionError, InvalidRewardError, ServiceClientError
from ...models.reward import Reward
from ...schemas.common import Pagination
from ...schemas.reward import (
    RewardCreate,
    RewardUpdate,
    RewardOut,
    ParentRewardOut,
    StudentRewardOut,
    VisibilityToggle,
    StudentRef,
    EligibilityOut,
    WishlistItemOut,
)
from ...services import reward_service
from ...services.permissions import reward_creator, can_manage_reward, school_of
from ..deps import (
    MANAGER_ROLES,
    CurrentUser,
    get_db,
    get_current_user,
    get_user_client,
    get_points_client,
    require_roles,
    valid_id,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _load(db: Session, reward_id: str) -> Reward:
    valid_id(reward_id, "reward")
    reward = reward_service.get_reward(db, reward_id)
    if not reward:
        raise HTTPException(404, "Reward not found")
    return reward


def _managed(db: Session, reward_id: str, current: CurrentUser, action: str) -> Reward:
    reward = _load(db, reward_id)
    if not can_manage_reward(current, reward):
        raise HTTPException(403, f"Not authorized to {action} this reward")
    return reward


def _student_id(current: CurrentUser, requested: str | None) -> str:
    """The student a request is about: a student's own profile, or the given id."""
    if current.has_role("student"):
        own = current.profile_id("student")
        if requested and requested != own:
            raise HTTPException(403, "Students can only act on their own behalf")
        if not own:
            raise HTTPException(400, "Student profile not found")
        return own
    if not requested:
        raise HTTPException(400, "Student ID is required")
    return requested


@router.post("", status_code=201)
def create(
    payload: RewardCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_roles(*MANAGER_ROLES)),
):
    role = payload.role or next(r for r in MANAGER_ROLES if current.has_role(r))
    if role not in MANAGER_ROLES or not current.has_role(role):
        raise HTTPException(403, "Access denied. Insufficient permissions.")

    creator_id, creator_type = reward_creator(current, role)
    if not creator_id:
        raise HTTPException(400, f"No {role} profile found for this user")
    if role in ("teacher", "school_admin") and not payload.school_id:
        payload.school_id = school_of(current)

    try:
        reward = reward_service.create_reward(
            db, payload=payload, creator_id=creator_id, creator_type=creator_type, auth_user_id=current.id
        )
    except (CategoryResolutionError, InvalidRewardError) as e:
        raise HTTPException(400, str(e))
    return {
        "success": True,
        "message": "Reward created successfully",
        "data": RewardOut.model_validate(reward),
    }


@router.get("")
def list_all(
    category_id: str | None = None,
    category: str | None = None,
    subcategory: str | None = None,
    creator_type: str | None = None,
    creator_id: str | None = None,
    school_id: str | None = None,
    class_id: str | None = None,
    min_points: int | None = Query(None, ge=0),
    max_points: int | None = Query(None, ge=0),
    search: str | None = None,
    is_featured: bool | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = "createdAt",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    try:
        rewards, total = reward_service.list_rewards(
            db,
            category_id=category_id, category=category, subcategory=subcategory,
            creator_type=creator_type, creator_id=creator_id, school_id=school_id, class_id=class_id,
            min_points=min_points, max_points=max_points, search=search, is_featured=is_featured,
            page=page, limit=limit, sort=sort, order=order,
        )
    except reward_service.InvalidSortError as e:
        raise HTTPException(400, str(e))
    return {
        "success": True,
        "data": {
            "rewards": [RewardOut.model_validate(r) for r in rewards],
            "pagination": Pagination.build(total, page, limit),
        },
    }


@router.get("/parent")
def parent_view(
    category_id: str | None = None,
    category: str | None = None,
    subcategory: str | None = None,
    search: str | None = None,
    is_featured: bool | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = "createdAt",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_roles("parent")),
    users: UserServiceClient = Depends(get_user_client),
):
    try:
        children = reward_service.load_children(users)
    except ServiceClientError as e:
        logger.error(f"Error getting parent/children details for user {current.id}: {e}")
        raise HTTPException(500, {"message": "Failed to get parent information", "error": str(e)})

    try:
        rows, total, parent_info = reward_service.parent_rewards(
            db,
            parent_id=current.profile_id("parent"),
            children=children,
            category_id=category_id, category=category, subcategory=subcategory,
            search=search, is_featured=is_featured,
            page=page, limit=limit, sort=sort, order=order,
        )
    except reward_service.InvalidSortError as e:
        raise HTTPException(400, str(e))

    rewards = []
    for row in rows:
        out = ParentRewardOut.model_validate(row["reward"])
        out.can_parent_control = row["can_parent_control"]
        out.is_hidden_by_parent = row["is_hidden_by_parent"]
        out.is_visible_to_my_children = row["is_visible_to_my_children"]
        rewards.append(out)
    return {
        "success": True,
        "data": {
            "rewards": rewards,
            "parent_info": parent_info,
            "pagination": Pagination.build(total, page, limit),
        },
    }


@router.get("/student")
def student_view(
    category_id: str | None = None,
    category: str | None = None,
    subcategory: str | None = None,
    search: str | None = None,
    is_featured: bool | None = None,
    wishlist_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = "createdAt",
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_roles("student")),
    users: UserServiceClient = Depends(get_user_client),
):
    student = current.profile("student")
    student_id = current.profile_id("student")
    if not student_id:
        raise HTTPException(400, "Student profile not found")

    try:
        classes = users.get_student_classes(student_id)
    except ServiceClientError as e:
        logger.error(f"Error getting student details for {student_id}: {e}")
        if wishlist_only:
            return {
                "success": True,
                "data": {"rewards": [], "pagination": Pagination.build(0, page, limit)},
            }
        raise HTTPException(500, {"message": "Failed to get student information", "error": str(e)})
    class_ids = [str(c.get("_id")) for c in classes if c.get("_id")]

    try:
        rows, total = reward_service.student_rewards(
            db,
            student=student,
            class_ids=class_ids,
            wishlist_only=wishlist_only,
            category_id=category_id, category=category, subcategory=subcategory,
            search=search, is_featured=is_featured,
            page=page, limit=limit, sort=sort, order=order,
        )
    except reward_service.InvalidSortError as e:
        raise HTTPException(400, str(e))

    rewards = []
    for row in rows:
        out = StudentRewardOut.model_validate(row["reward"])
        out.is_in_wishlist = row["is_in_wishlist"]
        rewards.append(out)
    return {
        "success": True,
        "data": {
            "rewards": rewards,
            "student_info": {
                "student_id": student_id,
                "parent_ids": student.get("parentIds") or [],
                "school_id": student.get("schoolId"),
                "class_ids": class_ids,
            },
            "pagination": Pagination.build(total, page, limit),
        },
    }


@router.get("/wishlist/{student_id}")
def wishlist(
    student_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    student_id = _student_id(current, student_id)
    items, total = reward_service.get_wishlist(db, student_id=student_id, page=page, limit=limit)
    return {
        "success": True,
        "data": {
            "wishlist": [WishlistItemOut.model_validate(i) for i in items],
            "pagination": Pagination.build(total, page, limit),
        },
    }


@router.post("/{reward_id}/wishlist", status_code=201)
def add_wishlist(
    reward_id: str,
    payload: StudentRef | None = None,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    reward = _load(db, reward_id)
    student_id = _student_id(current, (payload or StudentRef()).student_id)
    item = reward_service.add_to_wishlist(db, student_id=student_id, reward_id=reward.id)
    if not item:
        raise HTTPException(409, "Reward already in wishlist")
    return {
        "success": True,
        "message": "Reward added to wishlist",
        "data": WishlistItemOut.model_validate(item),
    }


@router.delete("/{reward_id}/wishlist")
def remove_wishlist(
    reward_id: str,
    payload: StudentRef | None = None,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    valid_id(reward_id, "reward")
    student_id = _student_id(current, (payload or StudentRef()).student_id)
    if not reward_service.remove_from_wishlist(db, student_id=student_id, reward_id=reward_id):
        raise HTTPException(404, "Reward not found in wishlist")
    return {"success": True, "message": "Reward removed from wishlist"}


@router.get("/{reward_id}")
def get_one(reward_id: str, db: Session = Depends(get_db), current: CurrentUser = Depends(get_current_user)):
    return {"success": True, "data": RewardOut.model_validate(_load(db, reward_id))}


@router.put("/{reward_id}")
def update(
    reward_id: str,
    payload: RewardUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    reward = _managed(db, reward_id, current, "update")
    try:
        reward = reward_service.update_reward(db, reward, payload.model_dump(exclude_unset=True))
    except (CategoryResolutionError, InvalidRewardError) as e:
        raise HTTPException(400, str(e))
    return {
        "success": True,
        "message": "Reward updated successfully",
        "data": RewardOut.model_validate(reward),
    }


@router.delete("/{reward_id}")
def delete(reward_id: str, db: Session = Depends(get_db), current: CurrentUser = Depends(get_current_user)):
    reward = _managed(db, reward_id, current, "delete")
    reward_service.delete_reward(db, reward)
    return {"success": True, "message": "Reward deleted successfully"}


@router.patch("/{reward_id}/visibility")
def toggle_visibility(
    reward_id: str,
    payload: VisibilityToggle,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_roles("parent")),
):
    reward = _load(db, reward_id)
    parent_id = current.profile_id("parent")
    if not parent_id:
        raise HTTPException(400, "Parent profile not found")

    changed, message = reward_service.toggle_visibility(
        db, reward, parent_id=parent_id, is_visible=payload.is_visible
    )
    if not changed:
        raise HTTPException(409, message)
    action = "shown to" if payload.is_visible else "hidden from"
    return {
        "success": True,
        "message": f"Reward {action} your children successfully",
        "data": {
            "reward_id": reward.id,
            "parent_id": parent_id,
            "is_visible": payload.is_visible,
            "status": "visible" if payload.is_visible else "hidden",
        },
    }


@router.post("/{reward_id}/check-eligibility")
def check_eligibility(
    reward_id: str,
    payload: StudentRef | None = None,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    points: PointsServiceClient = Depends(get_points_client),
):
    reward = _load(db, reward_id)
    student_id = _student_id(current, (payload or StudentRef()).student_id)
    result = reward_service.check_eligibility(reward, student_id, points)
    return {"success": True, "data": EligibilityOut(**result)}


@router.post("/{reward_id}/image")
def upload_image(
    reward_id: str,
    image: UploadFile = File(...),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    reward = _managed(db, reward_id, current, "update")
    filename = reward_service.image_filename(image.filename)
    if not filename or not (image.content_type or "").startswith("image/"):
        raise HTTPException(400, "Only image files are allowed")
    content = image.file.read()
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(400, "File too large")
    if not reward_service.is_image(content):
        raise HTTPException(400, "Only image files are allowed")

    url = reward_service.store_image(content, filename)
    reward = reward_service.set_reward_image(db, reward, url)
    logger.info(f"Image uploaded for reward {reward.id}: {filename}")
    return {
        "success": True,
        "message": "Image uploaded successfully",
        "data": RewardOut.model_validate(reward),
    }
