import logging
import os
import secrets
import time
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from sqlalchemy import select, or_, and_
from sqlalchemy.orm import Session, selectinload

from ..clients import PointsServiceClient, UserServiceClient
from ..core.config import settings
from ..errors import InvalidRewardError, ServiceClientError
from ..models import utcnow
from ..models.reward import Reward, RewardParentHide, CreatorType
from ..models.wishlist import RewardWishlist
from ..schemas.reward import RewardCreate
from .category_service import resolve_category
from .pagination import paginate, sort_column

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}

SORTABLE = {
    "createdAt": Reward.created_at,
    "created_at": Reward.created_at,
    "updatedAt": Reward.updated_at,
    "updated_at": Reward.updated_at,
    "pointsCost": Reward.points_cost,
    "points_cost": Reward.points_cost,
    "title": Reward.title,
    "expiryDate": Reward.expiry_date,
    "expiry_date": Reward.expiry_date,
}

# fields a client may never overwrite through update
PROTECTED_FIELDS = {"id", "creator_id", "creator_type", "auth_user_id", "created_at", "updated_at", "is_deleted"}


class InvalidSortError(ValueError):
    pass


def _available(now=None):
    now = now or utcnow()
    return and_(
        Reward.is_active.is_(True),
        Reward.is_deleted.is_(False),
        or_(Reward.expiry_date.is_(None), Reward.expiry_date > now),
    )


def _common_filters(stmt, *, category_id=None, category=None, subcategory=None, search=None, is_featured=None):
    if category_id:
        stmt = stmt.where(Reward.category_id == category_id)
    elif category:
        stmt = stmt.where(or_(Reward.category == category, Reward.category_name == category))
    if subcategory:
        stmt = stmt.where(or_(Reward.subcategory == subcategory, Reward.subcategory_name == subcategory))
    if search:
        stmt = stmt.where(or_(
            Reward.title.icontains(search, autoescape=True),
            Reward.description.icontains(search, autoescape=True),
        ))
    if is_featured is not None:
        stmt = stmt.where(Reward.is_featured.is_(is_featured))
    return stmt


def _order(sort: str, order: str):
    column = sort_column(SORTABLE, sort, order)
    if column is None:
        raise InvalidSortError(f"Invalid sort field: {sort}")
    return [column, Reward.id.asc()]


def _base_query():
    return select(Reward).options(
        selectinload(Reward.category_ref),
        selectinload(Reward.parent_hides),
    )


def get_reward(db: Session, reward_id: str) -> Reward | None:
    reward = db.get(Reward, reward_id)
    if not reward or reward.is_deleted:
        return None
    return reward


def check_reward_rules(
    *, creator_type: str, limited_quantity: bool, quantity: int | None, school_id: str | None, class_id: str | None
) -> None:
    if creator_type == CreatorType.TEACHER and not class_id:
        raise InvalidRewardError("Class ID is required for teacher rewards")
    if creator_type in (CreatorType.SCHOOL, CreatorType.TEACHER) and not school_id:
        raise InvalidRewardError("School ID is required for school and teacher rewards")
    if limited_quantity and quantity is None:
        raise InvalidRewardError("Quantity is required for limited rewards")


def create_reward(
    db: Session, *, payload: RewardCreate, creator_id: str, creator_type: str, auth_user_id: str
) -> Reward:
    resolved = resolve_category(
        db, category_id=payload.category_id, category=payload.category, subcategory=payload.subcategory
    )
    check_reward_rules(
        creator_type=creator_type,
        limited_quantity=payload.limited_quantity,
        quantity=payload.quantity,
        school_id=payload.school_id,
        class_id=payload.class_id,
    )
    data = payload.model_dump(exclude={"metadata", "role", "category_id", "category", "subcategory"})
    reward = Reward(
        **data,
        extra=payload.metadata,
        category_id=resolved.category_id,
        category=resolved.category_type,
        subcategory=resolved.subcategory_type,
        category_name=resolved.category_name,
        subcategory_name=resolved.subcategory_type,
        creator_id=creator_id,
        creator_type=creator_type,
        auth_user_id=auth_user_id,
    )
    if not reward.limited_quantity:
        reward.quantity = None
    db.add(reward)
    db.commit()
    db.refresh(reward)
    logger.info(f"Reward created: id={reward.id}, creator={creator_type}:{creator_id}, cost={reward.points_cost}")
    return reward


def update_reward(db: Session, reward: Reward, changes: dict) -> Reward:
    changes = {k: v for k, v in changes.items() if k not in PROTECTED_FIELDS}
    changes.pop("role", None)
    check_reward_rules(
        creator_type=reward.creator_type,
        limited_quantity=changes.get("limited_quantity", reward.limited_quantity),
        quantity=changes.get("quantity", reward.quantity),
        school_id=changes.get("school_id", reward.school_id),
        class_id=changes.get("class_id", reward.class_id),
    )
    if changes.get("limited_quantity") is False:
        changes["quantity"] = None
    category_id = changes.pop("category_id", None)
    category = changes.pop("category", None)
    subcategory = changes.pop("subcategory", None)
    if category_id or (category and subcategory):
        resolved = resolve_category(db, category_id=category_id, category=category, subcategory=subcategory)
        reward.category_id = resolved.category_id
        reward.category = resolved.category_type
        reward.subcategory = resolved.subcategory_type
        reward.category_name = resolved.category_name
        reward.subcategory_name = resolved.subcategory_type
    if "metadata" in changes:
        reward.extra = changes.pop("metadata") or {}
    for field, value in changes.items():
        setattr(reward, field, value)
    db.commit()
    db.refresh(reward)
    return reward


def delete_reward(db: Session, reward: Reward) -> None:
    reward.soft_delete()
    db.commit()
    logger.info(f"Reward soft-deleted: id={reward.id}")


def list_rewards(
    db: Session,
    *,
    category_id: str | None = None,
    category: str | None = None,
    subcategory: str | None = None,
    creator_type: str | None = None,
    creator_id: str | None = None,
    school_id: str | None = None,
    class_id: str | None = None,
    min_points: int | None = None,
    max_points: int | None = None,
    search: str | None = None,
    is_featured: bool | None = None,
    page: int = 1,
    limit: int = 20,
    sort: str = "createdAt",
    order: str = "desc",
) -> tuple[list[Reward], int]:
    order_by = _order(sort, order)
    stmt = _base_query().where(_available())
    stmt = _common_filters(
        stmt, category_id=category_id, category=category, subcategory=subcategory,
        search=search, is_featured=is_featured,
    )
    if creator_type:
        stmt = stmt.where(Reward.creator_type == creator_type)
    if creator_id:
        stmt = stmt.where(Reward.creator_id == creator_id)
    if school_id:
        stmt = stmt.where(Reward.school_id == school_id)
    if class_id:
        stmt = stmt.where(Reward.class_id == class_id)
    if min_points is not None:
        stmt = stmt.where(Reward.points_cost >= min_points)
    if max_points is not None:
        stmt = stmt.where(Reward.points_cost <= max_points)
    return paginate(db, stmt, page=page, limit=limit, order_by=order_by)


def load_children(users: UserServiceClient) -> list[dict]:
    """The caller's children, each with ``id``, ``school_id`` and ``class_ids``.

    A child whose classes cannot be fetched is kept with no classes.
    """
    children = []
    for child in users.get_my_children():
        child_id = str(child.get("_id") or child.get("id"))
        school = child.get("schoolId")
        if isinstance(school, dict):
            school = school.get("_id")
        try:
            classes = users.get_student_classes(child_id)
        except ServiceClientError as e:
            logger.warning(f"Failed to fetch classes for child {child_id}: {e}")
            classes = []
        children.append({
            "id": child_id,
            "school_id": str(school) if school else None,
            "class_ids": [str(c.get("_id")) for c in classes if c.get("_id")],
        })
    return children


def parent_rewards(
    db: Session,
    *,
    parent_id: str | None,
    children: list[dict],
    category_id: str | None = None,
    category: str | None = None,
    subcategory: str | None = None,
    search: str | None = None,
    is_featured: bool | None = None,
    page: int = 1,
    limit: int = 20,
    sort: str = "createdAt",
    order: str = "desc",
) -> tuple[list[dict], int, dict]:
    """Rewards a parent can see, each annotated with the parent's controls."""
    order_by = _order(sort, order)
    school_ids = sorted({c["school_id"] for c in children if c.get("school_id")})
    class_ids = sorted({cid for c in children for cid in c.get("class_ids", [])})

    access = [
        Reward.creator_type == CreatorType.SYSTEM.value,
        and_(Reward.creator_type == CreatorType.PARENT.value, Reward.creator_id == parent_id),
    ]
    if school_ids:
        access.append(and_(Reward.school_id.in_(school_ids), Reward.class_id.is_(None)))
    if class_ids:
        access.append(Reward.class_id.in_(class_ids))

    stmt = _base_query().where(_available(), or_(*access))
    stmt = _common_filters(
        stmt, category_id=category_id, category=category, subcategory=subcategory,
        search=search, is_featured=is_featured,
    )
    rewards, total = paginate(db, stmt, page=page, limit=limit, order_by=order_by)

    rows = [
        {
            "reward": reward,
            "can_parent_control": reward.controllable_by_parent(parent_id, children),
            "is_hidden_by_parent": reward.is_hidden_by(parent_id),
            "is_visible_to_my_children": reward.is_visible_to_student([parent_id]),
        }
        for reward in rewards
    ]
    parent_info = {
        "parent_id": parent_id,
        "children_count": len(children),
        "children_schools": len(school_ids),
        "children_classes": len(class_ids),
    }
    return rows, total, parent_info


def toggle_visibility(db: Session, reward: Reward, *, parent_id: str, is_visible: bool) -> tuple[bool, str]:
    changed, message = reward.toggle_parent_visibility(parent_id, is_visible)
    if changed:
        db.commit()
        logger.info(f"Parent {parent_id} set reward {reward.id} visible={is_visible}")
    return changed, message


def wishlisted_ids(db: Session, student_id: str) -> set[str]:
    return set(db.execute(
        select(RewardWishlist.reward_id).where(RewardWishlist.student_id == student_id)
    ).scalars().all())


def student_rewards(
    db: Session,
    *,
    student: dict,
    class_ids: list[str],
    wishlist_only: bool = False,
    category_id: str | None = None,
    category: str | None = None,
    subcategory: str | None = None,
    search: str | None = None,
    is_featured: bool | None = None,
    page: int = 1,
    limit: int = 20,
    sort: str = "createdAt",
    order: str = "desc",
) -> tuple[list[dict], int]:
    """Rewards visible to a student, honouring every parent's hide list.

    ``student`` is the student profile: ``_id``, ``schoolId``, ``parentIds``
    and an optional ``socialWorkerId``.
    """
    order_by = _order(sort, order)
    student_id = str(student.get("_id"))
    school_id = student.get("schoolId")
    parent_ids = [str(p) for p in student.get("parentIds") or []]
    wishlist = wishlisted_ids(db, student_id)

    stmt = _base_query().where(_available(), Reward.is_visible_to_children.is_(True))
    if parent_ids:
        stmt = stmt.where(~Reward.parent_hides.any(RewardParentHide.parent_id.in_(parent_ids)))

    if wishlist_only:
        if not wishlist:
            return [], 0
        stmt = stmt.where(Reward.id.in_(wishlist))
    else:
        access = [Reward.creator_type == CreatorType.SYSTEM.value]
        if school_id:
            access.append(and_(Reward.school_id == school_id, Reward.class_id.is_(None)))
            if class_ids:
                access.append(and_(Reward.school_id == school_id, Reward.class_id.in_(class_ids)))
        if parent_ids:
            access.append(and_(Reward.creator_type == CreatorType.PARENT.value, Reward.creator_id.in_(parent_ids)))
        if student.get("socialWorkerId"):
            access.append(and_(
                Reward.creator_type == CreatorType.SOCIAL_WORKER.value,
                Reward.creator_id == str(student["socialWorkerId"]),
            ))
        stmt = stmt.where(or_(*access))

    stmt = _common_filters(
        stmt, category_id=category_id, category=category, subcategory=subcategory,
        search=search, is_featured=is_featured,
    )
    rewards, total = paginate(db, stmt, page=page, limit=limit, order_by=order_by)
    return [{"reward": r, "is_in_wishlist": r.id in wishlist} for r in rewards], total


def check_eligibility(reward: Reward, student_id: str, points: PointsServiceClient) -> dict:
    if not reward.can_be_redeemed():
        return {"eligible": False, "reason": reward.unavailable_reason()}
    try:
        balance = points.get_balance(student_id)
    except ServiceClientError as e:
        logger.warning(f"Could not verify balance of student {student_id}: {e}")
        return {
            "eligible": True,
            "points_required": reward.points_cost,
            "reason": "Unable to verify points balance",
        }
    eligible = balance >= reward.points_cost
    return {
        "eligible": eligible,
        "points_required": reward.points_cost,
        "current_balance": balance,
        "reason": None if eligible else "Insufficient points",
    }


def find_wishlist_item(db: Session, *, student_id: str, reward_id: str) -> RewardWishlist | None:
    return db.execute(
        select(RewardWishlist).where(
            RewardWishlist.student_id == student_id,
            RewardWishlist.reward_id == reward_id,
        )
    ).scalar_one_or_none()


def add_to_wishlist(db: Session, *, student_id: str, reward_id: str) -> RewardWishlist | None:
    """None when the reward is already on the student's wishlist."""
    if find_wishlist_item(db, student_id=student_id, reward_id=reward_id):
        return None
    item = RewardWishlist(student_id=student_id, reward_id=reward_id)
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def remove_from_wishlist(db: Session, *, student_id: str, reward_id: str) -> bool:
    item = find_wishlist_item(db, student_id=student_id, reward_id=reward_id)
    if not item:
        return False
    db.delete(item)
    db.commit()
    return True


def get_wishlist(db: Session, *, student_id: str, page: int = 1, limit: int = 20) -> tuple[list[RewardWishlist], int]:
    stmt = (
        select(RewardWishlist)
        .options(selectinload(RewardWishlist.reward).selectinload(Reward.category_ref))
        .where(RewardWishlist.student_id == student_id)
    )
    items, total = paginate(
        db, stmt, page=page, limit=limit,
        order_by=[RewardWishlist.created_at.desc(), RewardWishlist.id.desc()],
    )
    items = [i for i in items if i.reward and i.reward.is_active and not i.reward.is_deleted]
    return items, total


def image_filename(original: str | None) -> str | None:
    ext = os.path.splitext(original or "")[1].lower()
    if ext not in ALLOWED_IMAGE_EXTENSIONS:
        return None
    return f"reward-{int(time.time() * 1000)}-{secrets.token_hex(6)}{ext}"


def is_image(content: bytes) -> bool:
    """Whether ``content`` decodes as an image Pillow understands."""
    try:
        with Image.open(BytesIO(content)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        return False
    return True


def store_image(content: bytes, filename: str) -> str:
    """Write an uploaded image and return its public URL."""
    directory = Path(settings.UPLOAD_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    (directory / filename).write_bytes(content)
    return f"{settings.FILE_STORAGE_URL.rstrip('/')}/{filename}"


def set_reward_image(db: Session, reward: Reward, url: str) -> Reward:
    reward.image = url
    db.commit()
    db.refresh(reward)
    return reward
