import logging
from dataclasses import dataclass
from sqlalchemy import select, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..api.deps import CurrentUser
from ..data.default_categories import seed_default_categories, category_key
from ..errors import CategoryResolutionError, DuplicateCategoryError
from ..models.reward import Reward
from ..models.reward_category import RewardCategory, CategoryVisibility
from ..schemas.category import CategoryCreate
from .pagination import paginate
from .permissions import school_of

logger = logging.getLogger(__name__)


@dataclass
class ResolvedCategory:
    category_id: str
    category_type: str
    subcategory_type: str | None
    category_name: str


def get_category(db: Session, category_id: str) -> RewardCategory | None:
    category = db.get(RewardCategory, category_id)
    if not category or category.is_deleted:
        return None
    return category


def resolve_category(
    db: Session, *, category_id: str | None, category: str | None, subcategory: str | None
) -> ResolvedCategory:
    """Find the category a reward belongs to.

    ``category_id`` wins. The deprecated ``category``/``subcategory`` pair
    only matches a live system category.
    """
    if category_id:
        found = get_category(db, category_id)
        if not found:
            raise CategoryResolutionError("Invalid category ID")
    elif category and subcategory:
        logger.warning("Using deprecated category/subcategory fields. Please use category_id instead.")
        found = db.execute(
            select(RewardCategory).where(
                RewardCategory.type == category,
                RewardCategory.subcategory_type == subcategory,
                RewardCategory.is_system.is_(True),
                RewardCategory.is_deleted.is_(False),
            ).limit(1)
        ).scalar_one_or_none()
    else:
        found = None

    if not found:
        raise CategoryResolutionError("Category information is required. Please provide category_id.")
    return ResolvedCategory(
        category_id=found.id,
        category_type=found.type,
        subcategory_type=found.subcategory_type,
        category_name=found.name,
    )


def find_duplicate(
    db: Session, *, name: str, created_by: str, exclude_id: str | None = None
) -> RewardCategory | None:
    stmt = select(RewardCategory).where(
        RewardCategory.name == name,
        RewardCategory.created_by == created_by,
        RewardCategory.is_deleted.is_(False),
    )
    if exclude_id:
        stmt = stmt.where(RewardCategory.id != exclude_id)
    return db.execute(stmt).scalar_one_or_none()


def _commit(db: Session, category: RewardCategory) -> None:
    name, created_by = category.name, category.created_by
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Duplicate category name {name!r} for {created_by}: {e.orig}")
        raise DuplicateCategoryError("Category with this name already exists") from e


def create_category(db: Session, *, payload: CategoryCreate, created_by: str, creator_role: str) -> RewardCategory:
    data = payload.model_dump(exclude={"metadata"})
    category = RewardCategory(
        **data,
        extra=payload.metadata,
        created_by=created_by,
        creator_role=creator_role,
        is_system=False,
        is_active=True,
    )
    db.add(category)
    _commit(db, category)
    db.refresh(category)
    logger.info(f"Category created: id={category.id}, name={category.name}, by={created_by}")
    return category


def update_category(db: Session, category: RewardCategory, changes: dict) -> RewardCategory:
    if "metadata" in changes:
        category.extra = changes.pop("metadata") or {}
    for field, value in changes.items():
        setattr(category, field, value)
    _commit(db, category)
    db.refresh(category)
    return category


def delete_category(db: Session, category: RewardCategory) -> None:
    category.soft_delete()
    db.commit()
    logger.info(f"Category soft-deleted: id={category.id}")


def _list_access(user: CurrentUser):
    """Visibility condition for category listings, None for platform admins."""
    school_id = school_of(user)
    if user.has_any_role(("student", "parent", "teacher")):
        return or_(
            RewardCategory.visibility == CategoryVisibility.PUBLIC.value,
            RewardCategory.created_by == user.id,
            and_(RewardCategory.visibility == CategoryVisibility.SCHOOL.value, RewardCategory.school_id == school_id),
        )
    if user.has_role("school_admin"):
        return or_(
            RewardCategory.visibility == CategoryVisibility.PUBLIC.value,
            RewardCategory.created_by == user.id,
            RewardCategory.school_id == school_id,
        )
    if user.has_role("platform_admin"):
        return None
    return or_(
        RewardCategory.visibility == CategoryVisibility.PUBLIC.value,
        RewardCategory.created_by == user.id,
    )


def list_categories(
    db: Session,
    user: CurrentUser,
    *,
    type: str | None = None,
    subcategory_type: str | None = None,
    created_by: str | None = None,
    visibility: str | None = None,
    school_id: str | None = None,
    is_system: bool | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[RewardCategory], int]:
    stmt = select(RewardCategory).options(selectinload(RewardCategory.parent_category)).where(
        RewardCategory.is_deleted.is_(False)
    )
    if type:
        stmt = stmt.where(RewardCategory.type == type)
    if subcategory_type:
        stmt = stmt.where(RewardCategory.subcategory_type == subcategory_type)
    if created_by:
        stmt = stmt.where(RewardCategory.created_by == created_by)
    if visibility:
        stmt = stmt.where(RewardCategory.visibility == visibility)
    if school_id:
        stmt = stmt.where(RewardCategory.school_id == school_id)
    if is_system is not None:
        stmt = stmt.where(RewardCategory.is_system.is_(is_system))
    if search:
        stmt = stmt.where(RewardCategory.name.icontains(search, autoescape=True))

    access = _list_access(user)
    if access is not None:
        stmt = stmt.where(access)

    return paginate(
        db, stmt, page=page, limit=limit,
        order_by=[RewardCategory.display_order.asc(), RewardCategory.name.asc()],
    )


def category_hierarchy(db: Session, user: CurrentUser, *, type: str | None = None) -> list[dict]:
    """Top-level categories with their direct subcategories."""
    stmt = select(RewardCategory).where(RewardCategory.is_deleted.is_(False))
    if type:
        stmt = stmt.where(RewardCategory.type == type)
    if not user.has_role("platform_admin"):
        conditions = [
            RewardCategory.visibility == CategoryVisibility.PUBLIC.value,
            RewardCategory.created_by == user.id,
        ]
        school_id = school_of(user)
        if school_id:
            conditions.append(
                and_(RewardCategory.visibility == CategoryVisibility.SCHOOL.value, RewardCategory.school_id == school_id)
            )
        stmt = stmt.where(or_(*conditions))

    categories = db.execute(
        stmt.order_by(RewardCategory.display_order.asc(), RewardCategory.name.asc())
    ).scalars().all()

    nodes: dict[str, dict] = {}
    result = []
    for category in categories:
        if not category.parent_category_id:
            node = {"category": category, "subcategories": []}
            nodes[category.id] = node
            result.append(node)
    for category in categories:
        if category.parent_category_id and category.parent_category_id in nodes:
            nodes[category.parent_category_id]["subcategories"].append(category)
    return result


def create_default_categories(db: Session, *, created_by: str) -> tuple[int, int]:
    _, created, skipped = seed_default_categories(db, created_by=created_by)
    db.commit()
    logger.info(f"Default categories seeded: {created} created, {skipped} skipped")
    return created, skipped


def migrate_legacy_rewards(db: Session, *, created_by: str = "migration") -> dict:
    """Seed system categories and link rewards that only carry the legacy enum pair."""
    by_key, created, skipped = seed_default_categories(db, created_by=created_by)
    rewards = db.execute(
        select(Reward).where(Reward.category_id.is_(None), Reward.is_deleted.is_(False))
    ).scalars().all()

    updated = failed = 0
    for reward in rewards:
        key = category_key(reward.category, reward.subcategory)
        category = by_key.get(key)
        if not category:
            logger.warning(f"No matching category found for {key} (reward {reward.id})")
            failed += 1
            continue
        reward.category_id = category.id
        reward.category_name = reward.category
        reward.subcategory_name = reward.subcategory
        updated += 1
    db.commit()
    return {"created": created, "skipped": skipped, "updated": updated, "failed": failed}
