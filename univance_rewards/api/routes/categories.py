from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...errors import DuplicateCategoryError
from ...models.reward_category import RewardCategory
from ...schemas.category import CategoryCreate, CategoryUpdate, CategoryOut, CategoryNode
from ...schemas.common import Pagination
from ...services import category_service
from ...services.permissions import category_creator_role, can_view_category, can_edit_category
from ..deps import CurrentUser, get_db, get_current_user, require_roles, valid_id

router = APIRouter()

PROTECTED_FIELDS = {"created_by", "creator_role", "is_system", "created_at", "updated_at"}


def _check_parent(db: Session, parent_id: str | None) -> None:
    if not parent_id:
        return
    valid_id(parent_id, "parent category")
    if not category_service.get_category(db, parent_id):
        raise HTTPException(404, "Parent category not found")


def _load(db: Session, category_id: str) -> RewardCategory:
    valid_id(category_id, "category")
    category = category_service.get_category(db, category_id)
    if not category:
        raise HTTPException(404, "Category not found")
    return category


def _editable(db: Session, category_id: str, current: CurrentUser, action: str) -> RewardCategory:
    category = _load(db, category_id)
    if not can_edit_category(current, category):
        raise HTTPException(403, f"Not authorized to {action} this category")
    if category.is_system:
        raise HTTPException(403, "System categories cannot be modified")
    return category


@router.post("", status_code=201)
def create(payload: CategoryCreate, db: Session = Depends(get_db), current: CurrentUser = Depends(get_current_user)):
    creator_role = category_creator_role(current)
    if not creator_role:
        raise HTTPException(403, "Not authorized to create categories")
    if category_service.find_duplicate(db, name=payload.name, created_by=current.id):
        raise HTTPException(400, "Category with this name already exists")
    _check_parent(db, payload.parent_category_id)

    try:
        category = category_service.create_category(
            db, payload=payload, created_by=current.id, creator_role=creator_role
        )
    except DuplicateCategoryError as e:
        raise HTTPException(400, str(e))
    return {
        "success": True,
        "message": "Category created successfully",
        "data": CategoryOut.model_validate(category),
    }


@router.get("")
def list_all(
    type: str | None = None,
    subcategory_type: str | None = None,
    created_by: str | None = None,
    visibility: str | None = None,
    school_id: str | None = None,
    is_system: bool | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    categories, total = category_service.list_categories(
        db, current,
        type=type, subcategory_type=subcategory_type, created_by=created_by,
        visibility=visibility, school_id=school_id, is_system=is_system, search=search,
        page=page, limit=limit,
    )
    return {
        "success": True,
        "data": {
            "categories": [CategoryOut.model_validate(c) for c in categories],
            "pagination": Pagination.build(total, page, limit),
        },
    }


@router.get("/hierarchy")
def hierarchy(
    type: str | None = None,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    nodes = category_service.category_hierarchy(db, current, type=type)
    return {
        "success": True,
        "data": [CategoryNode.model_validate(node) for node in nodes],
    }


@router.post("/defaults", status_code=201)
def create_defaults(
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_roles("platform_admin")),
):
    created, skipped = category_service.create_default_categories(db, created_by=current.id)
    return {
        "success": True,
        "message": f"Default categories created: {created} new, {skipped} existing",
        "data": {"created": created, "skipped": skipped},
    }


@router.get("/{category_id}")
def get_one(category_id: str, db: Session = Depends(get_db), current: CurrentUser = Depends(get_current_user)):
    category = _load(db, category_id)
    if not can_view_category(current, category):
        raise HTTPException(403, "Not authorized to view this category")
    return {"success": True, "data": CategoryOut.model_validate(category)}


@router.put("/{category_id}")
def update(
    category_id: str,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    category = _editable(db, category_id, current, "update")
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if k not in PROTECTED_FIELDS}
    parent_id = changes.get("parent_category_id")
    if parent_id:
        if parent_id == category.id:
            raise HTTPException(400, "Category cannot be its own parent")
        _check_parent(db, parent_id)
    name = changes.get("name")
    if name and category_service.find_duplicate(db, name=name, created_by=category.created_by, exclude_id=category.id):
        raise HTTPException(400, "Category with this name already exists")

    try:
        category = category_service.update_category(db, category, changes)
    except DuplicateCategoryError as e:
        raise HTTPException(400, str(e))
    return {
        "success": True,
        "message": "Category updated successfully",
        "data": CategoryOut.model_validate(category),
    }


@router.delete("/{category_id}")
def delete(category_id: str, db: Session = Depends(get_db), current: CurrentUser = Depends(get_current_user)):
    category = _editable(db, category_id, current, "delete")
    category_service.delete_category(db, category)
    return {"success": True, "message": "Category deleted successfully"}
