# univance_rewards/data/default_categories.py

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models.reward_category import RewardCategory


def _category(name, description, icon, color, type, display_order,
              subcategory_type=None, min_point_value=0, max_point_value=None):
    return {
        "name": name,
        "description": description,
        "icon": icon,
        "color": color,
        "type": type,
        "subcategory_type": subcategory_type,
        "is_system": True,
        "visibility": "public",
        "display_order": display_order,
        "min_point_value": min_point_value,
        "max_point_value": max_point_value,
    }


# System categories seeded by platform admins and by the migration script
DEFAULT_CATEGORIES = [
    # Family
    _category("Family Rewards", "Rewards given by parents and guardians", "home", "#4285F4", "family", 10),
    _category("Family Privileges", "Privileges earned at home", "star", "#4285F4", "family", 11,
              "privilege", 10, 100),
    _category("Family Items", "Physical items from family", "gift", "#34A853", "family", 12,
              "item", 50, 500),
    _category("Family Experiences", "Special experiences with family", "heart", "#EA4335", "family", 13,
              "experience", 100, 1000),
    _category("Family Digital Rewards", "Digital rewards from family", "monitor", "#3498DB", "family", 14,
              "digital", 20, 200),
    # School
    _category("School Rewards", "Rewards available from school", "school", "#FBBC05", "school", 20),
    _category("School Privileges", "Special privileges at school", "medal", "#FBBC05", "school", 21,
              "privilege", 10, 100),
    _category("School Store Items", "Items from the school store", "shopping-cart", "#34A853", "school", 22,
              "item", 20, 200),
    _category("School Experiences", "Special experiences at school", "school", "#EA4335", "school", 23,
              "experience", 50, 500),
    _category("School Digital Rewards", "Digital rewards from school", "monitor", "#3498DB", "school", 24,
              "digital", 30, 300),
    # Sponsor
    _category("Sponsor Rewards", "Rewards from external sponsors", "gift", "#9B59B6", "sponsor", 30),
    _category("Sponsor Privileges", "Special privileges from sponsors", "star", "#9B59B6", "sponsor", 31,
              "privilege", 50, 500),
    _category("Sponsor Items", "Physical items from sponsors", "gift", "#34A853", "sponsor", 32,
              "item", 100, 1000),
    _category("Sponsor Experiences", "Special experiences from sponsors", "heart", "#EA4335", "sponsor", 33,
              "experience", 200, 2000),
    _category("Digital Rewards", "Digital items and content", "monitor", "#3498DB", "sponsor", 34,
              "digital", 50, 500),
]


def category_key(type: str | None, subcategory_type: str | None) -> str:
    return f"{type}-{subcategory_type}"


def seed_default_categories(db: Session, *, created_by: str) -> tuple[dict[str, RewardCategory], int, int]:
    """Create the system categories that do not exist yet.

    Existing live system categories are matched by name. Returns the
    categories keyed by ``type-subcategory`` plus created/skipped counts.
    The caller commits.
    """
    by_key: dict[str, RewardCategory] = {}
    created = skipped = 0
    for data in DEFAULT_CATEGORIES:
        existing = db.execute(
            select(RewardCategory).where(
                RewardCategory.name == data["name"],
                RewardCategory.is_system.is_(True),
                RewardCategory.is_deleted.is_(False),
            )
        ).scalar_one_or_none()
        if existing:
            skipped += 1
            by_key[category_key(existing.type, existing.subcategory_type)] = existing
            continue
        category = RewardCategory(**data, created_by=created_by, creator_role="system")
        db.add(category)
        db.flush()
        created += 1
        by_key[category_key(category.type, category.subcategory_type)] = category
    return by_key, created, skipped
