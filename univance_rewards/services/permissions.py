"""Who may do what with rewards, redemptions and categories.

Plain functions over ``CurrentUser`` and ORM rows so the routes stay thin.
A user can hold several roles; ``role`` arguments are the acting role the
client sent with the request.
"""
from ..api.deps import CurrentUser
from ..models.reward import Reward, CreatorType
from ..models.redemption import RewardRedemption
from ..models.reward_category import RewardCategory, CategoryVisibility, CreatorRole

CATEGORY_CREATOR_ROLES = tuple(r.value for r in CreatorRole if r is not CreatorRole.SYSTEM)


def school_of(user: CurrentUser) -> str | None:
    """The token's school, else the school or teacher profile's school."""
    school = user.school_id or user.profile_id("school") or user.profile("teacher").get("schoolId")
    if isinstance(school, dict):
        school = school.get("_id")
    return str(school) if school else None


def identities(user: CurrentUser) -> set[str]:
    """The auth user id plus every role profile id of the user."""
    ids = {user.id}
    for role in user.profiles:
        pid = user.profile_id(role)
        if pid:
            ids.add(pid)
    return ids


def teacher_class_ids(user: CurrentUser) -> list[str]:
    return [str(c) for c in user.profile("teacher").get("classIds") or []]


def reward_creator(user: CurrentUser, role: str) -> tuple[str | None, str]:
    """(creator_id, creator_type) for a reward created acting as ``role``."""
    if role in ("platform_admin", "sub_admin"):
        return user.id, CreatorType.SYSTEM.value
    if role == "school_admin":
        return user.id, CreatorType.SCHOOL.value
    return user.profile_id(role), role


def can_manage_reward(user: CurrentUser, reward: Reward) -> bool:
    if user.has_role("platform_admin"):
        return True
    if reward.creator_id in identities(user) or reward.auth_user_id == user.id:
        return True
    return (
        reward.creator_type == CreatorType.SCHOOL
        and user.has_role("school_admin")
        and reward.school_id is not None
        and reward.school_id == school_of(user)
    )


def can_handle_redemption(user: CurrentUser, role: str | None, reward: Reward) -> bool:
    """Fulfil or cancel rights, decided by the acting role."""
    if user.is_admin:
        return True
    if role == "school_admin" and user.has_role("school_admin"):
        return reward.school_id is not None and reward.school_id == school_of(user)
    if role == "teacher" and user.has_role("teacher"):
        return reward.class_id is not None and reward.class_id in teacher_class_ids(user)
    if role == "parent" and user.has_role("parent"):
        return reward.creator_id == user.profile_id("parent")
    return False


def owns_redemption(user: CurrentUser, redemption: RewardRedemption) -> bool:
    if not user.has_role("student"):
        return False
    return redemption.student_id in (user.id, user.profile_id("student"))


def can_view_redemption(user: CurrentUser, redemption: RewardRedemption) -> bool:
    reward = redemption.reward
    if user.has_role("platform_admin") or owns_redemption(user, redemption):
        return True
    if reward.creator_id in identities(user):
        return True
    return (
        reward.creator_type == CreatorType.SCHOOL
        and user.has_role("school_admin")
        and reward.school_id == school_of(user)
    )


def category_creator_role(user: CurrentUser) -> str | None:
    for role in CATEGORY_CREATOR_ROLES:
        if user.has_role(role):
            return role
    return None


def _same_school(user: CurrentUser, category: RewardCategory) -> bool:
    return category.school_id is not None and category.school_id == school_of(user)


def can_view_category(user: CurrentUser, category: RewardCategory) -> bool:
    if category.created_by == user.id or user.has_role("platform_admin"):
        return True
    if category.visibility == CategoryVisibility.PUBLIC:
        return True
    return user.has_any_role(("school_admin", "teacher")) and _same_school(user, category)


def can_edit_category(user: CurrentUser, category: RewardCategory) -> bool:
    if category.created_by == user.id or user.has_role("platform_admin"):
        return True
    return user.has_role("school_admin") and _same_school(user, category)
