from univance_rewards.api.deps import CurrentUser
from univance_rewards.models.redemption import RewardRedemption
from univance_rewards.models.reward import Reward
from univance_rewards.services.permissions import (
    reward_creator,
    can_manage_reward,
    can_handle_redemption,
    owns_redemption,
    category_creator_role,
)


def user(roles, profiles=None, school_id=None, user_id="u-1"):
    return CurrentUser(id=user_id, roles=roles, profiles=profiles or {}, school_id=school_id)


def reward(**kwargs):
    data = {"creator_id": "parent-1", "creator_type": "parent", "school_id": None, "class_id": None}
    data.update(kwargs)
    return Reward(**data)


def test_reward_creator_per_acting_role():
    teacher = user(["teacher"], {"teacher": {"_id": "teacher-1"}})
    assert reward_creator(teacher, "teacher") == ("teacher-1", "teacher")
    assert reward_creator(user(["platform_admin"]), "platform_admin") == ("u-1", "system")
    assert reward_creator(user(["sub_admin"]), "sub_admin") == ("u-1", "system")
    assert reward_creator(user(["school_admin"]), "school_admin") == ("u-1", "school")
    assert reward_creator(user(["parent"]), "parent") == (None, "parent")


def test_can_manage_reward():
    parent = user(["parent"], {"parent": {"_id": "parent-1"}})
    assert can_manage_reward(parent, reward())
    assert not can_manage_reward(user(["parent"], {"parent": {"_id": "parent-2"}}), reward())
    assert can_manage_reward(user(["platform_admin"]), reward())

    school_reward = reward(creator_id="sa-9", creator_type="school", school_id="school-1")
    assert can_manage_reward(user(["school_admin"], school_id="school-1"), school_reward)
    assert not can_manage_reward(user(["school_admin"], school_id="school-2"), school_reward)


def test_can_handle_redemption_uses_acting_role():
    class_reward = reward(creator_id="teacher-1", creator_type="teacher", school_id="school-1", class_id="class-1")
    teacher = user(["teacher"], {"teacher": {"_id": "teacher-1", "classIds": ["class-1"]}})
    assert can_handle_redemption(teacher, "teacher", class_reward)
    assert not can_handle_redemption(teacher, None, class_reward)
    assert not can_handle_redemption(teacher, "school_admin", class_reward)

    school_admin = user(["school_admin"], {"school": {"_id": "school-1"}})
    assert can_handle_redemption(school_admin, "school_admin", class_reward)
    assert can_handle_redemption(user(["sub_admin"]), None, class_reward)

    parent = user(["parent"], {"parent": {"_id": "parent-1"}})
    assert can_handle_redemption(parent, "parent", reward())
    assert not can_handle_redemption(parent, "parent", class_reward)


def test_owns_redemption_matches_student_profile():
    student = user(["student"], {"student": {"_id": "student-1"}})
    assert owns_redemption(student, RewardRedemption(student_id="student-1"))
    assert not owns_redemption(student, RewardRedemption(student_id="student-2"))
    assert not owns_redemption(user(["parent"]), RewardRedemption(student_id="u-1"))


def test_category_creator_role_order():
    assert category_creator_role(user(["student"])) is None
    assert category_creator_role(user(["teacher", "parent"])) == "parent"
    assert category_creator_role(user(["platform_admin"])) == "platform_admin"
