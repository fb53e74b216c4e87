from datetime import timedelta

import pytest

from univance_rewards.models import utcnow
from univance_rewards.models.redemption import RewardRedemption, RedemptionStatus
from univance_rewards.services.redemption_service import expire_stale_redemptions


@pytest.fixture
def funded(points):
    points.balances["student-1"] = 500
    return points


def redeem(client, reward, headers, **body):
    return client.post(f"/api/rewards/{reward.id}/redeem", json=body or None, headers=headers)


def test_student_redeems_reward(client, student_headers, funded, notifier, users, make_reward, db_session):
    users.students["student-1"] = {"userId": {"firstName": "Ada", "lastName": "L", "email": "ada@example.com"}, "grade": 5}
    reward = make_reward(points_cost=120, limited_quantity=True, quantity=2)

    res = redeem(client, reward, student_headers)
    assert res.status_code == 201
    data = res.json()["data"]
    redemption = data["redemption"]
    assert redemption["status"] == "pending"
    assert redemption["student_id"] == "student-1"
    assert redemption["points_spent"] == 120
    assert data["redemption_code"] == redemption["redemption_code"]
    assert redemption["student_info"]["first_name"] == "Ada"
    assert redemption["metadata"]["rewardCreatorType"] == "parent"

    debit = funded.transactions[0]
    assert debit["type"] == "spent"
    assert debit["source"] == "redemption"
    assert debit["amount"] == 120
    assert debit["description"] == f"Redeemed reward: {reward.title}"

    assert [n["type"] for n in notifier.sent] == ["reward_redeemed", "reward_redemption_pending"]
    assert notifier.sent[1]["recipient_id"] == "parent-1"

    db_session.refresh(reward)
    assert reward.quantity == 1


def test_insufficient_points(client, student_headers, points, make_reward):
    points.balances["student-1"] = 10
    reward = make_reward(points_cost=50)
    res = redeem(client, reward, student_headers)
    assert res.status_code == 400
    assert res.json() == {
        "success": False,
        "message": "Insufficient points for redemption",
        "data": {"current_balance": 10, "required": 50},
    }
    assert points.transactions == []


def test_points_failure_aborts_redemption(client, student_headers, funded, make_reward, db_session):
    funded.fail_transaction = True
    reward = make_reward()
    res = redeem(client, reward, student_headers)
    assert res.status_code == 500
    assert res.json()["message"] == "Failed to process points transaction"
    assert db_session.query(RewardRedemption).count() == 0


def test_notification_failure_does_not_fail_redemption(client, student_headers, funded, notifier, make_reward):
    notifier.fail = True
    assert redeem(client, make_reward(), student_headers).status_code == 201


def test_unavailable_reward_cannot_be_redeemed(client, student_headers, funded, make_reward):
    reward = make_reward(expiry_date=utcnow() - timedelta(hours=1))
    res = redeem(client, reward, student_headers)
    assert res.status_code == 400
    assert res.json()["reason"] == "Reward has expired"


def test_student_cannot_redeem_for_someone_else(client, student_headers, funded, make_reward):
    res = redeem(client, make_reward(), student_headers, student_id="student-2")
    assert res.status_code == 403


def test_parent_redeems_only_for_children(client, users, parent_headers, funded, make_reward):
    reward = make_reward()
    res = redeem(client, reward, parent_headers, student_id="student-1")
    assert res.status_code == 403

    users.child_ids_by_user["parent-user"] = ["student-1"]
    res = redeem(client, reward, parent_headers, student_id="student-1")
    assert res.status_code == 201
    assert funded.transactions[0]["awardedBy"] == "parent-user"


def test_teachers_cannot_redeem(client, auth, make_reward):
    teacher = auth("t-user", ["teacher"], {"teacher": {"_id": "teacher-1"}})
    assert redeem(client, make_reward(), teacher).status_code == 403


def test_fulfill_by_creating_parent(client, auth, student_headers, parent_headers, funded, notifier, make_reward):
    reward = make_reward()
    redemption_id = redeem(client, reward, student_headers).json()["data"]["redemption"]["id"]
    url = f"/api/rewards/redemptions/{redemption_id}/fulfill"

    stranger = auth("p2", ["parent"], {"parent": {"_id": "parent-2"}})
    assert client.put(url, json={"role": "parent"}, headers=stranger).status_code == 403

    res = client.put(url, json={"role": "parent", "feedback": "Have fun"}, headers=parent_headers)
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["status"] == "fulfilled"
    assert data["fulfiller_id"] == "parent-1"
    assert notifier.sent[-1]["type"] == "reward_fulfilled"

    res = client.put(url, json={"role": "parent"}, headers=parent_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Can only fulfill pending redemptions"


def test_teacher_fulfills_class_reward(client, auth, student_headers, funded, make_reward):
    reward = make_reward(creator_id="teacher-1", creator_type="teacher", school_id="school-1", class_id="class-1")
    redemption_id = redeem(client, reward, student_headers).json()["data"]["redemption"]["id"]
    teacher = auth("t-user", ["teacher"], {"teacher": {"_id": "teacher-1", "classIds": ["class-1"]}})
    url = f"/api/rewards/redemptions/{redemption_id}/fulfill"

    assert client.put(url, json={}, headers=teacher).status_code == 403
    assert client.put(url, json={"role": "teacher"}, headers=teacher).status_code == 200


def test_student_cancels_and_gets_refund(client, student_headers, funded, notifier, make_reward, db_session):
    reward = make_reward(points_cost=70, limited_quantity=True, quantity=1)
    redemption_id = redeem(client, reward, student_headers).json()["data"]["redemption"]["id"]
    db_session.refresh(reward)
    assert reward.quantity == 0

    url = f"/api/rewards/redemptions/{redemption_id}/cancel"
    res = client.post(url, json={"role": "student", "reason": "changed my mind"}, headers=student_headers)
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["status"] == "canceled"
    assert data["cancel_reason"] == "changed my mind"
    assert data["cancelled_by"] == "student-1"

    refund = funded.transactions[-1]
    assert refund["type"] == "earned"
    assert refund["amount"] == 70
    assert refund["description"] == f"Refund for cancelled redemption: {reward.title}"
    assert notifier.sent[-1]["type"] == "reward_cancelled"

    db_session.refresh(reward)
    assert reward.quantity == 1

    res = client.post(url, json={"role": "student"}, headers=student_headers)
    assert res.status_code == 400


def test_cancel_survives_refund_failure(client, student_headers, funded, make_reward):
    redemption_id = redeem(client, make_reward(), student_headers).json()["data"]["redemption"]["id"]
    funded.fail_transaction = True
    res = client.post(
        f"/api/rewards/redemptions/{redemption_id}/cancel", json={"role": "student"}, headers=student_headers
    )
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "canceled"


def test_other_student_cannot_cancel(client, auth, student_headers, funded, make_reward):
    redemption_id = redeem(client, make_reward(), student_headers).json()["data"]["redemption"]["id"]
    other = auth("s2", ["student"], {"student": {"_id": "student-2"}})
    res = client.post(f"/api/rewards/redemptions/{redemption_id}/cancel", json={"role": "student"}, headers=other)
    assert res.status_code == 403


def test_history_scopes(client, auth, users, student_headers, parent_headers, admin_headers, funded, make_reward):
    funded.balances["student-2"] = 500
    reward = make_reward()
    redeem(client, reward, student_headers)
    other = auth("s2", ["student"], {"student": {"_id": "student-2"}})
    redeem(client, reward, other)

    own = client.get("/api/rewards/redemptions", headers=student_headers).json()["data"]
    assert own["pagination"]["total"] == 1
    assert own["redemptions"][0]["student_id"] == "student-1"

    users.child_ids_by_user["parent-user"] = ["student-2"]
    children = client.get("/api/rewards/redemptions", headers=parent_headers).json()["data"]
    assert [r["student_id"] for r in children["redemptions"]] == ["student-2"]
    res = client.get("/api/rewards/redemptions", params={"student_id": "student-1"}, headers=parent_headers)
    assert res.status_code == 403

    everything = client.get("/api/rewards/redemptions", headers=admin_headers).json()["data"]
    assert everything["pagination"] == {"total": 2, "page": 1, "limit": 20, "pages": 1}
    filtered = client.get(
        "/api/rewards/redemptions", params={"student_id": "student-2", "status": "pending"}, headers=admin_headers
    ).json()["data"]
    assert filtered["pagination"]["total"] == 1


def test_history_for_teacher_and_school_admin(client, auth, student_headers, funded, make_reward):
    class_reward = make_reward(creator_id="teacher-1", creator_type="teacher", school_id="school-1", class_id="class-1")
    redeem(client, class_reward, student_headers)
    redeem(client, make_reward(), student_headers)

    teacher = auth("t-user", ["teacher"], {"teacher": {"_id": "teacher-1", "classIds": ["class-1"]}})
    res = client.get("/api/rewards/redemptions", params={"role": "teacher"}, headers=teacher)
    assert [r["reward_id"] for r in res.json()["data"]["redemptions"]] == [class_reward.id]
    assert client.get("/api/rewards/redemptions", headers=teacher).status_code == 403

    school_admin = auth("sa", ["school_admin"], {"school": {"_id": "school-1"}})
    res = client.get("/api/rewards/redemptions", params={"role": "school_admin"}, headers=school_admin)
    assert res.json()["data"]["pagination"]["total"] == 1


def test_pending_redemptions(client, auth, student_headers, parent_headers, admin_headers, funded, make_reward):
    redeem(client, make_reward(), student_headers)
    redeem(client, make_reward(creator_id="parent-2"), student_headers)

    res = client.get("/api/rewards/redemptions/pending", headers=parent_headers)
    assert res.json()["data"]["pagination"]["total"] == 1
    res = client.get("/api/rewards/redemptions/pending", headers=admin_headers)
    assert res.json()["data"]["pagination"]["total"] == 2
    assert client.get("/api/rewards/redemptions/pending", headers=student_headers).status_code == 403


def test_get_redemption_access(client, auth, student_headers, parent_headers, funded, make_reward):
    redemption_id = redeem(client, make_reward(), student_headers).json()["data"]["redemption"]["id"]
    url = f"/api/rewards/redemptions/{redemption_id}"

    assert client.get(url, headers=student_headers).status_code == 200
    assert client.get(url, headers=parent_headers).status_code == 200
    stranger = auth("p2", ["parent"], {"parent": {"_id": "parent-2"}})
    assert client.get(url, headers=stranger).status_code == 403
    assert client.get("/api/rewards/redemptions/bogus", headers=student_headers).status_code == 400


def test_expire_stale_redemptions(db_session, make_reward):
    expired_reward = make_reward(expiry_date=utcnow() - timedelta(days=1))
    live_reward = make_reward()
    stale = RewardRedemption(reward_id=expired_reward.id, student_id="student-1", points_spent=50)
    fresh = RewardRedemption(reward_id=live_reward.id, student_id="student-1", points_spent=50)
    db_session.add_all([stale, fresh])
    db_session.commit()

    assert expire_stale_redemptions(db_session) == 1
    db_session.refresh(stale)
    db_session.refresh(fresh)
    assert stale.status == RedemptionStatus.EXPIRED
    assert fresh.status == RedemptionStatus.PENDING
