import uuid

from univance_rewards.data.default_categories import DEFAULT_CATEGORIES
from univance_rewards.models.reward import Reward
from univance_rewards.models.reward_category import RewardCategory
from univance_rewards.services.category_service import migrate_legacy_rewards


def test_create_category_and_duplicate_rejected(client, parent_headers):
    body = {"name": "  Weekend treats ", "type": "family", "subcategory_type": "item"}
    res = client.post("/api/rewards/categories", json=body, headers=parent_headers)
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["name"] == "Weekend treats"
    assert data["created_by"] == "parent-user"
    assert data["creator_role"] == "parent"
    assert data["is_system"] is False

    res = client.post("/api/rewards/categories", json=body, headers=parent_headers)
    assert res.status_code == 400
    assert res.json() == {"success": False, "message": "Category with this name already exists"}


def test_students_cannot_create_categories(client, student_headers):
    res = client.post("/api/rewards/categories", json={"name": "Mine", "type": "family"}, headers=student_headers)
    assert res.status_code == 403


def test_create_category_requires_type(client, parent_headers):
    res = client.post("/api/rewards/categories", json={"name": "No type"}, headers=parent_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid request"


def test_parent_category_checks(client, parent_headers):
    body = {"name": "Child", "type": "family", "parent_category_id": "not-a-uuid"}
    res = client.post("/api/rewards/categories", json=body, headers=parent_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid parent category ID format"

    body["parent_category_id"] = str(uuid.uuid4())
    res = client.post("/api/rewards/categories", json=body, headers=parent_headers)
    assert res.status_code == 404


def test_category_cannot_be_its_own_parent(client, parent_headers):
    created = client.post(
        "/api/rewards/categories", json={"name": "Loop", "type": "family"}, headers=parent_headers
    ).json()["data"]
    res = client.put(
        f"/api/rewards/categories/{created['id']}",
        json={"parent_category_id": created["id"]},
        headers=parent_headers,
    )
    assert res.status_code == 400
    assert res.json()["message"] == "Category cannot be its own parent"


def test_system_categories_are_read_only(client, admin_headers, category):
    res = client.put(f"/api/rewards/categories/{category.id}", json={"name": "Renamed"}, headers=admin_headers)
    assert res.status_code == 403
    assert res.json()["message"] == "System categories cannot be modified"
    res = client.delete(f"/api/rewards/categories/{category.id}", headers=admin_headers)
    assert res.status_code == 403


def test_update_ignores_protected_fields_and_delete_hides(client, parent_headers):
    created = client.post(
        "/api/rewards/categories", json={"name": "Chores", "type": "family"}, headers=parent_headers
    ).json()["data"]
    url = f"/api/rewards/categories/{created['id']}"

    res = client.put(url, json={"description": "Household help", "color": "#ff0000"}, headers=parent_headers)
    assert res.status_code == 200
    assert res.json()["data"]["description"] == "Household help"
    assert res.json()["data"]["created_by"] == "parent-user"

    assert client.delete(url, headers=parent_headers).status_code == 200
    assert client.get(url, headers=parent_headers).status_code == 404


def test_private_category_visibility(client, auth, parent_headers):
    created = client.post(
        "/api/rewards/categories", json={"name": "Secret", "type": "family"}, headers=parent_headers
    ).json()["data"]
    other = auth("other-parent", ["parent"], {"parent": {"_id": "parent-9"}})
    res = client.get(f"/api/rewards/categories/{created['id']}", headers=other)
    assert res.status_code == 403

    names = [c["name"] for c in client.get("/api/rewards/categories", headers=other).json()["data"]["categories"]]
    assert "Secret" not in names


def test_list_categories_sorted_and_paginated(client, admin_headers):
    res = client.post("/api/rewards/categories/defaults", headers=admin_headers)
    assert res.status_code == 201
    assert res.json()["data"] == {"created": len(DEFAULT_CATEGORIES), "skipped": 0}

    res = client.get("/api/rewards/categories", params={"limit": 4, "page": 2}, headers=admin_headers)
    body = res.json()["data"]
    assert body["pagination"] == {"total": 15, "page": 2, "limit": 4, "pages": 4}
    orders = [c["display_order"] for c in body["categories"]]
    assert orders == sorted(orders)

    res = client.get("/api/rewards/categories", params={"type": "school", "search": "STORE"}, headers=admin_headers)
    assert [c["name"] for c in res.json()["data"]["categories"]] == ["School Store Items"]


def test_default_categories_are_idempotent_and_admin_only(client, admin_headers, parent_headers):
    assert client.post("/api/rewards/categories/defaults", headers=parent_headers).status_code == 403
    client.post("/api/rewards/categories/defaults", headers=admin_headers)
    res = client.post("/api/rewards/categories/defaults", headers=admin_headers)
    assert res.json()["data"] == {"created": 0, "skipped": len(DEFAULT_CATEGORIES)}


def test_hierarchy_groups_children(client, parent_headers):
    top = client.post(
        "/api/rewards/categories",
        json={"name": "Outdoors", "type": "family", "visibility": "public"},
        headers=parent_headers,
    ).json()["data"]
    client.post(
        "/api/rewards/categories",
        json={"name": "Camping", "type": "family", "parent_category_id": top["id"]},
        headers=parent_headers,
    )
    res = client.get("/api/rewards/categories/hierarchy", headers=parent_headers)
    assert res.status_code == 200
    nodes = {n["category"]["name"]: n for n in res.json()["data"]}
    assert [c["name"] for c in nodes["Outdoors"]["subcategories"]] == ["Camping"]
    assert "Camping" not in nodes


def test_migrate_links_legacy_rewards(db_session):
    legacy = Reward(
        title="Old reward", description="From before categories", points_cost=10,
        category="school", subcategory="item", creator_id="t-1", creator_type="teacher",
    )
    db_session.add(legacy)
    db_session.commit()

    summary = migrate_legacy_rewards(db_session)
    assert summary["updated"] == 1 and summary["failed"] == 0
    db_session.refresh(legacy)
    linked = db_session.get(RewardCategory, legacy.category_id)
    assert linked.name == "School Store Items"
    assert legacy.category_name == "school"


def test_deleted_category_name_can_be_reused(client, parent_headers):
    body = {"name": "Chores", "type": "family"}
    first = client.post("/api/rewards/categories", json=body, headers=parent_headers).json()["data"]
    client.delete(f"/api/rewards/categories/{first['id']}", headers=parent_headers)

    res = client.post("/api/rewards/categories", json=body, headers=parent_headers)
    assert res.status_code == 201
    assert res.json()["data"]["id"] != first["id"]


def test_rename_onto_existing_name_rejected(client, parent_headers):
    client.post("/api/rewards/categories", json={"name": "Outings", "type": "family"}, headers=parent_headers)
    other = client.post(
        "/api/rewards/categories", json={"name": "Treats", "type": "family"}, headers=parent_headers
    ).json()["data"]
    url = f"/api/rewards/categories/{other['id']}"

    res = client.put(url, json={"name": "Outings"}, headers=parent_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Category with this name already exists"

    assert client.put(url, json={"name": None}, headers=parent_headers).status_code == 400
    assert client.put(url, json={"type": None}, headers=parent_headers).status_code == 400
