import uuid
from datetime import datetime, timedelta, timezone
from typing import Generator

import jwt
import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from univance_rewards.api.deps import get_db, get_user_client, get_points_client, get_notification_client
from univance_rewards.core.config import settings
from univance_rewards.db.base import Base
from univance_rewards.errors import ServiceClientError
from univance_rewards.main import app
from univance_rewards.models.reward import Reward
from univance_rewards.models.reward_category import RewardCategory


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeUserClient:
    """Stands in for the user service; profiles are keyed by Authorization header."""

    def __init__(self):
        self.authorization = None
        self.profiles_by_auth: dict[str, dict] = {}
        self.children: list[dict] = []
        self.child_ids_by_user: dict[str, list[str]] = {}
        self.classes: dict[str, list[dict]] = {}
        self.students: dict[str, dict] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise ServiceClientError("user-service unavailable")

    def get_profiles(self):
        self._check()
        return self.profiles_by_auth.get(self.authorization, {})

    def get_student_me(self):
        self._check()
        return self.get_profiles().get("student") or {}

    def get_student(self, student_id):
        self._check()
        if student_id not in self.students:
            raise ServiceClientError("Student not found", status_code=404)
        return self.students[student_id]

    def get_parent_by_user(self, user_id):
        self._check()
        return {"childIds": self.child_ids_by_user.get(user_id, [])}

    def get_my_children(self):
        self._check()
        return self.children

    def get_student_classes(self, student_id):
        self._check()
        return self.classes.get(student_id, [])


class FakePointsClient:
    def __init__(self):
        self.balances: dict[str, int] = {}
        self.transactions: list[dict] = []
        self.fail_balance = False
        self.fail_transaction = False

    def get_balance(self, student_id):
        if self.fail_balance:
            raise ServiceClientError("points-service unavailable")
        return self.balances.get(student_id, 0)

    def create_transaction(self, payload):
        if self.fail_transaction:
            raise ServiceClientError("points-service unavailable")
        self.transactions.append(payload)
        return {"_id": str(uuid.uuid4()), **payload}


class FakeNotificationClient:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    def send(self, type, recipient_id, data):
        if self.fail:
            raise ServiceClientError("notification-service unavailable")
        self.sent.append({"type": type, "recipient_id": recipient_id, "data": data})
        return {}


@pytest.fixture(autouse=True)
def create_test_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def users() -> FakeUserClient:
    return FakeUserClient()


@pytest.fixture
def points() -> FakePointsClient:
    return FakePointsClient()


@pytest.fixture
def notifier() -> FakeNotificationClient:
    return FakeNotificationClient()


@pytest.fixture
def client(db_session, users, points, notifier, tmp_path, monkeypatch):
    def _override_get_db():
        yield db_session

    def _override_users(request: Request):
        users.authorization = request.headers.get("Authorization")
        return users

    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_user_client] = _override_users
    app.dependency_overrides[get_points_client] = lambda: points
    app.dependency_overrides[get_notification_client] = lambda: notifier

    yield TestClient(app)

    app.dependency_overrides.clear()


def make_token(user_id: str, roles: list[str], expires_in: int = 3600, **claims) -> str:
    payload = {
        "userId": user_id,
        "email": f"{user_id}@example.com",
        "roles": roles,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        **claims,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def auth(users):
    """Headers for a user holding ``roles`` with the given role profiles."""

    def _auth(user_id: str, roles: list[str], profiles: dict | None = None, **claims) -> dict:
        header = f"Bearer {make_token(user_id, roles, **claims)}"
        users.profiles_by_auth[header] = profiles or {}
        return {"Authorization": header}

    return _auth


@pytest.fixture
def admin_headers(auth):
    return auth("admin-user", ["platform_admin"])


@pytest.fixture
def parent_headers(auth):
    return auth("parent-user", ["parent"], {"parent": {"_id": "parent-1"}})


@pytest.fixture
def student_headers(auth):
    return auth(
        "student-user",
        ["student"],
        {"student": {"_id": "student-1", "schoolId": "school-1", "parentIds": ["parent-1"]}},
    )


@pytest.fixture
def category(db_session) -> RewardCategory:
    category = RewardCategory(
        name="Family Privileges",
        type="family",
        subcategory_type="privilege",
        created_by="migration",
        creator_role="system",
        is_system=True,
        visibility="public",
    )
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture
def make_reward(db_session, category):
    def _make(**overrides) -> Reward:
        data = {
            "title": "Extra screen time",
            "description": "Thirty more minutes",
            "points_cost": 50,
            "category_id": category.id,
            "category": "family",
            "subcategory": "privilege",
            "category_name": category.name,
            "creator_id": "parent-1",
            "creator_type": "parent",
        }
        data.update(overrides)
        reward = Reward(**data)
        db_session.add(reward)
        db_session.commit()
        return reward

    return _make
