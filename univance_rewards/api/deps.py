import logging
import uuid
from dataclasses import dataclass, field
from typing import Generator, Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
import jwt
from ..core.config import settings
from ..db.session import SessionLocal
from ..clients import UserServiceClient, PointsServiceClient, NotificationClient
from ..errors import ServiceClientError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_ROLES = ("platform_admin", "sub_admin")
MANAGER_ROLES = ("parent", "teacher", "school_admin", "platform_admin", "sub_admin")


@dataclass
class CurrentUser:
    id: str
    email: str | None = None
    roles: list[str] = field(default_factory=list)
    school_id: str | None = None
    profiles: dict = field(default_factory=dict)
    authorization: str | None = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles) -> bool:
        return any(r in self.roles for r in roles)

    @property
    def is_admin(self) -> bool:
        return self.has_any_role(ADMIN_ROLES)

    def profile(self, role: str) -> dict:
        return self.profiles.get(role) or {}

    def profile_id(self, role: str) -> str | None:
        pid = self.profile(role).get("_id")
        return str(pid) if pid is not None else None


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_client(request: Request) -> UserServiceClient:
    return UserServiceClient(request.headers.get("Authorization"))


def get_points_client(request: Request) -> PointsServiceClient:
    return PointsServiceClient(request.headers.get("Authorization"))


def get_notification_client(request: Request) -> NotificationClient:
    return NotificationClient(request.headers.get("Authorization"))


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    users: UserServiceClient = Depends(get_user_client),
) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="No authorization token provided")
    payload = decode_access_token(credentials.credentials)
    user_id = payload.get("userId") or payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    try:
        profiles = users.get_profiles()
    except ServiceClientError as e:
        logger.warning(f"Could not load profiles for user {user_id}: {e}")
        profiles = {}

    return CurrentUser(
        id=str(user_id),
        email=payload.get("email"),
        roles=list(payload.get("roles") or []),
        school_id=payload.get("schoolId"),
        profiles=profiles,
        authorization=f"Bearer {credentials.credentials}",
    )


def require_roles(*roles: str):
    def checker(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not current.has_any_role(roles):
            raise HTTPException(status_code=403, detail="Access denied. Insufficient permissions.")
        return current
    return checker


def valid_id(value: str, label: str) -> str:
    """400 unless ``value`` is a well-formed UUID."""
    try:
        uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(400, f"Invalid {label} ID format")
    return value
