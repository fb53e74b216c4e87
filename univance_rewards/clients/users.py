from ..core.config import settings
from .base import ServiceClient


class UserServiceClient(ServiceClient):
    name = "user-service"

    def __init__(self, authorization: str | None = None, **kwargs):
        super().__init__(settings.USER_SERVICE_URL, authorization, **kwargs)

    def get_profiles(self) -> dict:
        """Role profiles of the caller, keyed by role (parent, student, teacher, school)."""
        return self.get("/api/users/me/profiles") or {}

    def get_student_me(self) -> dict:
        return self.get("/api/students/me")

    def get_student(self, student_id: str) -> dict:
        return self.get(f"/api/students/{student_id}")

    def get_parent_by_user(self, user_id: str) -> dict:
        return self.get(f"/api/parents/by-user/{user_id}")

    def get_my_children(self) -> list[dict]:
        return self.get("/api/parents/me/children") or []

    def get_student_classes(self, student_id: str) -> list[dict]:
        return self.get(f"/api/students/{student_id}/classes") or []
