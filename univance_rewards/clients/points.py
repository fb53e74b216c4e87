from ..core.config import settings
from ..errors import ServiceClientError
from .base import ServiceClient


class PointsServiceClient(ServiceClient):
    name = "points-service"

    def __init__(self, authorization: str | None = None, **kwargs):
        super().__init__(settings.POINTS_SERVICE_URL, authorization, **kwargs)

    def get_balance(self, student_id: str) -> int:
        data = self.get(f"/api/points/accounts/student/{student_id}/balance")
        try:
            return int(data["currentBalance"])
        except (KeyError, TypeError, ValueError) as e:
            raise ServiceClientError(f"{self.name} returned no balance for {student_id}") from e

    def create_transaction(self, payload: dict) -> dict:
        return self.post("/api/points/transactions", payload)
