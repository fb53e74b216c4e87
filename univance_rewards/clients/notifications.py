from ..core.config import settings
from .base import ServiceClient


class NotificationClient(ServiceClient):
    name = "notification-service"

    def __init__(self, authorization: str | None = None, **kwargs):
        super().__init__(settings.NOTIFICATION_SERVICE_URL, authorization, **kwargs)

    def send(self, type: str, recipient_id: str, data: dict) -> dict:
        return self.post(
            "/api/notifications",
            {"type": type, "recipientId": recipient_id, "data": data},
        )
