import logging
from typing import Any

import requests

from ..core.config import settings
from ..errors import ServiceClientError

logger = logging.getLogger(__name__)


class ServiceClient:
    """Thin JSON client for a sibling service.

    Forwards the caller's Authorization header and unwraps the
    ``{"success": ..., "data": ...}`` envelope the services respond with.
    """

    name = "service"

    def __init__(self, base_url: str, authorization: str | None = None,
                 session: requests.Session | None = None, timeout: float | None = None):
        self.base_url = base_url.rstrip("/")
        self.authorization = authorization
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self.authorization} if self.authorization else {}

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.warning(f"{self.name} request {method} {path} failed: {e}")
            raise ServiceClientError(f"{self.name} unavailable: {e}") from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(f"{self.name} {method} {path} returned {response.status_code}: {message}")
            raise ServiceClientError(message, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise ServiceClientError(f"{self.name} returned invalid JSON") from e
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    def get(self, path: str, **kwargs) -> Any:
        return self._request("GET", path, **kwargs)

    def post(self, path: str, payload: dict, **kwargs) -> Any:
        return self._request("POST", path, json=payload, **kwargs)


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"
