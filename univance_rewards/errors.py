from __future__ import annotations

import logging

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import settings

logger = logging.getLogger(__name__)


class RewardsError(Exception):
    """Base class for domain errors raised by the service layer."""


class RedemptionStateError(RewardsError):
    """A redemption status transition that is not allowed."""


class InsufficientPointsError(RewardsError):
    """The student's balance does not cover the reward's cost."""

    def __init__(self, current_balance: int, required: int):
        super().__init__("Insufficient points for redemption")
        self.current_balance = current_balance
        self.required = required


class CategoryResolutionError(RewardsError):
    """Category id or legacy category pair could not be resolved."""


class DuplicateCategoryError(RewardsError):
    """A live category with the same name already exists for the creator."""


class InvalidRewardError(RewardsError):
    """A reward whose fields break a model rule (quantity, school, class)."""


class ServiceClientError(RewardsError):
    """A call to a sibling service (users, points, notifications) failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def http_exception_handler(_: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, dict):
        content = {"success": False, **detail}
    else:
        content = {"success": False, "message": detail}
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(content),
        headers=getattr(exc, "headers", None),
    )


def validation_exception_handler(_: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({
            "success": False,
            "message": "Invalid request",
            "error": exc.errors(),
        }),
    )


def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Rewards Service Error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    content = {"success": False, "message": "Internal Server Error"}
    if settings.is_development:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)
