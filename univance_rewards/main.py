import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.routes import include_routers
from .core.config import settings
from .core.logging import configure_logging
from .db.base import Base
from .db.session import engine
from .errors import http_exception_handler, validation_exception_handler, unhandled_exception_handler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info(f"Rewards Service started ({settings.ENVIRONMENT})")
    yield


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Univance Rewards API", version="1.0.0", lifespan=lifespan)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    include_routers(app)
    app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")

    @app.get("/health", tags=["Health"])
    def health():
        return {
            "status": "OK",
            "message": "Rewards Service is running",
            "environment": settings.ENVIRONMENT,
        }

    return app


app = create_app()
