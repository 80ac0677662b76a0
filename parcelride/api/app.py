"""
FastAPI application factory.

* Registers routes for bookings, participants and the catalog.
* Translates booking engine errors into JSON error responses.
* Closes shared Redis connections via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from parcelride.api.dependencies import reset_singletons
from parcelride.api.middleware import limiter
from parcelride.api.routes import bookings, catalog, participants
from parcelride.config import settings
from parcelride.domain.errors import BookingError
from parcelride.infrastructure.redis_client import close_redis

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    reset_singletons()
    await close_redis()


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    logger.info("%s %s -> %d: %s", request.method, request.url.path,
                exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app() -> FastAPI:
    app = FastAPI(
        title="Parcel Ride Booking API",
        description=(
            "Books auto, tempo and truck trips for package transport: "
            "fare quotes, driver matching, OTP-verified trip start, "
            "completion and cancellation."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(BookingError, booking_error_handler)

    # Routers
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(bookings.ws_router, prefix="/api/v1")
    app.include_router(participants.router, prefix="/api/v1")
    app.include_router(catalog.router, prefix="/api/v1")

    return app
