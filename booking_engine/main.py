import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models
from .database import engine
from .errors import BookingEngineError, GatewayError
from .routers import admin_router, booking_router, checkout_router, payment_router, vendor_router
from .outbox_poller import run_outbox_poller
from .booking_scheduler import run_booking_scheduler

import redis.asyncio as redis
from fastapi_limiter import FastAPILimiter
from .config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# Setup logger
logger = logging.getLogger("booking_engine")

# Create database tables on startup (Alembic owns the schema in deployed environments)
models.Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    logger.info("Starting background tasks...")

    redis_client = None
    try:
        redis_client = redis.from_url(settings.REDIS_URL, encoding="utf-8")
        await FastAPILimiter.init(redis_client)
        logger.info("FastAPILimiter initialized with Redis.")
    except Exception as e:
        logger.error(f"Failed to initialize FastAPILimiter: {e}")

    # Outbox -> Kafka notifications
    poller_task = asyncio.create_task(run_outbox_poller())

    # Checkout expiry and payment reconciliation
    scheduler_task = asyncio.create_task(run_booking_scheduler())

    yield  # The application is now running

    logger.info("Shutting down background tasks...")

    if redis_client is not None:
        await redis_client.aclose()

    poller_task.cancel()
    scheduler_task.cancel()

    for name, task in (("Outbox poller", poller_task), ("Booking scheduler", scheduler_task)):
        try:
            await task
        except asyncio.CancelledError:
            logger.info(f"{name} task successfully cancelled.")
        except Exception as e:
            logger.error(f"Error during {name.lower()} shutdown: {e}")


app = FastAPI(
    title="Booking Engine API",
    description="Bookings, payments, refunds and vendor payouts for the travel marketplace.",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(BookingEngineError)
async def booking_engine_error_handler(request: Request, exc: BookingEngineError):
    content = {"success": False, "message": exc.message}
    if exc.retryable:
        content["retryable"] = True
    if isinstance(exc, GatewayError) and exc.gateway_status:
        content["gateway_status"] = exc.gateway_status
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "message": message},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "An unexpected error occurred. Please try again later."},
    )


for module in (booking_router, payment_router, checkout_router, vendor_router, admin_router):
    app.include_router(module.router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"message": "Welcome to the Booking Engine"}
