import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from companion_api.api.routes import availability, booking_requests, bookings
from companion_api.core.config import settings, _ENV_FILE
from companion_api.core.db import async_session_maker
from companion_api.core.exceptions import BookingEngineError
from companion_api.services.booking_service import complete_finished_bookings
from companion_api.services.negotiation_service import expire_stale_requests
from companion_api.services.rate_limiter import DatabaseRateLimitStore, RateLimiter

if os.getenv("ENV") != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)


async def _run_sweep() -> None:
    """Expire stale requests, complete finished bookings and purge old rate-limit hits."""
    try:
        async with async_session_maker() as session:
            try:
                expired = await expire_stale_requests(session)
                completed = 0
                if settings.auto_complete_bookings:
                    completed = await complete_finished_bookings(session)
                limiter = RateLimiter(
                    DatabaseRateLimitStore(session),
                    max_requests=settings.companion_rate_limit_max_requests,
                    window_seconds=settings.companion_rate_limit_window_seconds,
                )
                purged = await limiter.purge()
                await session.commit()
                if expired or completed or purged:
                    logger.info(
                        "Sweep: expired %d request(s), completed %d booking(s), purged %d rate-limit hit(s)",
                        expired, completed, purged,
                    )
            except Exception:
                await session.rollback()
                raise
    except Exception as e:
        logger.exception("Sweep failed: %s", e)


async def _sweep_loop() -> None:
    while True:
        await asyncio.sleep(settings.sweep_interval_seconds)
        await _run_sweep()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
    logger.info(
        "Booking rules: %g-%g hours, requests expire after %d hours, sweep every %d seconds",
        settings.min_booking_hours,
        settings.max_booking_hours,
        settings.booking_request_expiry_hours,
        settings.sweep_interval_seconds,
    )
    if not settings.email_enabled:
        logger.warning("SMTP not configured; notifications will only be logged")
    await _run_sweep()
    task = asyncio.create_task(_sweep_loop())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


app = FastAPI(
    title="Companion Booking API",
    description="Availability, slots, bookings and booking requests for companion services",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(availability.router, prefix="/api/v1")
app.include_router(booking_requests.router, prefix="/api/v1")
app.include_router(bookings.router, prefix="/api/v1")


def _cors_headers(origin: str | None) -> dict[str, str]:
    """Add CORS headers to error responses so the browser doesn't block them."""
    headers = {
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Authorization, Content-Type",
    }
    if origin and origin in settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = origin
    elif settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = settings.cors_origins_list[0]
    return headers


@app.exception_handler(BookingEngineError)
async def booking_engine_exception_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.detail)
    else:
        logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=_cors_headers(request.headers.get("origin")),
    )


def _validation_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed input is a 400 like every other validation failure."""
    return JSONResponse(
        status_code=400,
        content={"detail": _validation_errors(exc)},
        headers=_cors_headers(request.headers.get("origin")),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return actual error in JSON; include CORS so 500 responses are not blocked by browser."""
    origin = request.headers.get("origin")
    headers = _cors_headers(origin)
    if isinstance(exc, HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=headers,
        )
    logger.exception("Unhandled exception: %s", exc)
    detail = f"{type(exc).__name__}: {str(exc)}"
    return JSONResponse(
        status_code=500,
        content={"detail": detail},
        headers=headers,
    )


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
