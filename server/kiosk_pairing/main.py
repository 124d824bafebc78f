import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi import Request as FastAPIRequest
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from kiosk_pairing.api import api_router
from kiosk_pairing.core.config import Settings, get_settings
from kiosk_pairing.core.errors import PairingError, pairing_error_handler
from kiosk_pairing.core.rate_limit import limiter, rate_limit_exceeded_handler
from kiosk_pairing.db.session import SessionLocal
from kiosk_pairing.services.sweeper import PairingSweeper

settings = get_settings()

# Module loggers (pairing, outbox, sweeper) report transitions at INFO
logging.getLogger("kiosk_pairing").setLevel(logging.INFO)

# Headers the admin console and kiosks send cross-origin
CORS_ALLOW_HEADERS = ["Authorization", "Content-Type", "X-Kiosk-Session", "Last-Event-ID"]
CORS_ALLOW_METHODS = ["GET", "POST", "DELETE", "OPTIONS"]

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.sweeper = None
    if settings.sweeper_enabled:
        app.state.sweeper = PairingSweeper(SessionLocal, settings.sweep_interval_seconds)
        app.state.sweeper.start()
    try:
        yield
    finally:
        if app.state.sweeper is not None:
            await app.state.sweeper.stop()


def add_cors(app: FastAPI, settings: Settings) -> None:
    """Wildcard origins for local development, an explicit list everywhere else."""
    if settings.cors_origins.strip() == "*":
        # Bearer tokens, not cookies, so no credentials are needed
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        return
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=CORS_ALLOW_METHODS,
        allow_headers=CORS_ALLOW_HEADERS,
    )


app = FastAPI(
    title="Kiosk Pairing API",
    description="Activation codes, redemption and real-time pairing events for kiosks",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(PairingError, pairing_error_handler)


@app.exception_handler(Exception)
async def global_exception_handler(request: FastAPIRequest, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    content = {"detail": "Internal server error", "error_code": "INTERNAL", "retryable": True}
    if not settings.is_production:
        content["debug"] = str(exc)
    return JSONResponse(status_code=500, content=content)


add_cors(app, settings)
app.include_router(api_router, prefix="/api")


@app.get("/health")
def health_check(request: FastAPIRequest):
    sweeper = getattr(request.app.state, "sweeper", None)
    return {"status": "ok", "sweeper": "running" if sweeper and sweeper.running else "off"}
