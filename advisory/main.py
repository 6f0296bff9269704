"""
Analytical Advisors Backend API
Payments (Razorpay), KYC (Digio) and the subscriptions they unlock.
"""
from dotenv import load_dotenv
load_dotenv()

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from advisory.api.routes import kyc, payments, subscriptions
from advisory.core.config import Settings, settings as default_settings
from advisory.db.base import Base
from advisory.db.session import engine
from advisory.dependencies.auth import build_auth_provider
# Import models so they're registered with Base
from advisory.models import Subscription  # noqa: F401
from advisory.services.digio_client import DigioClient
from advisory.services.razorpay_client import RazorpayClient

logging.basicConfig(
    level=logging.DEBUG if default_settings.DEBUG else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True,
)

logger = logging.getLogger(__name__)


def run_migrations(database_url: str) -> None:
    """Run Alembic migrations up to head.
    Fails startup if migrations fail, so the DB is never left out of sync."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found, skipping Alembic migrations")
        return
    try:
        alembic_cfg = Config(str(alembic_ini))
        alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
        # configparser interpolation: escape % in url-encoded passwords
        alembic_cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
        alembic_cfg.attributes["configure_logger"] = False
        command.upgrade(alembic_cfg, "head")
        logger.info("Alembic migrations completed successfully")
    except Exception as e:
        logger.exception("Alembic migration failed: %s", e)
        raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")
    run_migrations(app.state.settings.database_url)
    yield


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    extra: dict = None,
    error=None,
) -> JSONResponse:
    """Every error leaves the API in one envelope; diagnostics only when enabled."""
    body = {"success": False, "status": "error", "message": message}
    if extra:
        body.update(extra)
    if error is not None and request.app.state.settings.expose_error_details:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=body)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        extra = {k: v for k, v in detail.items() if k not in ("message", "error")}
        response = _error_response(
            request,
            exc.status_code,
            str(detail.get("message") or "Request failed"),
            extra=extra,
            error=detail.get("error"),
        )
    else:
        response = _error_response(request, exc.status_code, str(detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        fields.append({"field": ".".join(loc) or "body", "message": err.get("msg")})
    return _error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "Invalid request body",
        extra={"fields": fields},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Something went wrong on the server",
        error=str(exc),
    )


def create_app(
    settings: Settings = None,
    razorpay: RazorpayClient = None,
    digio: DigioClient = None,
    auth_provider=None,
) -> FastAPI:
    """
    Build the API. Vendor clients and the auth provider are created once here
    from settings unless passed in (tests pass clients with mock transports).
    """
    settings = settings or default_settings

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.razorpay = razorpay or RazorpayClient.from_settings(settings)
    app.state.digio = digio or DigioClient.from_settings(settings)
    app.state.auth_provider = auth_provider or build_auth_provider(settings)

    if not app.state.razorpay.configured:
        logger.warning("[Razorpay] RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET not set; payment routes will return 503")
    if not app.state.digio.configured:
        logger.warning("[Digio] DIGIO_CLIENT_ID / DIGIO_CLIENT_SECRET not set; KYC routes will return 503")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Register routers
    app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
    # Older frontend builds call the singular path
    app.include_router(payments.router, prefix="/api/payment", tags=["Payments"], include_in_schema=False)
    app.include_router(kyc.router, prefix="/api/kyc", tags=["KYC"])
    app.include_router(subscriptions.router, prefix="/api/subscriptions", tags=["Subscriptions"])

    @app.get("/")
    async def root():
        return {"message": f"{settings.APP_NAME} is running"}

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "version": settings.APP_VERSION}

    return app


app = create_app()
