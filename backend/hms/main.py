import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from hms.config import get_settings
from hms.database import engine, Base
from hms.exceptions import ConfigurationError, HospitalError, ValidationError
from hms.rate_limit import limiter, rate_limit_exceeded_handler
from hms.routers import appointments, audit, billing, dashboard, doctors, patients
from hms.routers import auth as auth_router
from hms.routing import RouteGateMiddleware
from hms.validation import violations_from_errors

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: refuse to run without a signing secret, then create tables
    get_settings().require_jwt_secret()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s started", settings.app_name)
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Hospital management API: patients, doctors, appointments and billing",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


class NoCacheMiddleware(BaseHTTPMiddleware):
    """API responses carry patient data; browsers must not cache them."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0"
            response.headers["Expires"] = "0"
            response.headers["Pragma"] = "no-cache"
        return response


SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; script-src 'self'; "
        "img-src 'self' data: https:; connect-src 'self'; font-src 'self'; "
        "object-src 'none'; media-src 'self'; frame-src 'none'"
    ),
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


# Last added runs first: CORS, security headers, no-cache, rate limit, route gate.
app.add_middleware(RouteGateMiddleware)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(NoCacheMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(message: str, **extra) -> dict:
    return {"success": False, "message": message, **extra}


@app.exception_handler(HospitalError)
async def hospital_error_handler(request: Request, exc: HospitalError):
    if isinstance(exc, ConfigurationError):
        logger.error("Configuration error on %s: %s", request.url.path, exc.reason)
    elif exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.reason)
    else:
        logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc.reason)

    if isinstance(exc, ValidationError):
        body = _error_body(exc.public_message, errors=[v.to_dict() for v in exc.violations])
    else:
        body = _error_body(exc.public_message)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    violations = violations_from_errors(exc.errors(), skip_prefix=("body", "query", "path"))
    return JSONResponse(
        status_code=400,
        content=_error_body("Validation failed", errors=[v.to_dict() for v in violations]),
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_error_body("Internal server error"))


app.include_router(auth_router.router, prefix="/api/auth", tags=["Auth"])
app.include_router(patients.router, prefix="/api/patients", tags=["Patients"])
app.include_router(doctors.router, prefix="/api/doctors", tags=["Doctors"])
app.include_router(appointments.router, prefix="/api/appointments", tags=["Appointments"])
app.include_router(billing.router, prefix="/api/billing", tags=["Billing"])
app.include_router(dashboard.router, prefix="/api/dashboard", tags=["Dashboard"])
app.include_router(audit.router, prefix="/api/audit-logs", tags=["Audit"])


@app.get("/api/health")
async def health_check():
    return {"success": True, "data": {"status": "healthy", "service": settings.app_name}}
