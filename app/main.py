from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.rate_limit import limiter
from app.features.enforcement.errors import EnforcementError, ErrorCode
from app.features.permissions.cache import PermissionCache
from app.features.permissions.routes import router as permission_router, admin_router
from app.features.permissions.store import PolicyStore
from app.features.settings.cache import SettingsCache
from app.features.settings.routes import router as settings_router
from app.features.settings.store import SettingsStore
from app.features.settings.tree import OnMissing
from app.features.users.routes import router as user_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Marketplace Policy Backend",
    description="Role/permission matrix, settings gates and admin control plane",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(EnforcementError)
async def enforcement_error_handler(_request: Request, exc: EnforcementError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(_request: Request, exc: SQLAlchemyError):
    log.error(f"Database error: {exc}", exc_info=exc)
    error = EnforcementError(ErrorCode.UPSTREAM_UNAVAILABLE, "Policy store is unavailable")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize the database and the policy caches."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")

    app.state.permission_cache = PermissionCache(PolicyStore(AsyncSessionLocal).role_permissions)
    app.state.settings_cache = SettingsCache(
        SettingsStore(AsyncSessionLocal).load_tree,
        on_missing=OnMissing(config.SETTINGS_ON_MISSING),
    )
    app.state.settings_cache.start()


@app.on_event("shutdown")
async def shutdown():
    await app.state.settings_cache.stop()


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Marketplace Policy Backend API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "public_endpoints": ["/settings/public", "/settings/password-policy/check", "/health"]
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(user_router, prefix="/users", tags=["users"])

# Role/permission catalog, matrix and RBAC administration
app.include_router(permission_router, tags=["permissions"])
app.include_router(admin_router, tags=["admin"])

# Settings tree
app.include_router(settings_router, prefix="/settings", tags=["settings"])
