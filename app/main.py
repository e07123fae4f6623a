from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.exceptions import AuthorizationError, AuthorizationLookupError
from app.features.permissions.registry import registry
from app.features.permissions.routes import router as rbac_router
from app.features.permissions.seed import load_custom_roles, seed_default_catalog
from app.features.users.dependencies import get_authorization_header
from app.features.users.routes import router as admin_user_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Starting tenant admin API")

docs_on = config.ENABLE_DOCS
app = FastAPI(
    title="Tenant Admin Backend",
    description="Multi-tenant admin API with role hierarchy and organization-scoped authorization",
    version="0.1.0",
    docs_url="/docs" if docs_on else None,
    redoc_url="/redoc" if docs_on else None,
    openapi_url="/openapi.json" if docs_on else None
)

# One bucket per bearer token
app.state.limiter = Limiter(key_func=get_authorization_header, default_limits=[config.RATE_LIMIT])
app.add_middleware(SlowAPIMiddleware)


class RouteTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("admin.app.features."), seconds=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=RouteTimings(), metric_namer=StarletteScopeToName("admin", app))

if docs_on:
    log.warning("API docs are public at /docs")
if config.ALLOW_ORIGIN:
    log.warning("CORS allows origin %s", config.ALLOW_ORIGIN)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.ALLOW_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    # {field: message}, keyed by the last element of each error location
    errors = {}
    for error in exc.errors():
        loc = error.get("loc")
        if not loc or "msg" not in error:
            continue
        field = "root" if loc[-1] == "__root__" else loc[-1]
        errors[field] = error["msg"]
    log.info("Rejected request body/query: %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "rate_limited", "detail": "You are going too fast"}, status_code=429)


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError) -> Response:
    log.info("Denied %s %s: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(AuthorizationLookupError)
async def authorization_lookup_error_handler(request: Request, exc: AuthorizationLookupError) -> Response:
    log.error("Authorization undecidable for %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def startup():
    """Create tables, seed the default catalog and register custom roles."""
    await init_db()
    async with AsyncSessionLocal() as db:
        if config.SEED_DEFAULT_CATALOG:
            await seed_default_catalog(db)
        await load_custom_roles(db, registry)
    log.info("Startup complete (%d roles registered)", len(registry.names()))


@app.get("/")
async def root():
    return {
        "message": "Tenant Admin Backend API",
        "version": "0.1.0",
        "docs": "/docs" if docs_on else None,
        "authentication": "Bearer session token required for /admin/users/* and /rbac/*",
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}


app.include_router(admin_user_router, prefix="/admin/users", tags=["admin"])
app.include_router(rbac_router, prefix="/rbac", tags=["rbac"])
