from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from entitlements.core import config
from entitlements.core.database.engine import init_db
from entitlements.core.errors import EntitlementError
from entitlements.features.audit.routes import router as audit_router
from entitlements.features.catalog.routes import router as catalog_router
from entitlements.features.custom_roles.routes import router as custom_role_router
from entitlements.features.permissions.routes import router as user_permission_router
from entitlements.features.provisioning.routes import router as provisioning_router
from entitlements.features.templates.routes import router as template_router
from entitlements.features.users.dependencies import get_authorization_header
from entitlements.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Entitlement Engine",
    description="Multi-tenant permission resolution, module provisioning and audit",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.entitlements.features."), timing=timing, tags=tags))


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


@app.exception_handler(EntitlementError)
async def entitlement_error_handler(_request: Request, exc: EntitlementError):
    log.info("%s: %s", type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


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
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Entitlement Engine API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "All endpoints except / and /health require a Bearer token in the Authorization header",
        },
        "features": {
            "catalog": "Permissions with prerequisites and tiered modules",
            "permissions": "Per-user grants, denials, module access and effective permission resolution",
            "provisioning": "Company module provisioning with per-company pricing and cost reports",
            "templates": "Reusable permission bundles applied in one step",
            "custom_roles": "Company-defined roles that supplement or replace role defaults",
            "audit": "Append-only log of every entitlement change",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(catalog_router, tags=["catalog"])
app.include_router(user_permission_router, tags=["user permissions"])
app.include_router(provisioning_router, tags=["provisioning"])
app.include_router(template_router, tags=["templates"])
app.include_router(custom_role_router, tags=["custom roles"])
app.include_router(audit_router, tags=["audit"])
