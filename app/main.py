import time
import uuid

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.events import DATA_CHANGED, USERS_RECOVERED, get_event_bus
from app.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from app.core.logging import bind_request_id, configure_logging, get_logger
from app.routers import admin, auth, kyc, transactions, users
from app.services.monitoring import get_monitor
from app.services.persistence import get_persistence
from app.services.users import seed_admin

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

_subscriptions: list = []

app = FastAPI(
    title="Credox Ledger API",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(auth.router, prefix="/v1/auth", tags=["auth"])
app.include_router(users.router, prefix="/v1/users", tags=["users"])
app.include_router(transactions.router, prefix="/v1/transactions", tags=["transactions"])
app.include_router(kyc.router, prefix="/v1/kyc", tags=["kyc"])
app.include_router(admin.router, prefix="/v1/admin", tags=["admin"])


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    seed_admin()
    get_persistence().start_periodic_backup()
    if settings.monitoring_enabled:
        monitor = get_monitor()
        events = get_event_bus()
        _subscriptions.append(events.subscribe(DATA_CHANGED, lambda **_: monitor.notify_change("users")))
        _subscriptions.append(
            events.subscribe(USERS_RECOVERED, lambda count, **_: log.info("users_recovered", count=count))
        )
        monitor.start()
    log.info("startup", msg="Record store ready", backend=settings.store_backend)


@app.on_event("shutdown")
async def shutdown():
    monitor = get_monitor()
    monitor.handle_before_shutdown()
    await monitor.stop_monitoring()
    await get_persistence().stop_periodic_backup()
    while _subscriptions:
        _subscriptions.pop()()
    log.info("shutdown")


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}
