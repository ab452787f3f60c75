import time
import uuid

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from pymongo.errors import PyMongoError

from app.core.config import get_settings
from app.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from app.core.logging import bind_request_id, configure_logging, get_logger
from app.db.init import close_db, init_db, supports_transactions
from app.routers import admin, balances, leaderboard, transactions

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(
    title="Mentor Points Ledger API",
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
app.include_router(balances.router, prefix="/v1/users", tags=["balances"])
app.include_router(transactions.router, prefix="/v1/transactions", tags=["transactions"])
app.include_router(leaderboard.router, prefix="/v1/leaderboard", tags=["leaderboard"])
app.include_router(admin.router, prefix="/v1/admin", tags=["admin"])


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    await init_db()
    if not await supports_transactions():
        # Every ledger write runs in a multi-document transaction
        log.warning("startup", msg="MongoDB is not a replica set; ledger writes will fail")
    log.info("startup", msg="DB connected")


@app.on_event("shutdown")
async def shutdown():
    close_db()
    log.info("shutdown", msg="DB closed")


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}


@app.get("/health/ready")
async def ready():
    """Readiness: the database answers and can run ledger transactions."""
    try:
        transactional = await supports_transactions()
    except (RuntimeError, PyMongoError) as e:
        log.warning("readiness_failed", error=str(e))
        transactional = False
    if not transactional:
        return ORJSONResponse(status_code=503, content={"status": "unavailable", "transactions": False})
    return {"status": "ok", "transactions": True}
