from contextlib import asynccontextmanager

from sqlalchemy import text

from stockflow.core.errors import StockFlowError
from stockflow.core.observability import (
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    stockflow_error_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from stockflow.core.config import settings
from stockflow.db.session import SessionLocal, engine
from stockflow.routers import audit, locations, products, reconciliation, transfer_jobs, transfer_policy, transfers
from stockflow.worker import TransferWorker


@asynccontextmanager
async def lifespan(app: FastAPI):
    worker = None
    if settings.worker_enabled:
        worker = TransferWorker(SessionLocal)
        worker.start()
    app.state.worker = worker
    try:
        yield
    finally:
        if worker is not None:
            worker.stop()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Multi-location stock transfer service.\n\n"
        "Transfers move through draft, pending_check, checked, in_transit, arrived, "
        "verifying, verified and completed. Source stock is debited on send and "
        "destination stock credited on complete, both through the append-only ledger.\n\n"
        "Authenticate with a bearer token whose claims carry `sub`, `business_id`, "
        "`permissions` and `roles`."
    ),
    lifespan=lifespan,
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "transfers", "description": "Stock transfer workflow transitions and queued jobs."},
        {"name": "locations", "description": "Locations, access scopes, stock levels and ledger history."},
        {"name": "products", "description": "Minimal product catalog used to validate transfer items."},
        {"name": "reconciliation", "description": "Ledger versus projection reconciliation runs."},
        {"name": "transfer-policy", "description": "Separation-of-duties settings per business."},
        {"name": "audit", "description": "Audit trail endpoints for sensitive operations."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(StockFlowError, stockflow_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(products.router)
app.include_router(locations.router)
app.include_router(transfers.router)
app.include_router(transfer_jobs.router)
app.include_router(transfer_policy.router)
app.include_router(reconciliation.router)
app.include_router(audit.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        return {"ok": False}
    return {"ok": True}
