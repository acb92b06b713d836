from sqlalchemy import text

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from stockledger import __version__
from stockledger.core.config import settings
from stockledger.core.exceptions import StockLedgerError
from stockledger.core.observability import (
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    stock_ledger_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from stockledger.db.session import engine
from stockledger.routers import inventory, products

app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description=(
        "Stock ledger API.\n\n"
        "Every stock change is written as an immutable movement together with the "
        "product's current stock. Send `X-Business-Id` and `X-Actor-Id` headers on "
        "each request."
    ),
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "products", "description": "Product catalog and stock thresholds."},
        {"name": "inventory", "description": "Stock movements, transfers, audits and low-stock reports."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(StockLedgerError, stock_ledger_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(products.router)
app.include_router(inventory.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
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
