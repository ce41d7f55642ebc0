"""
Crypto payments backend API: invoices, payment ingestion, confirmations, billing.
"""
from dotenv import load_dotenv
load_dotenv()

import logging
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from cryptopay.api.routes import billing, confirmations, invoices, merchants, payments
from cryptopay.core.config import get_settings
from cryptopay.core.errors import CryptoPayError, StorageError
from cryptopay.db.base import Base
from cryptopay.db.session import engine, normalize_database_url
# Import all models so they're registered with Base
from cryptopay.models import Invoice, Merchant, MerchantUsageMonthly, Payment, PaymentsLedger, Wallet  # noqa: F401
from cryptopay.services.price_oracle import PriceCache

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True,
)

logger = logging.getLogger(__name__)


def run_migrations() -> bool:
    """Run Alembic migrations on startup. Returns False when Alembic is not set up here."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found, skipping Alembic migrations")
        return False
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        logger.error("DATABASE_URL is not set. Alembic migrations will not run.")
        return False
    alembic_cfg = Config(str(alembic_ini))
    alembic_cfg.set_main_option("sqlalchemy.url", normalize_database_url(db_url))
    try:
        command.upgrade(alembic_cfg, "head")
        logger.info("Alembic migrations completed successfully")
        return True
    except Exception as e:
        logger.exception("Alembic migration failed: %s", e)
        raise


async def handle_cryptopay_error(request: Request, exc: CryptoPayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def handle_storage_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception(f"[API] Database error on {request.method} {request.url.path}: {exc}")
    error = StorageError(f"Database error: {exc.__class__.__name__}")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Crypto Payments API")
    app.state.price_cache = PriceCache()

    @app.on_event("startup")
    async def startup_event():
        if os.getenv("SKIP_STARTUP_MIGRATIONS") == "1":
            return
        if not run_migrations():
            logger.info("Creating database tables from models...")
            Base.metadata.create_all(bind=engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CryptoPayError, handle_cryptopay_error)
    app.add_exception_handler(SQLAlchemyError, handle_storage_error)

    app.include_router(invoices.router, tags=["Invoices"])
    app.include_router(payments.router, tags=["Payments"])
    app.include_router(confirmations.router, tags=["Confirmations"])
    app.include_router(billing.router, prefix="/billing", tags=["Billing"])
    app.include_router(merchants.router, prefix="/merchants", tags=["Merchants"])

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
