"""
Superfun Draw Backend API
Token ledger, one-time code login and coloring page generation.
"""
from dotenv import load_dotenv
load_dotenv()

import logging
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True,
)

logger = logging.getLogger(__name__)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.routes import auth, tokens, stripe as stripe_router, webhooks, generate, pdf
from app.db.base import Base
from app.db.session import engine, normalize_database_url
from app.utils.disposable_email import ensure_blocklist_loaded
# Registers the ledger tables on Base.metadata
from app.models import Account, IssuedCode, PaymentEvent, BalanceUnitConversion  # noqa: F401

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"
FRONTEND_URL = os.getenv("FRONTEND_URL", "https://draw.superfun.games").rstrip("/")


def run_migrations() -> None:
    """Upgrade the ledger schema to head. Any failure aborts startup."""
    db_url = os.getenv("DATABASE_URL", "")
    if db_url.startswith("sqlite"):
        logger.info("[Startup] SQLite in use, schema comes from create_all")
        return
    if not ALEMBIC_INI.exists():
        logger.warning("[Startup] %s missing, Alembic skipped", ALEMBIC_INI.name)
        return
    if not db_url:
        logger.error("[Startup] DATABASE_URL is not set, Alembic skipped")
        return

    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("sqlalchemy.url", normalize_database_url(db_url))
    command.upgrade(alembic_cfg, "head")
    logger.info("[Startup] Alembic upgrade to head done")


app = FastAPI(title="Superfun Draw")


@app.on_event("startup")
async def startup_event():
    try:
        Base.metadata.create_all(bind=engine)
        run_migrations()
    except Exception as e:
        logger.exception("[Startup] Database setup failed, refusing to start: %s", e)
        raise

    blocked = ensure_blocklist_loaded()
    print(f"✅ Ledger schema ready, {blocked} disposable domains blocked", file=sys.stderr)


app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8888",  # netlify dev
        FRONTEND_URL,
    ],
    allow_origin_regex=r"https://.*\.(netlify\.app|superfun\.games)",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, tags=["Auth"])
app.include_router(tokens.router, tags=["Tokens"])
app.include_router(stripe_router.router, prefix="/api/stripe", tags=["Stripe"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(generate.router, prefix="/api/generate", tags=["Generate"])
app.include_router(pdf.router, prefix="/api", tags=["PDF"])


@app.get("/health")
def health():
    return {"status": "ok"}
