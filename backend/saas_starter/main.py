# saas_starter/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from saas_starter.config import load_env
from saas_starter.logging_config import configure_logging

# -------------------------------------------------
# LOAD .env ONCE (before any getenv use)
# -------------------------------------------------
load_env()
configure_logging()

from saas_starter import errors  # noqa: E402
from saas_starter.database import SessionLocal, create_tables  # noqa: E402
from saas_starter.routers import (  # noqa: E402
    account,
    admin_referrals,
    admin_system,
    admin_users,
    analytics,
    auth,
    google_auth,
    plans,
    referral,
)
from saas_starter.seed import run_seed  # noqa: E402

logger = logging.getLogger(__name__)


# -------------------------------------------------
# APP SETUP
# -------------------------------------------------
app = FastAPI(title="SaaS Starter API", version="1.0.0")

app.add_exception_handler(errors.AppError, errors.app_error_handler)
app.add_exception_handler(RequestValidationError, errors.request_validation_handler)
app.add_exception_handler(StarletteHTTPException, errors.http_exception_handler)
app.add_exception_handler(Exception, errors.unhandled_exception_handler)


# -------------------------------------------------
# HEALTH
# -------------------------------------------------
@app.get("/health")
def health():
    return {"status": "ok"}


# Routers
app.include_router(auth.router)
app.include_router(account.router)
app.include_router(google_auth.router)
app.include_router(admin_users.router)
app.include_router(admin_system.router)
app.include_router(admin_referrals.router)
app.include_router(analytics.router)
app.include_router(plans.router)

# Catch-all /{slug}; must stay last
app.include_router(referral.router)


# -------------------------------------------------
# STARTUP: TABLES + SEED + HOUSEKEEPING
# -------------------------------------------------
@app.on_event("startup")
def bootstrap_startup():
    create_tables()
    db = SessionLocal()
    try:
        run_seed(db)
    finally:
        db.close()
    logger.info("Startup complete")
