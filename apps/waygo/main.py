from __future__ import annotations

# File: apps/waygo/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# --- Local Imports ---
from .settings import settings
from .errors import register_exception_handlers
from .loads import router as loads_router
from .users import router as users_router
from .fleet import router as fleet_router
from .finance import router as finance_router
from .billing import router as billing_router

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


# --- FastAPI App ---

app = FastAPI(title="WayGo Freight Functions")

_origins = [o.strip() for o in settings.CORS_ALLOW_ORIGINS.split(",") if o.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    # Credentials cannot be combined with a wildcard origin.
    allow_credentials="*" not in _origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# --- Core Endpoints ---

@app.get("/health")
def health():
    return {"status": "ok"}


# Register Routers at the end to keep clean separation
app.include_router(users_router)
app.include_router(loads_router)
app.include_router(fleet_router)
app.include_router(finance_router)
app.include_router(billing_router)
