# api/oddsraiders/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db import Base, engine
from .errors import register_exception_handlers
from .log import setup_logging
from .settings import settings

# --- Routers ---
from .routers import billing as billing_router
from .routers import ingest as ingest_router
from .routers import subscriptions as subscriptions_router

setup_logging(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

# --- App init ---
app = FastAPI(title="OddsRaiders API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# --- Health Check ---
@app.get("/health")
def health():
    return {"ok": True}


# --- Startup ---
@app.on_event("startup")
def startup():
    # Only auto-create tables locally; use Alembic in production
    if settings.ENV != "production":
        Base.metadata.create_all(bind=engine)


# --- Include routers ---
# billing first: /subscriptions/payfast-notify must win over /subscriptions/{user_id}/...
app.include_router(billing_router.router)
app.include_router(subscriptions_router.router)
app.include_router(ingest_router.router)
