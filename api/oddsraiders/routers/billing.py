# api/oddsraiders/routers/billing.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..db import get_db
from ..services.payfast import NotificationVerifier, default_verifier, resolve_source_address
from ..services.webhooks import PaymentWebhookProcessor
from ..settings import settings

logger = logging.getLogger("oddsraiders.webhook")

router = APIRouter(tags=["billing"])


def get_verifier() -> NotificationVerifier:
    return default_verifier()


# ============================================================
# PayFast ITN (instant transaction notification)
# ============================================================

@router.post("/subscriptions/payfast-notify")
async def payfast_notify(
    request: Request,
    db: Session = Depends(get_db),
    verifier: NotificationVerifier = Depends(get_verifier),
):
    """
    Always answers 200. PayFast retries anything else, and a bad or
    duplicate notification will not get better by being resent; the
    outcome is in the logs and in provider_webhook_events.
    """
    form = await request.form()
    remote_addr = resolve_source_address(
        request.client.host if request.client else None,
        request.headers.get("x-forwarded-for"),
        settings.TRUSTED_PROXIES,
    )

    try:
        result = PaymentWebhookProcessor(db, verifier).process(dict(form), remote_addr)
    except Exception:
        logger.exception("payfast notification could not be processed")
        db.rollback()
        return {"received": True}

    return {"received": True, "outcome": result.outcome}
