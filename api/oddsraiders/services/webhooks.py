# api/oddsraiders/services/webhooks.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from ..errors import MalformedPayloadError, NotFoundError, VerificationError
from ..models import PaymentStatus, ProviderWebhookEvent
from .payfast import NotificationVerifier, map_payment_status
from .subscriptions import SubscriptionLedger

logger = logging.getLogger("oddsraiders.webhook")


@dataclass
class NotificationResult:
    outcome: str                      # applied|needs_refund|duplicate|stale|rejected|malformed|unknown
    internal_reference: Optional[str] = None
    reason: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.outcome in ("applied", "needs_refund")


def extract_notification(form: Mapping[str, str]) -> Tuple[str, str, PaymentStatus]:
    """(internal_reference, provider_reference, status) out of an ITN form."""
    internal_ref = (form.get("m_payment_id") or "").strip()
    # live ITNs call it pf_payment_id
    provider_ref = (form.get("payfast_reference") or form.get("pf_payment_id") or "").strip()
    raw_status = (form.get("payment_status") or "").strip()

    missing = [
        name for name, value in (
            ("m_payment_id", internal_ref),
            ("payfast_reference", provider_ref),
            ("payment_status", raw_status),
        ) if not value
    ]
    if missing:
        raise MalformedPayloadError(f"missing field(s): {', '.join(missing)}")
    return internal_ref, provider_ref, map_payment_status(raw_status)


class PaymentWebhookProcessor:
    """
    Received -> Verified -> Applied, or Received -> Rejected.

    Holds no state of its own: idempotency lives in the ledger. Every
    notification leaves one ProviderWebhookEvent row behind, whatever happened.
    """

    def __init__(self, db: Session, verifier: NotificationVerifier, ledger: Optional[SubscriptionLedger] = None):
        self.db = db
        self.verifier = verifier
        self.ledger = ledger or SubscriptionLedger(db)

    def process(self, form: Mapping[str, str], remote_addr: Optional[str] = None) -> NotificationResult:
        payload = {str(k): str(v) for k, v in dict(form).items()}
        internal_ref = payload.get("m_payment_id") or None

        try:
            self.verifier.verify(payload, remote_addr)
        except VerificationError as e:
            logger.warning("rejected notification ref=%s from %s: %s", internal_ref, remote_addr, e.message)
            return self._record(payload, NotificationResult("rejected", internal_ref, e.message))

        try:
            internal_ref, provider_ref, status = extract_notification(payload)
        except MalformedPayloadError as e:
            logger.warning("malformed notification ref=%s: %s", internal_ref, e.message)
            return self._record(payload, NotificationResult("malformed", internal_ref, e.message))

        try:
            applied = self.ledger.apply_payment_status(internal_ref, provider_ref, status)
        except NotFoundError as e:
            logger.warning("notification for unknown ref=%s", internal_ref)
            return self._record(payload, NotificationResult("unknown", internal_ref, e.message))

        if applied.applied and applied.reason == "needs_refund":
            result = NotificationResult(
                "needs_refund", internal_ref, f"payment completed but subscription is {applied.subscription_state}",
            )
        elif applied.applied:
            result = NotificationResult("applied", internal_ref)
        else:
            result = NotificationResult(applied.reason or "duplicate", internal_ref, f"payment already {applied.payment_status}")
            logger.info("notification ref=%s status=%s was a no-op (%s)", internal_ref, status.value, result.outcome)
        return self._record(payload, result)

    def _record(self, payload: dict, result: NotificationResult) -> NotificationResult:
        event = ProviderWebhookEvent(
            provider="payfast",
            internal_reference=result.internal_reference,
            provider_reference=payload.get("payfast_reference") or payload.get("pf_payment_id"),
            payment_status=payload.get("payment_status"),
            outcome=result.outcome,
            reason=result.reason,
            payload=payload,
        )
        self.db.add(event)
        self.db.commit()
        return result
