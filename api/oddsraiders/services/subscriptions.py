# api/oddsraiders/services/subscriptions.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError
from ..models import (
    OPEN_SUBSCRIPTION_STATES, TERMINAL_PAYMENT_STATUSES, Payment, PaymentStatus,
    Subscription, SubscriptionState, User,
)
from ..settings import settings
from ..util import utcnow

logger = logging.getLogger("oddsraiders.billing")


@dataclass
class OpenedSubscription:
    subscription_id: int
    internal_reference: str
    amount: Decimal


@dataclass
class AppliedResult:
    applied: bool
    payment_status: str
    subscription_state: str
    reason: Optional[str] = None     # duplicate|stale when not applied; needs_refund when applied


def new_internal_reference() -> str:
    return uuid.uuid4().hex


class SubscriptionLedger:
    """
    The only code allowed to move Subscription/Payment state.

    Every mutating call is one unit of work: it commits on success and
    rolls back on failure, so callers never see half-applied state.
    """

    def __init__(
        self,
        db: Session,
        term_days: Optional[int] = None,
        price: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.term = timedelta(days=term_days if term_days is not None else settings.SUBSCRIPTION_TERM_DAYS)
        self.price = Decimal(price if price is not None else settings.SUBSCRIPTION_PRICE)
        self.clock = clock

    # ---------- open ----------

    def open_subscription(self, user_id: int) -> OpenedSubscription:
        if self.db.get(User, user_id) is None:
            raise NotFoundError(f"user {user_id} not found")

        self.expire_due(user_id=user_id)

        existing = self._open_for(user_id)
        if existing is not None:
            raise ConflictError(f"user {user_id} already has a {existing.state} subscription")

        sub = Subscription(user_id=user_id, state=SubscriptionState.PENDING.value)
        payment = Payment(
            subscription=sub,
            internal_reference=new_internal_reference(),
            status=PaymentStatus.INITIATED.value,
            amount=self.price,
        )
        self.db.add_all([sub, payment])
        try:
            self.db.commit()
        except IntegrityError:
            # lost the race against a concurrent open; the partial unique index said no
            self.db.rollback()
            raise ConflictError(f"user {user_id} already has an open subscription")

        logger.info("opened subscription %s for user %s (ref=%s)", sub.id, user_id, payment.internal_reference)
        return OpenedSubscription(sub.id, payment.internal_reference, payment.amount)

    # ---------- apply webhook status ----------

    def apply_payment_status(
        self,
        internal_reference: str,
        provider_reference: str,
        status: PaymentStatus,
    ) -> AppliedResult:
        """
        Idempotent, keyed by internal_reference. The payment row is locked
        (SELECT ... FOR UPDATE) for the whole decision so two deliveries for
        the same reference serialize instead of both winning.
        """
        status = PaymentStatus(status)
        try:
            result = self._apply_locked(internal_reference, provider_reference, status)
            self.db.commit()
            return result
        except Exception:
            self.db.rollback()
            raise

    def _apply_locked(self, internal_reference, provider_reference, status: PaymentStatus) -> AppliedResult:
        payment = (
            self.db.query(Payment)
            .filter(Payment.internal_reference == internal_reference)
            .with_for_update()
            .one_or_none()
        )
        if payment is None:
            raise NotFoundError(f"unknown payment reference {internal_reference}")

        sub = (
            self.db.query(Subscription)
            .filter(Subscription.id == payment.subscription_id)
            .with_for_update()
            .one()
        )

        if payment.status == status.value and payment.provider_reference:
            return AppliedResult(False, payment.status, sub.state, reason="duplicate")

        if payment.status in TERMINAL_PAYMENT_STATUSES and payment.status != status.value:
            # e.g. PENDING arriving after COMPLETE; never regress
            logger.info(
                "stale %s for %s ignored (payment already %s)",
                status.value, internal_reference, payment.status,
            )
            return AppliedResult(False, payment.status, sub.state, reason="stale")

        now = self.clock()
        payment.status = status.value
        payment.provider_reference = provider_reference or payment.provider_reference
        payment.updated_at = now

        reason = self._transition(sub, status, now)
        self.db.flush()

        logger.info(
            "payment %s -> %s (provider_ref=%s); subscription %s is %s",
            internal_reference, status.value, provider_reference, sub.id, sub.state,
        )
        return AppliedResult(True, payment.status, sub.state, reason=reason)

    def _transition(self, sub: Subscription, status: PaymentStatus, now: datetime) -> Optional[str]:
        """Move a pending subscription along. Returns "needs_refund" when money
        arrived for a subscription that can no longer be activated."""
        if sub.state != SubscriptionState.PENDING.value:
            if status == PaymentStatus.COMPLETED and sub.state != SubscriptionState.ACTIVE.value:
                logger.error(
                    "payment completed for subscription %s which is already %s; needs refund",
                    sub.id, sub.state,
                )
                return "needs_refund"
            if status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
                logger.warning(
                    "payment %s for subscription %s which is already %s; subscription left as is",
                    status.value, sub.id, sub.state,
                )
            return None

        if status == PaymentStatus.COMPLETED:
            sub.state = SubscriptionState.ACTIVE.value
            sub.start_date = now
            sub.end_date = now + self.term
        elif status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            sub.state = SubscriptionState.CANCELLED.value
            sub.cancelled_at = now
        else:
            return None
        sub.updated_at = now
        return None

    # ---------- reads ----------

    def get_current_subscription(self, user_id: int) -> Optional[Subscription]:
        """Latest subscription for the user, or None when there has never been one."""
        self.expire_due(user_id=user_id)
        return (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )

    # ---------- cancel / expire ----------

    def cancel_subscription(self, user_id: int) -> Subscription:
        sub = (
            self.db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.state.in_(OPEN_SUBSCRIPTION_STATES),
            )
            .with_for_update()
            .one_or_none()
        )
        if sub is None:
            self.db.rollback()
            raise NotFoundError(f"user {user_id} has no open subscription")

        now = self.clock()
        sub.state = SubscriptionState.CANCELLED.value
        sub.cancelled_at = now
        sub.updated_at = now
        self.db.commit()
        logger.info("subscription %s cancelled by user %s", sub.id, user_id)
        return sub

    def expire_due(self, now: Optional[datetime] = None, user_id: Optional[int] = None) -> int:
        """Active subscriptions whose end_date has passed become Expired. Returns how many."""
        now = now or self.clock()
        q = self.db.query(Subscription).filter(
            Subscription.state == SubscriptionState.ACTIVE.value,
            Subscription.end_date.isnot(None),
            Subscription.end_date <= now,
        )
        if user_id is not None:
            q = q.filter(Subscription.user_id == user_id)

        expired = q.with_for_update().all()
        for sub in expired:
            sub.state = SubscriptionState.EXPIRED.value
            sub.updated_at = now
        if expired:
            self.db.commit()
            logger.info("expired %d subscription(s)", len(expired))
        return len(expired)

    # ---------- helpers ----------

    def _open_for(self, user_id: int) -> Optional[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.state.in_(OPEN_SUBSCRIPTION_STATES),
            )
            .first()
        )
