from __future__ import annotations

import threading
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from oddsraiders.db import Base
from oddsraiders.errors import ConflictError, NotFoundError
from oddsraiders.models import Payment, PaymentStatus, Subscription, User
from oddsraiders.services.subscriptions import SubscriptionLedger

NOW = datetime(2026, 3, 1, 12, 0, 0)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def ledger(db, clock):
    return SubscriptionLedger(db, term_days=30, price="99.00", clock=clock)


def test_open_creates_pending_subscription_and_initiated_payment(db, ledger, make_user):
    user = make_user()

    opened = ledger.open_subscription(user.id)

    sub = db.get(Subscription, opened.subscription_id)
    payment = db.query(Payment).filter_by(internal_reference=opened.internal_reference).one()
    assert sub.state == "pending"
    assert sub.start_date is None and sub.end_date is None
    assert payment.status == "initiated"
    assert payment.subscription_id == sub.id
    assert payment.provider_reference is None
    assert payment.amount == Decimal("99.00")


def test_open_twice_is_a_conflict(db, ledger, make_user):
    user = make_user()
    ledger.open_subscription(user.id)

    with pytest.raises(ConflictError):
        ledger.open_subscription(user.id)

    assert db.query(Subscription).filter_by(user_id=user.id).count() == 1


def test_open_for_unknown_user_is_not_found(ledger):
    with pytest.raises(NotFoundError):
        ledger.open_subscription(424242)


def test_completed_payment_activates_for_configured_term(db, ledger, make_user):
    user = make_user()
    opened = ledger.open_subscription(user.id)

    result = ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.COMPLETED)

    assert result.applied is True
    sub = db.get(Subscription, opened.subscription_id)
    assert sub.state == "active"
    assert sub.start_date == NOW
    assert sub.end_date == NOW + timedelta(days=30)
    payment = db.query(Payment).filter_by(internal_reference=opened.internal_reference).one()
    assert payment.status == "completed"
    assert payment.provider_reference == "PF1"


def test_same_notification_twice_is_a_noop(db, ledger, make_user, clock):
    user = make_user()
    opened = ledger.open_subscription(user.id)
    ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.COMPLETED)

    clock.now = NOW + timedelta(hours=1)
    again = ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.COMPLETED)

    assert again.applied is False
    assert again.reason == "duplicate"
    sub = db.get(Subscription, opened.subscription_id)
    assert sub.start_date == NOW  # not re-stamped by the redelivery


def test_pending_after_completed_never_regresses(db, ledger, make_user):
    user = make_user()
    opened = ledger.open_subscription(user.id)
    ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.COMPLETED)

    late = ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.PENDING)

    assert late.applied is False
    assert late.reason == "stale"
    assert db.get(Subscription, opened.subscription_id).state == "active"
    assert db.query(Payment).one().status == "completed"


def test_pending_then_completed_activates(db, ledger, make_user):
    user = make_user()
    opened = ledger.open_subscription(user.id)

    first = ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.PENDING)
    second = ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.COMPLETED)

    assert first.applied and first.subscription_state == "pending"
    assert second.applied and second.subscription_state == "active"


@pytest.mark.parametrize("status", [PaymentStatus.FAILED, PaymentStatus.CANCELLED])
def test_failed_or_cancelled_payment_cancels_and_frees_the_slot(db, ledger, make_user, status):
    user = make_user()
    opened = ledger.open_subscription(user.id)

    result = ledger.apply_payment_status(opened.internal_reference, "PF1", status)

    assert result.applied
    assert db.get(Subscription, opened.subscription_id).state == "cancelled"
    # a new attempt is allowed once the old one is closed
    reopened = ledger.open_subscription(user.id)
    assert reopened.subscription_id != opened.subscription_id


def test_failed_after_completed_is_stale(db, ledger, make_user):
    user = make_user()
    opened = ledger.open_subscription(user.id)
    ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.COMPLETED)

    result = ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.FAILED)

    assert result.applied is False
    assert db.get(Subscription, opened.subscription_id).state == "active"


def test_unknown_reference_is_not_found(ledger):
    with pytest.raises(NotFoundError):
        ledger.apply_payment_status("nope", "PF1", PaymentStatus.COMPLETED)


def test_current_subscription_is_none_for_new_user(ledger, make_user):
    user = make_user()
    assert ledger.get_current_subscription(user.id) is None


def test_current_subscription_returns_latest(ledger, make_user, clock):
    user = make_user()
    first = ledger.open_subscription(user.id)
    ledger.apply_payment_status(first.internal_reference, "PF1", PaymentStatus.FAILED)
    clock.now = NOW + timedelta(minutes=5)
    second = ledger.open_subscription(user.id)

    current = ledger.get_current_subscription(user.id)

    assert current.id == second.subscription_id
    assert current.state == "pending"


def test_expire_due_moves_lapsed_active_to_expired(db, ledger, make_user, clock):
    user = make_user()
    opened = ledger.open_subscription(user.id)
    ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.COMPLETED)

    assert ledger.expire_due(NOW + timedelta(days=29)) == 0
    assert ledger.expire_due(NOW + timedelta(days=31)) == 1
    assert db.get(Subscription, opened.subscription_id).state == "expired"


def test_reading_after_end_date_expires_lazily(ledger, make_user, clock):
    user = make_user()
    opened = ledger.open_subscription(user.id)
    ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.COMPLETED)

    clock.now = NOW + timedelta(days=45)

    assert ledger.get_current_subscription(user.id).state == "expired"
    # and the user can subscribe again
    assert ledger.open_subscription(user.id).subscription_id != opened.subscription_id


def test_cancel_open_subscription(db, ledger, make_user):
    user = make_user()
    opened = ledger.open_subscription(user.id)

    sub = ledger.cancel_subscription(user.id)

    assert sub.id == opened.subscription_id
    assert sub.state == "cancelled"
    assert sub.cancelled_at == NOW


def test_cancel_without_open_subscription_is_not_found(ledger, make_user):
    user = make_user()
    with pytest.raises(NotFoundError):
        ledger.cancel_subscription(user.id)


def test_completion_after_user_cancelled_leaves_subscription_cancelled(db, ledger, make_user):
    user = make_user()
    opened = ledger.open_subscription(user.id)
    ledger.cancel_subscription(user.id)

    result = ledger.apply_payment_status(opened.internal_reference, "PF1", PaymentStatus.COMPLETED)

    assert result.applied is True
    assert result.subscription_state == "cancelled"
    assert result.reason == "needs_refund"
    assert db.query(Payment).filter_by(internal_reference=opened.internal_reference).one().status == "completed"


def test_store_rejects_second_open_subscription(db, make_user):
    user = make_user()
    db.add(Subscription(user_id=user.id, state="active"))
    db.commit()

    db.add(Subscription(user_id=user.id, state="pending"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()

    # closed ones do not count
    db.add(Subscription(user_id=user.id, state="expired"))
    db.add(Subscription(user_id=user.id, state="cancelled"))
    db.commit()


@pytest.fixture
def file_sessions(tmp_path):
    """Independent sessions on a file-backed database, one connection each.

    BEGIN IMMEDIATE takes the write lock up front, so a second transaction
    waits for the first to commit the way a row lock would make it wait.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}", connect_args={"timeout": 30})

    @event.listens_for(engine, "connect")
    def _connect(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    finally:
        engine.dispose()


def test_concurrent_conflicting_notifications_have_one_winner(file_sessions, clock):
    seed = file_sessions()
    user = User(firebase_uid="fb-race", email="race@example.com")
    seed.add(user)
    seed.commit()
    opened = SubscriptionLedger(seed, term_days=30, price="99.00", clock=clock).open_subscription(user.id)
    seed.close()

    start = threading.Barrier(2)
    results = {}

    def deliver(status):
        session = file_sessions()
        try:
            start.wait()
            ledger = SubscriptionLedger(session, term_days=30, price="99.00", clock=clock)
            results[status] = ledger.apply_payment_status(opened.internal_reference, f"PF-{status.value}", status)
        except Exception as e:
            results[status] = e
        finally:
            session.close()

    threads = [threading.Thread(target=deliver, args=(s,)) for s in (PaymentStatus.COMPLETED, PaymentStatus.FAILED)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert all(not isinstance(r, Exception) for r in results.values()), results
    winners = [status for status, r in results.items() if r.applied]
    losers = [r for r in results.values() if not r.applied]
    assert len(winners) == 1
    assert losers[0].reason == "stale"

    check = file_sessions()
    try:
        sub = check.get(Subscription, opened.subscription_id)
        payment = check.query(Payment).filter_by(internal_reference=opened.internal_reference).one()
        expected = "active" if winners[0] == PaymentStatus.COMPLETED else "cancelled"
        assert sub.state == expected
        assert payment.status == winners[0].value
        assert payment.provider_reference == f"PF-{winners[0].value}"
    finally:
        check.close()
