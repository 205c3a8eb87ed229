# api/oddsraiders/routers/subscriptions.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth_firebase import get_current_user
from ..db import get_db
from ..models import User
from ..schemas import (
    OpenSubscriptionIn, OpenSubscriptionOut, SubscriptionOut, SubscriptionStatusOut,
)
from ..services.access import authorize_self
from ..services.payfast import build_payment_url
from ..services.subscriptions import SubscriptionLedger

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("/{user_id}", response_model=SubscriptionStatusOut)
def get_subscription(
    user_id: int,
    fb_user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    authorize_self(fb_user, user_id)
    sub = SubscriptionLedger(db).get_current_subscription(user_id)
    if sub is None:
        return SubscriptionStatusOut(user_id=user_id, state="none")
    return SubscriptionStatusOut(
        user_id=user_id,
        state=sub.state,
        subscription=SubscriptionOut.model_validate(sub),
    )


@router.post("", response_model=OpenSubscriptionOut, status_code=201)
def open_subscription(
    body: OpenSubscriptionIn,
    fb_user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Start a subscription: creates it Pending and returns where to send the
    user to pay. It only turns Active once PayFast notifies us.
    """
    authorize_self(fb_user, body.user_id)
    opened = SubscriptionLedger(db).open_subscription(body.user_id)
    user = db.get(User, body.user_id)
    return OpenSubscriptionOut(
        subscription_id=opened.subscription_id,
        internal_reference=opened.internal_reference,
        payment_redirect_url=build_payment_url(opened, user),
    )


@router.post("/{user_id}/cancel", response_model=SubscriptionOut)
def cancel_subscription(
    user_id: int,
    fb_user=Depends(get_current_user),
    db: Session = Depends(get_db),
):
    authorize_self(fb_user, user_id)
    return SubscriptionLedger(db).cancel_subscription(user_id)
