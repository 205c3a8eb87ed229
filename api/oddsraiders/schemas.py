# api/oddsraiders/schemas.py
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


# ---- Subscriptions ----
class SubscriptionOut(BaseModel):
    id: int
    user_id: int
    state: str           # "pending" | "active" | "cancelled" | "expired"
    start_date: datetime | None = None
    end_date: datetime | None = None

    class Config:
        from_attributes = True  # pydantic v2


class SubscriptionStatusOut(BaseModel):
    user_id: int
    state: str           # subscription state, or "none" when the user never subscribed
    subscription: Optional[SubscriptionOut] = None


class OpenSubscriptionIn(BaseModel):
    user_id: int


class OpenSubscriptionOut(BaseModel):
    subscription_id: int
    internal_reference: str
    payment_redirect_url: str


# ---- Ingestion ----
class IngestRunOut(BaseModel):
    id: int
    status: str
    started_at: datetime
    finished_at: datetime | None = None
    summary: Dict[str, Any] | None = None

    class Config:
        from_attributes = True
