from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from src.models import Subscription, SubscriptionStatus
from src.timeutils import to_storage, utcnow


class SubscriptionService:
    """Read-only view of the membership subscriptions that gate festival pre-booking."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session

    def has_active_subscription(self, user_id: int, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return (
            self.db.query(Subscription.subscriptionID)
            .filter(
                Subscription.userID == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.end_date > to_storage(now),
            )
            .first()
            is not None
        )
