from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from spendwise.schemas.deals import ScoredDeal

NotificationType = Literal[
    "new_deal", "expiring_soon", "budget_match", "flash_deal", "personalized_recommendation"
]
Priority = Literal["low", "medium", "high", "urgent"]
Frequency = Literal["immediate", "daily", "weekly"]


class QuietHours(BaseModel):
    enabled: bool = False
    start: str = "22:00"  # HH:MM
    end: str = "08:00"


class NotificationPreferences(BaseModel):
    enabled: bool = True
    types: dict[str, bool] = {
        "new_deal": True,
        "expiring_soon": True,
        "budget_match": True,
        "flash_deal": True,
        "personalized_recommendation": True,
    }
    frequency: Frequency = "immediate"
    quiet_hours: QuietHours = QuietHours()
    max_daily_notifications: int = 10


class DealNotification(BaseModel):
    id: str
    user_id: str
    deal_id: str
    type: NotificationType
    title: str
    message: str
    priority: Priority
    relevance_score: int
    potential_savings: float
    category: str
    merchant_name: str
    expires_at: datetime
    created_at: datetime
    deal: ScoredDeal | None = None
