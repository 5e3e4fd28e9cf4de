"""Notification service — creates in-app notifications for alerts and deals."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spendwise.database import async_session_factory
from spendwise.exceptions import CollaboratorUnavailableError
from spendwise.models.notification import Notification
from spendwise.schemas.alerts import Severity

logger = logging.getLogger(__name__)


def reference_type_for(notification_type: str) -> str:
    """`alert_burn_rate` -> `alert`, `deal_price_drop` -> `deal`."""
    return notification_type.split("_", 1)[0]


class NotificationService:
    """Notifier backed by the in-app notifications table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory or async_session_factory

    async def send_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        severity: Severity | str,
        type: str = "general",
        reference_id: str | None = None,
    ) -> None:
        level = severity.value if isinstance(severity, Severity) else severity
        try:
            async with self.session_factory() as db:
                await self._create(
                    db, user_id=user_id, type=type, title=title, body=message, severity=level,
                    reference_type=reference_type_for(type) if reference_id else None,
                    reference_id=reference_id,
                )
                await db.commit()
        except Exception as e:
            raise CollaboratorUnavailableError("notifications", str(e)) from e
        logger.info(f"Notification '{title}' stored for user {user_id}")

    async def _create(
        self, db: AsyncSession, user_id: str, type: str,
        title: str, body: str, severity: str | None = None,
        reference_type: str | None = None, reference_id: str | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            body=body,
            severity=severity,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        db.add(notification)
        return notification
