"""SQLAlchemy-backed alert recorder."""

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spendwise.database import async_session_factory
from spendwise.models.alert import AlertInstanceRecord
from spendwise.models.notification import Notification
from spendwise.schemas.alerts import AlertInstance

logger = logging.getLogger(__name__)


def _to_instance(row: AlertInstanceRecord) -> AlertInstance:
    return AlertInstance(
        id=row.id,
        rule_id=row.rule_id,
        user_id=row.user_id,
        budget_id=row.budget_id,
        scope_id=row.scope_id,
        type=row.type,
        severity=row.severity,
        title=row.title,
        message=row.message,
        data=row.data or {},
        resolved=row.resolved,
        resolved_at=row.resolved_at,
        created_at=row.created_at,
    )


class SqlAlchemyAlertRecorder:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory or async_session_factory

    async def persist_alert_instance(self, instance: AlertInstance) -> None:
        async with self.session_factory() as db:
            db.add(AlertInstanceRecord(
                id=instance.id,
                rule_id=instance.rule_id,
                user_id=instance.user_id,
                budget_id=instance.budget_id,
                scope_id=instance.scope_id,
                type=instance.type.value,
                severity=instance.severity.value,
                title=instance.title,
                message=instance.message,
                data=instance.data,
                resolved=instance.resolved,
                resolved_at=instance.resolved_at,
                created_at=instance.created_at,
            ))
            await db.commit()

    async def persist_notification_record(
        self, user_id: str, type: str, title: str, message: str, reference_id: str | None = None
    ) -> None:
        async with self.session_factory() as db:
            db.add(Notification(
                user_id=user_id,
                type=type,
                title=title,
                body=message,
                reference_type="alert" if reference_id else None,
                reference_id=reference_id,
            ))
            await db.commit()

    async def resolve_alert(self, user_id: str, alert_id: str, resolved_at: datetime) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                update(AlertInstanceRecord)
                .where(
                    AlertInstanceRecord.id == alert_id,
                    AlertInstanceRecord.user_id == user_id,
                    AlertInstanceRecord.resolved.is_(False),
                )
                .values(resolved=True, resolved_at=resolved_at)
            )
            await db.commit()
            resolved = result.rowcount > 0
        if resolved:
            logger.info(f"Resolved alert {alert_id} for user {user_id}")
        return resolved

    async def list_active_alerts(self, user_id: str, since: datetime) -> list[AlertInstance]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(AlertInstanceRecord)
                .where(
                    AlertInstanceRecord.user_id == user_id,
                    AlertInstanceRecord.resolved.is_(False),
                    AlertInstanceRecord.created_at >= since,
                )
                .order_by(AlertInstanceRecord.created_at.desc())
            )
            return [_to_instance(row) for row in result.scalars().all()]
