"""RetentionSweeper — deletes old resolved archived tasks and orphaned side rows.

A task goes once it is archived, resolved ("Done") and was archived more
than RETENTION_DAYS ago. Audit rows and comment watermarks whose task no
longer exists are deleted right after.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.action_audit import ActionAudit
from models.base import utcnow
from models.comment_watermark import CommentWatermark
from models.tracker_task import TrackerTask
from services.jira.config import RESOLUTION_DONE
from services.jira.policy import to_naive_utc

logger = logging.getLogger("relay.jira.retention")


@dataclass
class SweepResult:
    tasks: int = 0
    audits: int = 0
    watermarks: int = 0


class RetentionSweeper:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        retention_days: int = 35,
    ):
        self.session_factory = session_factory
        self.retention_days = retention_days

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        now = to_naive_utc(now) if now else utcnow()
        cutoff = now - timedelta(days=self.retention_days)
        result = SweepResult()

        async with self.session_factory() as session:
            r = await session.execute(
                delete(TrackerTask).where(and_(
                    TrackerTask.archived == True,  # noqa: E712
                    TrackerTask.resolution == RESOLUTION_DONE,
                    TrackerTask.archived_date.is_not(None),
                    TrackerTask.archived_date < cutoff,
                ))
                .execution_options(synchronize_session=False)
            )
            result.tasks = r.rowcount or 0

            live_ids = select(TrackerTask.id)
            r = await session.execute(
                delete(ActionAudit).where(ActionAudit.task_id.not_in(live_ids))
                .execution_options(synchronize_session=False)
            )
            result.audits = r.rowcount or 0

            r = await session.execute(
                delete(CommentWatermark).where(CommentWatermark.task_id.not_in(live_ids))
                .execution_options(synchronize_session=False)
            )
            result.watermarks = r.rowcount or 0

            await session.commit()

        logger.info(
            "Retention sweep: %d tasks, %d audit rows, %d watermarks deleted",
            result.tasks, result.audits, result.watermarks,
        )
        return result
