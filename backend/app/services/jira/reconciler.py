"""Reconciler — merges a fetched issue set into tracker_tasks.

Upserts every fetched issue, then archives the source's tasks that were not
fetched. Every statement commits on its own: a crash mid-pass leaves rows
that are individually consistent.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.base import utcnow
from models.tracker_task import TrackerTask
from services.jira.policy import to_naive_utc
from services.jira.sources import TaskFields

logger = logging.getLogger("relay.jira.reconciler")


@dataclass
class ReconcileResult:
    source: str
    inserted: int = 0
    updated: int = 0
    archived: int = 0


class Reconciler:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def reconcile(
        self,
        source: str,
        fetched: list[TaskFields],
        now: datetime | None = None,
    ) -> ReconcileResult:
        now = to_naive_utc(now) if now else utcnow()
        result = ReconcileResult(source=source)

        for task in fetched:
            if await self._update_existing(task):
                result.updated += 1
            elif await self._insert_new(task, now):
                result.inserted += 1
            elif await self._update_existing(task):
                # Lost an insert race with a concurrent cycle
                result.updated += 1

        fetched_ids = [task.id for task in fetched]
        result.archived = await self._archive_missing(source, fetched_ids, now)

        logger.info(
            "Jira %s reconciled: %d new, %d updated, %d archived",
            source, result.inserted, result.updated, result.archived,
        )
        return result

    async def _update_existing(self, task: TaskFields) -> bool:
        async with self.session_factory() as session:
            stmt = (
                update(TrackerTask)
                .where(TrackerTask.id == task.id)
                .values(
                    title=task.title,
                    priority=task.priority,
                    issue_type=task.issue_type,
                    department=task.department,
                    resolution=task.resolution,
                    assignee=task.assignee,
                    source=task.source,
                    archived=False,
                    archived_date=None,
                )
            )
            res = await session.execute(stmt)
            await session.commit()
            return res.rowcount > 0

    async def _insert_new(self, task: TaskFields, now: datetime) -> bool:
        try:
            async with self.session_factory() as session:
                await session.execute(
                    insert(TrackerTask).values(
                        id=task.id,
                        title=task.title,
                        priority=task.priority,
                        issue_type=task.issue_type,
                        department=task.department,
                        resolution=task.resolution,
                        assignee=task.assignee,
                        source=task.source,
                        date_added=now,
                        last_sent=None,
                        archived=False,
                        archived_date=None,
                    )
                )
                await session.commit()
                return True
        except IntegrityError:
            logger.debug("Jira task %s inserted concurrently", task.id)
            return False

    async def _archive_missing(
        self, source: str, fetched_ids: list[str], now: datetime,
    ) -> int:
        conditions = [
            TrackerTask.source == source,
            TrackerTask.archived == False,  # noqa: E712
        ]
        # With nothing fetched, every live task of the source goes; an empty
        # NOT IN list is never built.
        if fetched_ids:
            conditions.append(TrackerTask.id.not_in(fetched_ids))

        async with self.session_factory() as session:
            stmt = (
                update(TrackerTask)
                .where(and_(*conditions))
                .values(archived=True, archived_date=now)
                .execution_options(synchronize_session=False)
            )
            res = await session.execute(stmt)
            await session.commit()
            return res.rowcount or 0
