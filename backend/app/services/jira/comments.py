"""CommentWatcher — forwards new Jira comments on resolved support tasks.

Per task, comments are compared against a numeric watermark (highest
comment id already forwarded). Only ids strictly above it are sent, in
ascending order; the watermark then moves once to the highest id that was
actually delivered. Running again with nothing new is a no-op.
"""
import logging
from datetime import datetime, timedelta

import httpx
from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.base import utcnow
from models.comment_watermark import CommentWatermark
from models.tracker_task import TrackerTask
from services.jira.client import JiraError
from services.jira.config import BUTTON_OPEN, RESOLUTION_DONE
from services.jira.notifier import priority_emoji
from services.jira.policy import to_naive_utc
from services.jira.sources import SourceAdapter
from services.jira.transport import Button, ChatTransport

logger = logging.getLogger("relay.jira.comments")


def numeric_comments(comments: list[dict]) -> list[tuple[int, dict]]:
    """(id, comment) pairs sorted by integer id; non-numeric ids are dropped."""
    pairs: list[tuple[int, dict]] = []
    for comment in comments:
        try:
            pairs.append((int(comment.get("id")), comment))
        except (TypeError, ValueError):
            logger.debug("Skipping comment with non-numeric id: %r", comment.get("id"))
    pairs.sort(key=lambda pair: pair[0])
    return pairs


def render_comment(task: TrackerTask, comment: dict) -> str:
    author = (comment.get("author") or {}).get("displayName") or "unknown author"
    return (
        f"📝 New comment on resolved task\n"
        f"\n"
        f"Task: {task.id}\n"
        f"Source: {task.source}\n"
        f"Title: {task.title}\n"
        f"Priority: {priority_emoji(task.priority)}\n"
        f"Type: {task.issue_type}\n"
        f"\n"
        f"Author: {author}\n"
        f"Comment: {comment.get('body') or ''}"
    )


class CommentWatcher:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transport: ChatTransport,
        adapters: dict[str, SourceAdapter],
        *,
        chat_id: str,
        support_department: str,
        include_archived: bool = False,
        max_age_days: int = 30,
    ):
        self.session_factory = session_factory
        self.transport = transport
        self.adapters = adapters
        self.chat_id = chat_id
        self.support_department = support_department
        self.include_archived = include_archived
        self.max_age_days = max_age_days

    async def run(self, now: datetime | None = None) -> int:
        """One sweep over all watched tasks. Returns forwarded comment count."""
        tasks = await self._watched_tasks(to_naive_utc(now) if now else utcnow())
        forwarded = 0
        for task in tasks:
            adapter = self.adapters.get(task.source)
            if adapter is None:
                continue
            try:
                forwarded += await self.check_task(task, adapter)
            except (JiraError, httpx.HTTPError) as exc:
                logger.error("Comments for %s not fetched: %s", task.id, exc)
        if forwarded:
            logger.info("Forwarded %d new comments", forwarded)
        return forwarded

    async def check_task(self, task: TrackerTask, adapter: SourceAdapter) -> int:
        watermark = await self.get_watermark(task.id)
        comments = numeric_comments(await adapter.client.get_comments(task.id))
        fresh = [(cid, c) for cid, c in comments if watermark is None or cid > watermark]
        if not fresh:
            return 0

        buttons = [[Button(BUTTON_OPEN, url=adapter.issue_url(task.id))]]
        delivered: int | None = None
        for comment_id, comment in fresh:
            try:
                await self.transport.send_message(self.chat_id, render_comment(task, comment), buttons)
            except Exception as exc:
                # The rest of the tail is retried on the next sweep
                logger.error("Comment %d on %s not forwarded: %s", comment_id, task.id, exc)
                break
            delivered = comment_id

        if delivered is None:
            return 0
        await self.advance_watermark(task.id, delivered)
        return sum(1 for cid, _ in fresh if cid <= delivered)

    async def _watched_tasks(self, now: datetime) -> list[TrackerTask]:
        conditions = [
            TrackerTask.resolution == RESOLUTION_DONE,
            TrackerTask.department == self.support_department,
        ]
        if not self.include_archived:
            conditions.append(TrackerTask.archived == False)  # noqa: E712
        if self.max_age_days > 0:
            conditions.append(TrackerTask.date_added >= now - timedelta(days=self.max_age_days))
        async with self.session_factory() as session:
            result = await session.execute(
                select(TrackerTask).where(and_(*conditions)).order_by(TrackerTask.id)
            )
            return list(result.scalars().all())

    async def get_watermark(self, task_id: str) -> int | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CommentWatermark.last_comment_id).where(CommentWatermark.task_id == task_id)
            )
            return result.scalar_one_or_none()

    async def advance_watermark(self, task_id: str, comment_id: int) -> None:
        """Raise the watermark to comment_id; never lowers it."""
        if await self._raise_existing(task_id, comment_id):
            return
        try:
            async with self.session_factory() as session:
                await session.execute(insert(CommentWatermark).values(
                    task_id=task_id, last_comment_id=comment_id, updated_at=utcnow(),
                ))
                await session.commit()
        except IntegrityError:
            # Created concurrently (or already at/above comment_id)
            await self._raise_existing(task_id, comment_id)

    async def _raise_existing(self, task_id: str, comment_id: int) -> bool:
        async with self.session_factory() as session:
            res = await session.execute(
                update(CommentWatermark)
                .where(and_(
                    CommentWatermark.task_id == task_id,
                    CommentWatermark.last_comment_id < comment_id,
                ))
                .values(last_comment_id=comment_id, updated_at=utcnow())
            )
            await session.commit()
            return bool(res.rowcount)
