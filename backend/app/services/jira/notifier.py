"""NotificationScheduler — sends due tasks to the chat and records last_sent.

Selection: unarchived tasks under one of the two throttle policies
(services/jira/policy.py). All calendar-day tasks go out before all
rolling-window tasks. Every task is sent independently; last_sent is only
written once the transport confirmed the send.
"""
import logging
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.base import utcnow
from models.tracker_task import TrackerTask
from services.jira.actions import ActionKind, ActionRequest
from services.jira.config import (
    ASSIGNEE_NONE, BUTTON_COMMENT, BUTTON_COMPLETE, BUTTON_OPEN, BUTTON_TAKE,
    PRIORITY_EMOJI,
)
from services.jira.policy import NotifyPolicy, is_due, policy_for, to_naive_utc
from services.jira.sources import SourceAdapter
from services.jira.transport import Button, ChatTransport

logger = logging.getLogger("relay.jira.notifier")


def priority_emoji(priority: str | None) -> str:
    return PRIORITY_EMOJI.get(priority or "", "")


def link_row(task: TrackerTask, adapters: dict[str, SourceAdapter]) -> list[Button]:
    adapter = adapters.get(task.source)
    if not adapter:
        return []
    return [Button(BUTTON_OPEN, url=adapter.issue_url(task.id))]


def render_task_message(
    task: TrackerTask,
    policy: NotifyPolicy,
    adapters: dict[str, SourceAdapter],
) -> tuple[str, list[list[Button]]]:
    text = (
        f"{task.department} - {task.id}\n"
        f"\n"
        f"Source: {task.source}\n"
        f"Title: {task.title}\n"
        f"Priority: {priority_emoji(task.priority)}\n"
        f"Type: {task.issue_type}\n"
        f"Assignee: {task.assignee or ASSIGNEE_NONE}"
    )

    buttons: list[list[Button]] = []
    if policy is NotifyPolicy.calendar_day:
        buttons.append([
            Button(BUTTON_TAKE, callback_data=ActionRequest(kind=ActionKind.take, task_id=task.id).encode()),
            Button(BUTTON_COMMENT, callback_data=ActionRequest(kind=ActionKind.comment, task_id=task.id).encode()),
            Button(BUTTON_COMPLETE, callback_data=ActionRequest(kind=ActionKind.complete, task_id=task.id).encode()),
        ])
    link = link_row(task, adapters)
    if link:
        buttons.append(link)
    return text, buttons


class NotificationScheduler:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        transport: ChatTransport,
        adapters: dict[str, SourceAdapter],
        *,
        chat_id: str,
        tz: ZoneInfo,
        support_department: str,
        infra_issue_types: list[str],
        max_age_days: int = 30,
    ):
        self.session_factory = session_factory
        self.transport = transport
        self.adapters = adapters
        self.chat_id = chat_id
        self.tz = tz
        self.support_department = support_department
        self.infra_issue_types = list(infra_issue_types)
        self.max_age_days = max_age_days

    def policy_of(self, task: TrackerTask) -> NotifyPolicy | None:
        return policy_for(
            task.department, task.issue_type,
            self.support_department, self.infra_issue_types,
        )

    async def select_due(
        self, now: datetime | None = None,
    ) -> list[tuple[TrackerTask, NotifyPolicy]]:
        now = to_naive_utc(now) if now else utcnow()
        conditions = [
            TrackerTask.archived == False,  # noqa: E712
            or_(
                TrackerTask.department == self.support_department,
                TrackerTask.issue_type.in_(self.infra_issue_types),
            ),
        ]
        if self.max_age_days > 0:
            conditions.append(TrackerTask.date_added >= now - timedelta(days=self.max_age_days))

        async with self.session_factory() as session:
            stmt = (
                select(TrackerTask)
                .where(and_(*conditions))
                .order_by(TrackerTask.date_added, TrackerTask.id)
            )
            result = await session.execute(stmt)
            candidates = result.scalars().all()

        calendar: list[tuple[TrackerTask, NotifyPolicy]] = []
        rolling: list[tuple[TrackerTask, NotifyPolicy]] = []
        for task in candidates:
            policy = self.policy_of(task)
            if policy is None or not is_due(policy, task.last_sent, now, self.tz):
                continue
            if policy is NotifyPolicy.calendar_day:
                calendar.append((task, policy))
            else:
                rolling.append((task, policy))
        return calendar + rolling

    async def run(self, now: datetime | None = None) -> int:
        """Send every due task. Returns the number of confirmed sends."""
        now = to_naive_utc(now) if now else utcnow()
        due = await self.select_due(now)
        if not due:
            return 0

        sent = 0
        for task, policy in due:
            text, buttons = render_task_message(task, policy, self.adapters)
            try:
                await self.transport.send_message(self.chat_id, text, buttons)
            except Exception as exc:
                logger.error("Notify %s failed: %s", task.id, exc)
                continue

            try:
                await self._mark_sent(task.id, now)
                sent += 1
            except Exception as exc:
                logger.error("Notify %s sent but last_sent not stored: %s", task.id, exc)

        logger.info("Notified %d/%d due tasks", sent, len(due))
        return sent

    async def _mark_sent(self, task_id: str, sent_at: datetime) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(TrackerTask)
                .where(TrackerTask.id == task_id)
                .values(last_sent=sent_at)
            )
            await session.commit()
