"""ActionCoordinator — take / comment / complete from inline buttons.

Per invocation:
1. load the task (missing -> notice, stop)
2. resolve the actor's Jira login for the task's source (missing -> notice,
   no remote call at all)
3. run the remote mutation
4. success: audit row + edit the originating notification in place
   (edit failure -> send the same content as a new message)
5. failure: original message untouched, separate notice naming the operation

"comment" is a two-step dialog: the button stores a pending record in Redis
(TTL = timeout), the actor's next text message in that chat resumes it.
No lock is held on the task between steps; two actors racing on one
notification both reach Jira and the last edit wins.
"""
from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.action_audit import ActionAudit
from models.base import utcnow
from models.tracker_task import TrackerTask
from services.jira.config import (
    BUTTON_OPEN, MSG_ACTIONS_UNAVAILABLE, MSG_COMMENT_CANCELLED,
    MSG_COMMENT_EMPTY, MSG_COMMENT_PROMPT, MSG_GENERIC_FAILURE, MSG_NO_LOGIN,
    MSG_OPERATION_FAILED, MSG_TASK_NOT_FOUND, OPERATION_NAMES,
    REDIS_PENDING_PREFIX, SUMMARY_LABELS,
)
from services.jira.identity import IdentityResolver
from services.jira.sources import SourceAdapter
from services.jira.transport import Button, ChatTransport, MessageRef

logger = logging.getLogger("relay.jira.actions")


class ActionKind(str, enum.Enum):
    take = "take"
    comment = "comment"
    complete = "complete"


class ActionRequest(BaseModel):
    """Inline button payload, carried as "kind:task_id" in callback data."""
    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    task_id: str = Field(min_length=1, max_length=54, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")

    def encode(self) -> str:
        return f"{self.kind.value}:{self.task_id}"

    @classmethod
    def decode(cls, data: str) -> "ActionRequest":
        """Parse callback data. Raises ValueError on anything malformed."""
        kind, sep, task_id = (data or "").partition(":")
        if not sep:
            raise ValueError(f"not an action payload: {data!r}")
        return cls(kind=kind, task_id=task_id)


@dataclass(frozen=True)
class Actor:
    user_id: int
    username: str | None


class ActionStatus(str, enum.Enum):
    done = "done"
    prompted = "prompted"
    not_found = "not_found"
    no_login = "no_login"
    unavailable = "unavailable"
    failed = "failed"
    error = "error"
    cancelled = "cancelled"


@dataclass
class ActionOutcome:
    status: ActionStatus
    message: str = ""


class PendingCommentStore:
    """Pending comment dialogs, one per (chat, user), expiring after ttl seconds."""

    def __init__(self, redis: Redis, ttl: int = 300):
        self.redis = redis
        self.ttl = ttl

    @staticmethod
    def _key(chat_id: str, user_id: int) -> str:
        return f"{REDIS_PENDING_PREFIX}{chat_id}:{user_id}"

    async def put(self, chat_id: str, user_id: int, record: dict) -> None:
        await self.redis.setex(
            self._key(chat_id, user_id), self.ttl, json.dumps(record),
        )

    async def pop(self, chat_id: str, user_id: int) -> dict | None:
        """Atomically take the pending record (GETDEL) so it resumes once."""
        raw = await self.redis.getdel(self._key(chat_id, user_id))
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Dropping corrupt pending comment for %s:%s", chat_id, user_id)
            return None


class ActionCoordinator:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        adapters: dict[str, SourceAdapter],
        identities: IdentityResolver,
        transport: ChatTransport,
        pending: PendingCommentStore,
        *,
        support_department: str,
    ):
        self.session_factory = session_factory
        self.adapters = adapters
        self.identities = identities
        self.transport = transport
        self.pending = pending
        self.support_department = support_department

    # ─── Button press ─────────────────────────────────────────────────

    async def handle(
        self, request: ActionRequest, actor: Actor, origin: MessageRef,
    ) -> ActionOutcome:
        task_id = request.task_id
        try:
            task = await self._load_task(task_id)
        except SQLAlchemyError as exc:
            logger.error("Action %s on %s: store error: %s", request.kind.value, task_id, exc)
            return await self._report(origin, ActionStatus.error, MSG_GENERIC_FAILURE.format(task_id=task_id))

        if task is None:
            return await self._report(origin, ActionStatus.not_found, MSG_TASK_NOT_FOUND.format(task_id=task_id))

        login = self.identities.login_for(actor.username, task.source)
        if not login:
            logger.warning(
                "Action %s on %s refused: no %s login for %s",
                request.kind.value, task_id, task.source, actor.username,
            )
            return await self._report(
                origin, ActionStatus.no_login,
                MSG_NO_LOGIN.format(username=actor.username or actor.user_id, source=task.source),
            )

        adapter = self.adapters.get(task.source)
        if adapter is None or task.department != self.support_department:
            return await self._report(
                origin, ActionStatus.unavailable, MSG_ACTIONS_UNAVAILABLE.format(task_id=task_id),
            )

        logger.info("Action %s on %s by %s (%s)", request.kind.value, task_id, actor.username, login)

        if request.kind is ActionKind.take:
            if not await adapter.client.assign(task.id, login):
                return await self._fail(origin, "take", task_id)
            if adapter.take_transition_id and not await adapter.client.transition(
                task.id, adapter.take_transition_id,
            ):
                return await self._fail(origin, "take_transition", task_id)

        elif request.kind is ActionKind.comment:
            try:
                await self.pending.put(origin.chat_id, actor.user_id, {
                    "task_id": task.id,
                    "source": task.source,
                    "username": actor.username,
                    "origin_chat_id": origin.chat_id,
                    "origin_message_id": origin.message_id,
                })
            except RedisError as exc:
                logger.error("Comment on %s: pending dialog not stored: %s", task_id, exc)
                return await self._report(
                    origin, ActionStatus.error, MSG_GENERIC_FAILURE.format(task_id=task_id),
                )
            return await self._report(
                origin, ActionStatus.prompted,
                MSG_COMMENT_PROMPT.format(
                    name=self.identities.display_name(actor.username), task_id=task.id,
                ),
            )

        elif request.kind is ActionKind.complete:
            if not await adapter.client.transition(
                task.id, adapter.complete_transition_id, adapter.complete_resolution,
            ):
                return await self._fail(origin, "complete", task_id)

        return await self._finish(task, request.kind, actor, origin)

    # ─── Comment dialog ───────────────────────────────────────────────

    async def submit_comment(self, chat_id: str, actor: Actor, text: str) -> ActionOutcome | None:
        """Resume a pending comment dialog. None when nothing was pending."""
        record = await self.pending.pop(chat_id, actor.user_id)
        if record is None:
            return None

        task_id = record["task_id"]
        origin = MessageRef(record["origin_chat_id"], int(record["origin_message_id"]))
        notice_to = MessageRef(chat_id, origin.message_id)

        body = (text or "").strip()
        if not body:
            return await self._report(notice_to, ActionStatus.cancelled, MSG_COMMENT_EMPTY.format(task_id=task_id))

        try:
            task = await self._load_task(task_id)
        except SQLAlchemyError as exc:
            logger.error("Comment on %s: store error: %s", task_id, exc)
            return await self._report(notice_to, ActionStatus.error, MSG_GENERIC_FAILURE.format(task_id=task_id))
        if task is None:
            return await self._report(notice_to, ActionStatus.not_found, MSG_TASK_NOT_FOUND.format(task_id=task_id))

        login = self.identities.login_for(actor.username, task.source)
        adapter = self.adapters.get(task.source)
        if not login or adapter is None:
            return await self._report(
                notice_to, ActionStatus.no_login,
                MSG_NO_LOGIN.format(username=actor.username or actor.user_id, source=task.source),
            )

        token = self.identities.token_for(actor.username, task.source)
        if not token:
            # Shared source token: keep the author visible in the body
            body = f"[{self.identities.display_name(actor.username)}] {body}"

        if not await adapter.client.add_comment(task.id, body, token=token):
            return await self._fail(notice_to, "comment", task_id)

        return await self._finish(task, ActionKind.comment, actor, origin)

    async def cancel_comment(self, chat_id: str, actor: Actor) -> ActionOutcome | None:
        record = await self.pending.pop(chat_id, actor.user_id)
        if record is None:
            return None
        return await self._report(
            MessageRef(chat_id, 0), ActionStatus.cancelled,
            MSG_COMMENT_CANCELLED.format(task_id=record.get("task_id", "?")),
        )

    # ─── Helpers ──────────────────────────────────────────────────────

    async def _load_task(self, task_id: str) -> TrackerTask | None:
        async with self.session_factory() as session:
            result = await session.execute(select(TrackerTask).where(TrackerTask.id == task_id))
            return result.scalar_one_or_none()

    async def _finish(
        self, task: TrackerTask, kind: ActionKind, actor: Actor, origin: MessageRef,
    ) -> ActionOutcome:
        await self._audit(task.id, actor, kind)

        name = self.identities.display_name(actor.username)
        text = f"{task.department}\n\n{SUMMARY_LABELS[kind.value]}: {name}"
        adapter = self.adapters.get(task.source)
        buttons = [[Button(BUTTON_OPEN, url=adapter.issue_url(task.id))]] if adapter else []

        try:
            await self.transport.edit_message(origin, text, buttons)
        except Exception as exc:
            logger.warning("Edit of message %s failed (%s), sending new one", origin.message_id, exc)
            try:
                await self.transport.send_message(origin.chat_id, text, buttons)
            except Exception as send_exc:
                logger.error("Summary for %s not delivered: %s", task.id, send_exc)

        return ActionOutcome(ActionStatus.done, text)

    async def _audit(self, task_id: str, actor: Actor, kind: ActionKind) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(insert(ActionAudit).values(
                    task_id=task_id,
                    username=actor.username or str(actor.user_id),
                    action=kind.value,
                    created_at=utcnow(),
                ))
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Audit for %s %s not stored: %s", kind.value, task_id, exc)

    async def _fail(self, origin: MessageRef, operation: str, task_id: str) -> ActionOutcome:
        return await self._report(
            origin, ActionStatus.failed,
            MSG_OPERATION_FAILED.format(operation=OPERATION_NAMES[operation], task_id=task_id),
        )

    async def _report(self, origin: MessageRef, status: ActionStatus, text: str) -> ActionOutcome:
        try:
            await self.transport.send_message(origin.chat_id, text)
        except Exception as exc:
            logger.error("Notice to chat %s not delivered: %s", origin.chat_id, exc)
        return ActionOutcome(status, text)
