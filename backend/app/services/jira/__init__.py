"""Jira relay module.

Entry point: JiraRelayModule. Creates the per-source adapters and every
sub-service, and runs the periodic loops:
- sync: fetch + reconcile each source, then notify due tasks
- comment watch: forward new comments on resolved support tasks
- retention: delete old archived tasks and orphaned side rows
- shift notices: fixed texts at fixed local times

Loops share one store and never hold locks across each other. Each cycle
is guarded by its own asyncio.Lock; a cycle that finds its lock taken is
skipped instead of running concurrently.
"""
import asyncio
import logging
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from services.jira.actions import ActionCoordinator, PendingCommentStore
from services.jira.client import JiraError
from services.jira.comments import CommentWatcher
from services.jira.fetcher import IssueFetcher
from services.jira.identity import IdentityResolver
from services.jira.notices import ShiftNotices, parse_notice
from services.jira.notifier import NotificationScheduler
from services.jira.reconciler import ReconcileResult, Reconciler
from services.jira.retention import RetentionSweeper
from services.jira.sources import SourceAdapter, build_adapters
from services.jira.transport import ChatTransport

logger = logging.getLogger("relay.jira")


class JiraRelayModule:
    """Main orchestrator."""

    def __init__(
        self,
        redis: Redis,
        session_factory: async_sessionmaker[AsyncSession],
        transport: ChatTransport,
        *,
        adapters: dict[str, SourceAdapter] | None = None,
        identities: IdentityResolver | None = None,
    ):
        self.redis = redis
        self.session_factory = session_factory
        self.transport = transport
        self.tz = ZoneInfo(settings.TIMEZONE)
        chat_id = settings.TELEGRAM_CHAT_ID

        self.identities = identities or IdentityResolver.from_settings(settings)
        self.adapters = adapters if adapters is not None else build_adapters(settings)
        self.fetchers = {
            name: IssueFetcher(adapter, self.identities)
            for name, adapter in self.adapters.items()
        }
        self.reconciler = Reconciler(session_factory)
        self.notifier = NotificationScheduler(
            session_factory, transport, self.adapters,
            chat_id=chat_id,
            tz=self.tz,
            support_department=settings.SUPPORT_DEPARTMENT,
            infra_issue_types=settings.INFRA_ISSUE_TYPES,
            max_age_days=settings.NOTIFY_MAX_AGE_DAYS,
        )
        self.coordinator = ActionCoordinator(
            session_factory, self.adapters, self.identities, transport,
            PendingCommentStore(redis, settings.PENDING_COMMENT_TTL),
            support_department=settings.SUPPORT_DEPARTMENT,
        )
        self.comment_watcher = CommentWatcher(
            session_factory, transport, self.adapters,
            chat_id=chat_id,
            support_department=settings.SUPPORT_DEPARTMENT,
            include_archived=settings.COMMENT_WATCH_ARCHIVED,
            max_age_days=settings.NOTIFY_MAX_AGE_DAYS,
        )
        self.sweeper = RetentionSweeper(
            session_factory, retention_days=settings.RETENTION_DAYS,
        )
        self.notices = ShiftNotices(
            transport,
            chat_id=chat_id,
            tz=self.tz,
            notices=[
                n for n in (
                    parse_notice(settings.SHIFT_START_TIME, settings.SHIFT_START_TEXT),
                    parse_notice(settings.SHIFT_END_TIME, settings.SHIFT_END_TEXT),
                ) if n
            ],
        )

        self._source_locks = {name: asyncio.Lock() for name in self.adapters}
        self._notify_lock = asyncio.Lock()
        self._watch_lock = asyncio.Lock()
        self.last_sync: dict[str, str] = {}
        self.last_error: dict[str, str] = {}
        self._running = False
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start all loops."""
        logger.info("Jira relay starting: sources=%s", ", ".join(self.adapters) or "none")
        self._running = True

        for name, adapter in self.adapters.items():
            conn = await adapter.client.test_connection()
            if conn.get("success"):
                logger.info("Jira %s connection OK", name)
            else:
                logger.warning("Jira %s connection failed: %s", name, conn.get("error"))

        self._tasks = [
            asyncio.create_task(
                self._loop("sync", settings.SYNC_INTERVAL, self.run_cycle),
                name="jira_sync",
            ),
            asyncio.create_task(
                self._loop("comment watch", settings.COMMENT_WATCH_INTERVAL, self.watch_comments),
                name="jira_comment_watch",
            ),
            asyncio.create_task(
                self._loop("retention", settings.RETENTION_INTERVAL, self.sweeper.sweep),
                name="jira_retention",
            ),
            asyncio.create_task(self.notices.start(), name="shift_notices"),
        ]
        logger.info("Jira relay started")

    async def stop(self) -> None:
        """Stop all loops gracefully."""
        logger.info("Jira relay stopping...")
        self._running = False
        self.notices.stop()

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        for adapter in self.adapters.values():
            await adapter.close()
        logger.info("Jira relay stopped")

    async def _loop(self, name: str, interval: int, cycle) -> None:
        while self._running:
            try:
                await cycle()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Jira %s cycle error: %s", name, exc, exc_info=True)
            await asyncio.sleep(interval)

    # ─── Cycles ───────────────────────────────────────────────────────

    async def sync_source(self, name: str) -> ReconcileResult | None:
        """Fetch + reconcile one source. None when skipped or failed."""
        lock = self._source_locks[name]
        if lock.locked():
            logger.warning("Jira %s sync still running, cycle skipped", name)
            return None

        async with lock:
            try:
                fetched = await self.fetchers[name].fetch()
            except (JiraError, httpx.HTTPError) as exc:
                # A failed fetch is not an empty fetch: nothing gets archived
                logger.error("Jira %s fetch failed: %s", name, exc)
                self.last_error[name] = str(exc)
                return None

            try:
                result = await self.reconciler.reconcile(name, fetched)
            except SQLAlchemyError as exc:
                logger.error("Jira %s reconcile failed: %s", name, exc)
                self.last_error[name] = str(exc)
                return None

            self.last_sync[name] = datetime.now(self.tz).isoformat()
            self.last_error.pop(name, None)
            return result

    async def notify(self) -> int:
        if self._notify_lock.locked():
            logger.warning("Notification pass still running, skipped")
            return 0
        async with self._notify_lock:
            return await self.notifier.run()

    async def run_cycle(self) -> dict[str, ReconcileResult | None]:
        results = {name: await self.sync_source(name) for name in self.adapters}
        await self.notify()
        return results

    async def watch_comments(self) -> int:
        if self._watch_lock.locked():
            logger.warning("Comment watch still running, skipped")
            return 0
        async with self._watch_lock:
            return await self.comment_watcher.run()
