"""ShiftNotices — fixed texts sent to the chat at fixed local times.

Unrelated to task flow: shift start / shift end reminders.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from services.jira.transport import ChatTransport

logger = logging.getLogger("relay.jira.notices")


@dataclass(frozen=True)
class Notice:
    at: time
    text: str


def parse_notice(at: str, text: str) -> Notice | None:
    """"HH:MM" + text -> Notice; empty or invalid time disables the notice."""
    if not at or not text:
        return None
    try:
        hours, minutes = (int(part) for part in at.split(":", 1))
        return Notice(time(hours, minutes), text)
    except ValueError:
        logger.warning("Ignoring notice with invalid time %r", at)
        return None


def next_occurrence(at: time, after: datetime) -> datetime:
    """First local occurrence of `at` strictly after aware `after`."""
    target = after.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
    if target <= after:
        target += timedelta(days=1)
    return target


class ShiftNotices:

    def __init__(
        self,
        transport: ChatTransport,
        *,
        chat_id: str,
        tz: ZoneInfo,
        notices: list[Notice],
    ):
        self.transport = transport
        self.chat_id = chat_id
        self.tz = tz
        self.notices = notices
        self._running = False

    async def start(self) -> None:
        """Sleep until the nearest notice time, send it, repeat."""
        if not self.notices:
            logger.info("ShiftNotices: nothing configured")
            return
        self._running = True
        logger.info(
            "ShiftNotices started: %s",
            ", ".join(n.at.strftime("%H:%M") for n in self.notices),
        )
        # each target is computed from the previous one, so an early wake
        # from sleep cannot fire the same notice twice
        cursor = datetime.now(self.tz)
        while self._running:
            target, notice = min(
                ((next_occurrence(n.at, cursor), n) for n in self.notices),
                key=lambda pair: pair[0],
            )
            delay = (target - datetime.now(self.tz)).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            if not self._running:
                break
            await self.send(notice)
            cursor = target

    async def send(self, notice: Notice) -> None:
        try:
            await self.transport.send_message(self.chat_id, notice.text)
            logger.info("Shift notice sent (%s)", notice.at.strftime("%H:%M"))
        except Exception as exc:
            logger.error("Shift notice %s failed: %s", notice.at.strftime("%H:%M"), exc)

    def stop(self) -> None:
        self._running = False
