"""Throttle policies deciding when a task is due for (re-)notification."""
import enum
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from services.jira.config import ROLLING_WINDOW_DAYS


class NotifyPolicy(str, enum.Enum):
    calendar_day = "calendar_day"       # support department: once per local day
    rolling_window = "rolling_window"   # infra issue types: 72h cooldown


def policy_for(
    department: str,
    issue_type: str,
    support_department: str,
    infra_issue_types: list[str] | set[str],
) -> NotifyPolicy | None:
    """Department wins when a task matches both policies."""
    if department == support_department:
        return NotifyPolicy.calendar_day
    if issue_type in infra_issue_types:
        return NotifyPolicy.rolling_window
    return None


def as_utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    return as_utc(value).replace(tzinfo=None)


def local_date(value: datetime, tz: ZoneInfo) -> date:
    return as_utc(value).astimezone(tz).date()


def is_due_calendar_day(last_sent: datetime | None, now: datetime, tz: ZoneInfo) -> bool:
    if last_sent is None:
        return True
    return local_date(last_sent, tz) < local_date(now, tz)


def is_due_rolling(
    last_sent: datetime | None,
    now: datetime,
    window: timedelta = timedelta(days=ROLLING_WINDOW_DAYS),
) -> bool:
    if last_sent is None:
        return True
    return as_utc(now) - as_utc(last_sent) > window


def is_due(
    policy: NotifyPolicy,
    last_sent: datetime | None,
    now: datetime,
    tz: ZoneInfo,
) -> bool:
    if policy is NotifyPolicy.calendar_day:
        return is_due_calendar_day(last_sent, now, tz)
    return is_due_rolling(last_sent, now)
