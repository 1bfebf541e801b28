"""Completion report: resolved support tasks per assignee over a period."""
from datetime import datetime, timedelta

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import utcnow
from models.tracker_task import TrackerTask
from services.jira.config import RESOLUTION_DONE

UNKNOWN_ASSIGNEE = "unknown"


async def completed_by_assignee(
    session: AsyncSession,
    support_department: str,
    days: int = 30,
    now: datetime | None = None,
) -> dict[str, int]:
    since = (now or utcnow()) - timedelta(days=days)
    stmt = (
        select(TrackerTask.assignee, func.count())
        .where(and_(
            TrackerTask.resolution == RESOLUTION_DONE,
            TrackerTask.department == support_department,
            TrackerTask.date_added >= since,
        ))
        .group_by(TrackerTask.assignee)
        .order_by(func.count().desc())
    )
    result = await session.execute(stmt)
    stats: dict[str, int] = {}
    for assignee, count in result.all():
        name = assignee or UNKNOWN_ASSIGNEE
        stats[name] = stats.get(name, 0) + count
    return stats


def format_report(stats: dict[str, int], days: int = 30) -> str:
    if not stats:
        return f"No resolved support tasks in the last {days} days."
    lines = [f"Resolved support tasks, last {days} days:", ""]
    lines += [f"{name}: {count}" for name, count in stats.items()]
    return "\n".join(lines)
