"""Jira relay REST API — status, tasks, forced sync, report.

Prefix: /api/jira. Status and task listing work without the relay module;
sync needs it running.
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import get_session
from models.tracker_task import TrackerTask
from services.jira.report import completed_by_assignee

router = APIRouter(prefix="/api/jira", tags=["jira-relay"])
logger = logging.getLogger("relay.api")


class TrackerTaskOut(BaseModel):
    id: str
    source: str
    title: str
    priority: str
    department: str
    issue_type: str
    resolution: str
    assignee: str
    date_added: datetime
    last_sent: datetime | None = None
    archived: bool
    archived_date: datetime | None = None

    class Config:
        from_attributes = True


def _get_module(request: Request):
    module = getattr(request.app.state, "jira_relay", None)
    if not module:
        raise HTTPException(503, "Jira relay is not enabled")
    return module


# ─── Status ───────────────────────────────────────────────────────────

@router.get("/status")
async def get_status(request: Request):
    """Module status and per-source connection health."""
    module = getattr(request.app.state, "jira_relay", None)
    if not module:
        return {"enabled": False, "sources": {}}
    return {
        "enabled": True,
        "sources": {
            name: {
                "url": adapter.base_url,
                "connected": adapter.client.is_connected,
                "last_sync": module.last_sync.get(name),
                "last_error": module.last_error.get(name),
            }
            for name, adapter in module.adapters.items()
        },
        "identities": len(module.identities),
    }


# ─── Tasks ────────────────────────────────────────────────────────────

@router.get("/tasks", response_model=list[TrackerTaskOut])
async def list_tasks(
    source: str | None = None,
    archived: bool | None = None,
    department: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> list[TrackerTaskOut]:
    """Local task snapshot with optional filters."""
    stmt = select(TrackerTask).order_by(TrackerTask.date_added.desc()).limit(limit)
    if source:
        stmt = stmt.where(TrackerTask.source == source)
    if archived is not None:
        stmt = stmt.where(TrackerTask.archived == archived)
    if department:
        stmt = stmt.where(TrackerTask.department == department)

    result = await session.execute(stmt)
    return [TrackerTaskOut.model_validate(t) for t in result.scalars().all()]


@router.post("/sync")
async def force_sync(request: Request):
    """Run one fetch + reconcile + notify cycle now."""
    module = _get_module(request)
    results = await module.run_cycle()
    return {
        "success": all(r is not None for r in results.values()),
        "sources": {
            name: (
                {"inserted": r.inserted, "updated": r.updated, "archived": r.archived}
                if r else None
            )
            for name, r in results.items()
        },
    }


# ─── Report ───────────────────────────────────────────────────────────

@router.get("/report")
async def get_report(
    days: int = Query(30, ge=1, le=365),
    session: AsyncSession = Depends(get_session),
):
    """Resolved support tasks per assignee."""
    stats = await completed_by_assignee(session, settings.SUPPORT_DEPARTMENT, days=days)
    return {"days": days, "by_assignee": stats, "total": sum(stats.values())}
