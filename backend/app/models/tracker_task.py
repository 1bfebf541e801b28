"""TrackerTask: local reconciled snapshot of one remote Jira issue."""
from datetime import datetime

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class TrackerTask(Base):
    __tablename__ = "tracker_tasks"

    __table_args__ = (
        Index("ix_tracker_tasks_source_archived", "source", "archived"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)   # Jira issue key
    title: Mapped[str] = mapped_column(String(500), default="")
    priority: Mapped[str] = mapped_column(String(30), default="unknown")
    department: Mapped[str] = mapped_column(String(200), default="")
    issue_type: Mapped[str] = mapped_column(String(100), default="")
    resolution: Mapped[str] = mapped_column(String(100), default="")
    assignee: Mapped[str] = mapped_column(String(200), default="")
    date_added: Mapped[datetime] = mapped_column()
    last_sent: Mapped[datetime | None] = mapped_column(default=None)
    source: Mapped[str] = mapped_column(String(30))                 # "sxl" | "betone"
    archived: Mapped[bool] = mapped_column(default=False)
    archived_date: Mapped[datetime | None] = mapped_column(default=None)

    def __repr__(self) -> str:
        return f"<TrackerTask {self.source}:{self.id} archived={self.archived}>"
