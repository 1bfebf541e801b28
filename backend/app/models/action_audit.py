"""ActionAudit: append-only log of chat actions performed on tasks."""
from datetime import datetime

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class ActionAudit(Base):
    __tablename__ = "action_audits"

    __table_args__ = (
        Index("ix_action_audits_task_id", "task_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    task_id: Mapped[str] = mapped_column(String(64))
    username: Mapped[str] = mapped_column(String(100))
    action: Mapped[str] = mapped_column(String(20))                 # take | comment | complete
    created_at: Mapped[datetime] = mapped_column()
