"""CommentWatermark: highest Jira comment id already forwarded per task."""
from datetime import datetime

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class CommentWatermark(Base):
    __tablename__ = "comment_watermarks"

    task_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_comment_id: Mapped[int] = mapped_column(BigInteger)
    updated_at: Mapped[datetime] = mapped_column()
