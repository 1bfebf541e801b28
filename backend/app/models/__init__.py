from models.base import Base, async_session, engine, get_session, init_models, utcnow
from models.tracker_task import TrackerTask
from models.comment_watermark import CommentWatermark
from models.action_audit import ActionAudit

__all__ = [
    "Base",
    "async_session",
    "engine",
    "get_session",
    "init_models",
    "utcnow",
    "TrackerTask",
    "CommentWatermark",
    "ActionAudit",
]
