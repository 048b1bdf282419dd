"""数据模型."""

from aovault.models.chapter import Chapter
from aovault.models.check import UpdateCheck
from aovault.models.database import get_session, init_db
from aovault.models.work import Work, WorkStatus, derive_status

__all__ = [
    "Chapter",
    "UpdateCheck",
    "Work",
    "WorkStatus",
    "derive_status",
    "get_session",
    "init_db",
]
