"""核心业务逻辑."""

from aovault.core import store
from aovault.core.archive import ArchiveDownloader
from aovault.core.importer import ImportKind, ImportOutcome, ImportService
from aovault.core.resolver import ContentResolver, ContentSource, ResolvedContent
from aovault.core.updater import CheckStatus, UpdateChecker, UpdateCheckResult

__all__ = [
    "ArchiveDownloader",
    "CheckStatus",
    "ContentResolver",
    "ContentSource",
    "ImportKind",
    "ImportOutcome",
    "ImportService",
    "ResolvedContent",
    "UpdateCheckResult",
    "UpdateChecker",
    "store",
]
