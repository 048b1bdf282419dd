"""时间工具."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """当前 UTC 时间（带时区）；入库时间戳统一用它生成."""
    return datetime.now(UTC)
