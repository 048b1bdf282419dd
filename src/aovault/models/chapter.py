"""Chapter 章节缓存模型."""

from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from aovault.utils.clock import utc_now


class Chapter(SQLModel, table=True):
    """作品章节正文缓存."""

    __tablename__ = "chapters"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("work_id", "number", name="uq_chapter_work_number"),
    )

    id: int | None = Field(default=None, primary_key=True)
    work_id: int = Field(foreign_key="works.id", index=True, description="关联作品")
    number: int = Field(ge=1, description="章节序号，从 1 开始")
    title: str = Field(description="章节标题")
    html: str = Field(description="清理后的 HTML 正文")
    cached_at: datetime = Field(default_factory=utc_now)
