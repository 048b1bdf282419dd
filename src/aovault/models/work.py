"""Work 作品模型."""

from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from aovault.utils.clock import utc_now


class WorkStatus:
    """完结状态."""

    COMPLETE = "Complete"
    WIP = "WIP"


def derive_status(chapter_count: int, chapter_total: int | None) -> str:
    """根据章节进度推导完结状态（不采信源站的状态字段）."""
    if chapter_total is not None and chapter_count >= chapter_total:
        return WorkStatus.COMPLETE
    return WorkStatus.WIP


class Work(SQLModel, table=True):
    """收藏的同人作品."""

    __tablename__ = "works"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("owner_id", "source", "source_id", name="uq_work_owner_source"),
    )

    id: int | None = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True, description="所属用户")
    source: str = Field(default="ao3", description="来源站点")
    source_id: str = Field(description="源站作品 ID")
    source_url: str = Field(description="规范化链接")
    title: str = Field(description="标题")
    author: str = Field(default="Anonymous", description="作者")
    author_url: str | None = Field(default=None, description="作者主页")
    rating: str = Field(default="", description="分级")
    warnings: str = Field(default="", description="预警（逗号分隔）")
    categories: str = Field(default="", description="分类（逗号分隔）")
    fandom: str = Field(default="", description="原作（逗号分隔）")
    ship: str = Field(default="", description="配对（逗号分隔）")
    characters: str = Field(default="", description="角色（逗号分隔）")
    tags: str = Field(default="", description="自由标签（逗号分隔）")
    summary: str = Field(default="", description="简介")
    word_count: int = Field(default=0, ge=0, description="字数")
    chapter_count: int = Field(default=1, description="已发布章节数")
    chapter_total: int | None = Field(default=None, description="计划章节数，未知为空")
    status: str = Field(default=WorkStatus.WIP, description="Complete|WIP")
    language: str = Field(default="", description="语言")
    published_at: str = Field(default="", description="发布日期（源站格式）")
    updated_at: str = Field(default="", description="更新日期（源站格式）")
    epub_path: str | None = Field(default=None, description="本地 EPUB 路径")
    last_checked_at: datetime | None = Field(default=None, description="最近更新检查")
    date_added: datetime = Field(default_factory=utc_now)
