"""结构化提取器接口与结果记录."""

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel, Field

from aovault.models.work import Work


class ExtractedChapter(BaseModel):
    """三级缓存共用的章节表示."""

    number: int
    title: str
    html: str


class RawWorkFields(BaseModel):
    """
    作品页的宽松解析结果.

    每个字段都可能缺失；缺失即为 None，由 build_metadata 填默认值。
    """

    title: str | None = None
    author: str | None = None
    author_href: str | None = None
    rating: str | None = None
    warnings: list[str] | None = None
    categories: list[str] | None = None
    fandoms: list[str] | None = None
    relationships: list[str] | None = None
    characters: list[str] | None = None
    freeforms: list[str] | None = None
    language: str | None = None
    words: str | None = None
    chapters: str | None = None
    published: str | None = None
    updated: str | None = None
    summary: str | None = None


class WorkMetadata(BaseModel):
    """补齐默认值后的作品元数据（未入库）."""

    source: str = "ao3"
    source_id: str
    source_url: str
    title: str = "Untitled"
    author: str = "Anonymous"
    author_url: str | None = None
    rating: str = ""
    warnings: str = ""
    categories: str = ""
    fandom: str = ""
    ship: str = ""
    characters: str = ""
    tags: str = ""
    summary: str = ""
    word_count: int = 0
    chapter_count: int = 1
    chapter_total: int | None = None
    status: str = Field(default="WIP")
    language: str = ""
    published_at: str = ""
    updated_at: str = ""

    def to_work(self, owner_id: int) -> Work:
        """转换为待插入的 Work."""
        return Work(owner_id=owner_id, **self.model_dump())


class ParsedWorkText(BaseModel):
    """整篇作品页提取出的正文."""

    chapters: list[ExtractedChapter] = Field(default_factory=list)
    pre_note: str | None = None
    end_note: str | None = None


class WorkParser(ABC):
    """作品页元数据提取器."""

    @abstractmethod
    def parse(self, url: str, html: str) -> WorkMetadata:
        """从 URL + HTML 提取元数据；仅 URL 无效时抛错."""
        ...


class ChapterParser(ABC):
    """整篇作品页（view_full_work）章节提取器."""

    @abstractmethod
    def parse(self, html: str, work_title: str = "") -> ParsedWorkText:
        """提取所有章节."""
        ...


class ArchiveExtractor(ABC):
    """离线归档章节提取器."""

    @abstractmethod
    def extract(self, path: str | Path) -> list[ExtractedChapter]:
        """按阅读顺序提取章节；结构错误抛 ArchiveParseError."""
        ...
