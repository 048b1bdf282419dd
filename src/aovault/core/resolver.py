"""阅读内容解析：数据库缓存 -> 本地 EPUB -> 源站整篇页面."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from aovault.core import store
from aovault.errors import (
    ArchiveParseError,
    FetchExhaustedError,
    RateLimitedError,
    UnreachableError,
    WorkNotFoundError,
)
from aovault.extractors.base import ArchiveExtractor, ChapterParser, ExtractedChapter
from aovault.extractors.metadata import AO3_BASE_URL, canonical_work_url
from aovault.fetcher.orchestrator import FetchOrchestrator
from aovault.models.work import Work

logger = logging.getLogger(__name__)


class ContentSource:
    """内容来源层级."""

    DB = "db"
    EPUB = "epub"
    AO3 = "ao3"


@dataclass
class ResolvedContent:
    """阅读器所需的作品内容."""

    work_id: int
    title: str
    author: str
    source: str
    chapters: list[ExtractedChapter] = field(default_factory=list)
    pre_note: str | None = None
    end_note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """序列化为接口响应."""
        return {
            "workId": self.work_id,
            "title": self.title,
            "author": self.author,
            "chapters": [c.model_dump() for c in self.chapters],
            "preNote": self.pre_note,
            "endNote": self.end_note,
            "source": self.source,
        }


def full_work_url(source_id: str, base_url: str = AO3_BASE_URL) -> str:
    """整篇阅读视图链接."""
    return f"{canonical_work_url(source_id, base_url)}?view_full_work=true"


class ContentResolver:
    """
    三级内容解析.

    1. 数据库中已缓存的章节，直接返回
    2. 本地 EPUB 存在则解析，写回缓存
    3. 抓取源站整篇页面，解析章节，写回缓存
    每一级得到至少一章即为成功；前两级的失败只记录日志并降级。
    """

    def __init__(
        self,
        session: AsyncSession,
        orchestrator: FetchOrchestrator,
        archive_extractor: ArchiveExtractor,
        chapter_parser: ChapterParser,
        base_url: str = AO3_BASE_URL,
    ) -> None:
        self.session = session
        self.orchestrator = orchestrator
        self.archive_extractor = archive_extractor
        self.chapter_parser = chapter_parser
        self.base_url = base_url

    async def resolve(self, work_id: int) -> ResolvedContent:
        """解析作品内容."""
        work = await store.get_work(self.session, work_id)
        if work is None:
            raise WorkNotFoundError(work_id)

        chapters = await store.list_chapters(self.session, work_id)
        if chapters:
            logger.debug(f"命中章节缓存: {work.title} ({len(chapters)} 章)")
            return self._content(work_id, work, ContentSource.DB, chapters)

        chapters = await self._from_archive(work_id, work)
        if chapters:
            return self._content(work_id, work, ContentSource.EPUB, chapters)

        return await self._from_source(work_id, work)

    async def _from_archive(self, work_id: int, work: Work) -> list[ExtractedChapter]:
        """第二级：本地 EPUB."""
        if not work.epub_path or not Path(work.epub_path).is_file():
            return []

        try:
            chapters = await asyncio.to_thread(
                self.archive_extractor.extract, work.epub_path
            )
        except (ArchiveParseError, OSError) as e:
            logger.warning(f"EPUB 解析失败，回退到源站: {work.title} - {e}")
            return []

        if not chapters:
            logger.warning(f"EPUB 中没有正文章节，回退到源站: {work.title}")
            return []

        return await self._write_through(work_id, chapters)

    async def _from_source(self, work_id: int, work: Work) -> ResolvedContent:
        """第三级：源站整篇页面."""
        url = full_work_url(work.source_id, self.base_url)
        try:
            html = await self.orchestrator.fetch_html(url)
        except FetchExhaustedError as e:
            if e.retry_after is not None:
                raise RateLimitedError(e.retry_after) from e
            raise UnreachableError(f"无法获取作品内容: {work.title}") from e

        parsed = self.chapter_parser.parse(html, work.title)
        if not parsed.chapters:
            logger.warning(f"源站页面中没有章节: {url}")
            raise UnreachableError(f"无法从页面提取章节: {work.title}")

        chapters = await self._write_through(work_id, parsed.chapters)
        content = self._content(work_id, work, ContentSource.AO3, chapters)
        content.pre_note = parsed.pre_note
        content.end_note = parsed.end_note
        return content

    async def _write_through(
        self, work_id: int, chapters: list[ExtractedChapter]
    ) -> list[ExtractedChapter]:
        """写回缓存后以库中内容为准（并发写入时保留先写者）."""
        await store.save_chapters(self.session, work_id, chapters)
        return await store.list_chapters(self.session, work_id) or chapters

    @staticmethod
    def _content(
        work_id: int, work: Work, source: str, chapters: list[ExtractedChapter]
    ) -> ResolvedContent:
        return ResolvedContent(
            work_id=work_id,
            title=work.title,
            author=work.author,
            source=source,
            chapters=chapters,
        )
