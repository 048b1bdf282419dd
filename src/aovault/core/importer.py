"""作品导入：抓取元数据 -> 查重入库 -> 下载 EPUB -> 写入章节缓存."""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aovault.core import store
from aovault.core.archive import ArchiveDownloader
from aovault.errors import (
    ArchiveParseError,
    DownloadFailedError,
    FetchExhaustedError,
    ParseError,
)
from aovault.extractors.base import ArchiveExtractor, WorkParser
from aovault.extractors.metadata import (
    AO3_BASE_URL,
    canonical_work_url,
    parse_source_id,
)
from aovault.fetcher.orchestrator import FetchOrchestrator
from aovault.models.work import Work

logger = logging.getLogger(__name__)

SOURCE_AO3 = "ao3"


class ImportKind:
    """导入结果类型."""

    IMPORTED = "imported"
    DUPLICATE = "duplicate"
    NEEDS_CLIENT_FETCH = "needs_client_fetch"


@dataclass
class ImportOutcome:
    """导入结果."""

    kind: str
    work: Work | None = None
    work_id: int | None = None
    title: str | None = None
    retry_after: float | None = None
    chapters_cached: int = 0


class ImportService:
    """作品导入服务."""

    def __init__(
        self,
        session: AsyncSession,
        orchestrator: FetchOrchestrator,
        parser: WorkParser,
        downloader: ArchiveDownloader,
        archive_extractor: ArchiveExtractor,
        base_url: str = AO3_BASE_URL,
    ) -> None:
        self.session = session
        self.orchestrator = orchestrator
        self.parser = parser
        self.downloader = downloader
        self.archive_extractor = archive_extractor
        self.base_url = base_url

    async def import_work(
        self,
        owner_id: int,
        url: str,
        html: str | None = None,
    ) -> ImportOutcome:
        """
        导入一篇作品.

        Args:
            owner_id: 所属用户
            url: 作品链接
            html: 客户端代抓的页面（可选）

        Returns:
            ImportOutcome: imported / duplicate / needs_client_fetch

        Raises:
            InvalidUrlError: 链接中没有作品 ID（不会发起任何网络请求）
            ParseError: 客户端提交的页面为空
        """
        source_id = parse_source_id(url)
        work_url = canonical_work_url(source_id, self.base_url)

        existing = await store.find_work(self.session, owner_id, SOURCE_AO3, source_id)
        if existing:
            logger.info(f"作品已在收藏中: {existing.title} (id={existing.id})")
            return ImportOutcome(
                kind=ImportKind.DUPLICATE,
                work_id=existing.id,
                title=existing.title,
            )

        if html is None:
            try:
                html = await self.orchestrator.fetch_html(work_url)
            except FetchExhaustedError as e:
                logger.warning(f"服务端无法抓取，请客户端代抓: {work_url} - {e}")
                return ImportOutcome(
                    kind=ImportKind.NEEDS_CLIENT_FETCH,
                    retry_after=e.retry_after,
                )
        elif not html.strip():
            raise ParseError("metadata", "提交的页面为空")

        metadata = self.parser.parse(url, html)
        work = metadata.to_work(owner_id)

        try:
            work = await store.insert_work(self.session, work)
        except IntegrityError:
            # 并发导入同一作品，唯一约束兜底
            await self.session.rollback()
            existing = await store.find_work(
                self.session, owner_id, SOURCE_AO3, source_id
            )
            logger.info(f"并发导入冲突，按重复处理: {source_id}")
            return ImportOutcome(
                kind=ImportKind.DUPLICATE,
                work_id=existing.id if existing else None,
                title=existing.title if existing else metadata.title,
            )

        logger.info(f"作品已入库: {work.title} (id={work.id}, ao3={source_id})")

        chapters_cached = await self._attach_archive(work)
        return ImportOutcome(
            kind=ImportKind.IMPORTED,
            work=work,
            work_id=work.id,
            title=work.title,
            chapters_cached=chapters_cached,
        )

    async def _attach_archive(self, work: Work) -> int:
        """下载 EPUB 并预热章节缓存；失败不影响导入."""
        try:
            path = await self.downloader.download(work.owner_id, work.source_id)
        except DownloadFailedError as e:
            logger.warning(f"EPUB 下载失败，导入继续: {work.title} - {e}")
            return 0

        work.epub_path = path
        self.session.add(work)
        await self.session.commit()

        if work.id is None:
            return 0

        try:
            chapters = await asyncio.to_thread(self.archive_extractor.extract, path)
        except (ArchiveParseError, OSError) as e:
            logger.warning(f"EPUB 解析失败，阅读时再回退: {work.title} - {e}")
            return 0

        if not chapters:
            logger.info(f"EPUB 中没有正文章节: {work.title}")
            return 0

        return await store.save_chapters(self.session, work.id, chapters)
