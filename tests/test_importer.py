"""测试作品导入流程."""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import WORK_URL, build_corrupt_epub

from aovault.core import store
from aovault.core.archive import ArchiveDownloader, epub_download_url
from aovault.core.importer import ImportKind, ImportService
from aovault.errors import FetchExhaustedError, InvalidUrlError, ParseError
from aovault.extractors import AO3WorkParser, EpubExtractor
from aovault.models.work import WorkStatus

EPUB_CHAPTERS = [
    ("Chapter 1", "<p>One.</p>"),
    ("Chapter 2", "<p>Two.</p>"),
    ("Chapter 3", "<p>Three.</p>"),
]


def make_orchestrator(
    html: str | None = None,
    epub: bytes | None = None,
    html_error: Exception | None = None,
    epub_error: Exception | None = None,
) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.fetch_html = AsyncMock(return_value=html, side_effect=html_error)
    orchestrator.fetch_epub = AsyncMock(return_value=epub, side_effect=epub_error)
    return orchestrator


def make_service(
    session: AsyncSession, orchestrator: MagicMock, storage_dir: Path
) -> ImportService:
    return ImportService(
        session,
        orchestrator,
        parser=AO3WorkParser(),
        downloader=ArchiveDownloader(orchestrator, storage_dir),
        archive_extractor=EpubExtractor(),
    )


class TestImport:
    """测试导入."""

    async def test_end_to_end_test_fic(
        self,
        async_session: AsyncSession,
        tmp_path: Path,
        work_page: Callable[..., str],
        epub_bytes: Callable[..., bytes],
    ) -> None:
        """Test Fic: 3/5 章, 12,345 字 -> WIP, 12345, 3, 5；EPUB 章节写入缓存."""
        orchestrator = make_orchestrator(
            html=work_page(title="Test Fic", words="12,345", chapters="3/5"),
            epub=epub_bytes(EPUB_CHAPTERS),
        )

        outcome = await make_service(async_session, orchestrator, tmp_path).import_work(
            1, WORK_URL
        )

        assert outcome.kind == ImportKind.IMPORTED
        work = outcome.work
        assert work is not None and work.id is not None
        assert work.title == "Test Fic"
        assert work.status == WorkStatus.WIP
        assert work.word_count == 12345
        assert work.chapter_count == 3
        assert work.chapter_total == 5
        assert work.source_id == "61463624"

        expected_path = tmp_path / "1" / "61463624.epub"
        assert work.epub_path == str(expected_path)
        assert expected_path.is_file()
        orchestrator.fetch_epub.assert_awaited_once_with(epub_download_url("61463624"))

        assert outcome.chapters_cached == 3
        chapters = await store.list_chapters(async_session, work.id)
        assert [c.title for c in chapters] == ["Chapter 1", "Chapter 2", "Chapter 3"]

    async def test_duplicate_import(
        self,
        async_session: AsyncSession,
        tmp_path: Path,
        work_page: Callable[..., str],
    ) -> None:
        """同一作品第二次导入返回已收藏，不再联网."""
        orchestrator = make_orchestrator(
            html=work_page(), epub_error=FetchExhaustedError([])
        )
        service = make_service(async_session, orchestrator, tmp_path)

        first = await service.import_work(1, WORK_URL)
        second = await service.import_work(1, f"{WORK_URL}/chapters/123")

        assert first.kind == ImportKind.IMPORTED
        assert second.kind == ImportKind.DUPLICATE
        assert second.work_id == first.work_id
        assert second.title == "Test Fic"
        assert orchestrator.fetch_html.await_count == 1

    async def test_invalid_url_makes_no_request(
        self, async_session: AsyncSession, tmp_path: Path
    ) -> None:
        """无效链接在联网前失败."""
        orchestrator = make_orchestrator()

        with pytest.raises(InvalidUrlError):
            await make_service(async_session, orchestrator, tmp_path).import_work(
                1, "https://archiveofourown.org/tags/Fluff"
            )
        orchestrator.fetch_html.assert_not_awaited()

    async def test_needs_client_fetch_then_relay(
        self,
        async_session: AsyncSession,
        tmp_path: Path,
        work_page: Callable[..., str],
    ) -> None:
        """服务端抓取失败时请求客户端代抓，提交页面后导入成功."""
        orchestrator = make_orchestrator(
            html_error=FetchExhaustedError([], retry_after=30),
            epub_error=FetchExhaustedError([]),
        )
        service = make_service(async_session, orchestrator, tmp_path)

        outcome = await service.import_work(1, WORK_URL)
        assert outcome.kind == ImportKind.NEEDS_CLIENT_FETCH
        assert outcome.retry_after == 30
        assert await store.find_work(async_session, 1, "ao3", "61463624") is None

        relayed = await service.import_work(1, WORK_URL, html=work_page())
        assert relayed.kind == ImportKind.IMPORTED
        assert orchestrator.fetch_html.await_count == 1

    async def test_blank_relayed_page(self, async_session: AsyncSession, tmp_path: Path) -> None:
        """客户端提交空页面."""
        with pytest.raises(ParseError):
            await make_service(async_session, make_orchestrator(), tmp_path).import_work(
                1, WORK_URL, html="   "
            )

    async def test_epub_failure_does_not_fail_import(
        self,
        async_session: AsyncSession,
        tmp_path: Path,
        work_page: Callable[..., str],
    ) -> None:
        """EPUB 下载失败时仍然导入，只是没有本地归档."""
        orchestrator = make_orchestrator(
            html=work_page(), epub_error=FetchExhaustedError([])
        )

        outcome = await make_service(async_session, orchestrator, tmp_path).import_work(
            1, WORK_URL
        )

        assert outcome.kind == ImportKind.IMPORTED
        assert outcome.work is not None
        assert outcome.work.epub_path is None
        assert outcome.chapters_cached == 0

    async def test_corrupt_epub_keeps_archive_path(
        self,
        async_session: AsyncSession,
        tmp_path: Path,
        work_page: Callable[..., str],
    ) -> None:
        """EPUB 无法解析时仍保存路径，章节留待阅读时再取."""
        orchestrator = make_orchestrator(html=work_page(), epub=b"PK broken archive")

        outcome = await make_service(async_session, orchestrator, tmp_path).import_work(
            1, WORK_URL
        )

        assert outcome.kind == ImportKind.IMPORTED
        assert outcome.work is not None
        assert outcome.work.epub_path is not None
        assert outcome.chapters_cached == 0

    async def test_damaged_epub_data_keeps_import(
        self,
        async_session: AsyncSession,
        tmp_path: Path,
        work_page: Callable[..., str],
    ) -> None:
        """EPUB 章节解压失败不影响导入."""
        orchestrator = make_orchestrator(html=work_page(), epub=build_corrupt_epub())

        outcome = await make_service(async_session, orchestrator, tmp_path).import_work(
            1, WORK_URL
        )

        assert outcome.kind == ImportKind.IMPORTED
        assert outcome.chapters_cached == 0
