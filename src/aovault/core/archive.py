"""EPUB 归档下载与本地存储."""

import asyncio
import logging
from pathlib import Path

from aovault.errors import DownloadFailedError, FetchExhaustedError
from aovault.extractors.metadata import AO3_BASE_URL
from aovault.fetcher.orchestrator import FetchOrchestrator

logger = logging.getLogger(__name__)


def epub_download_url(source_id: str, base_url: str = AO3_BASE_URL) -> str:
    """AO3 的 EPUB 下载地址."""
    return f"{base_url.rstrip('/')}/downloads/{source_id}/work.epub"


class ArchiveDownloader:
    """下载 EPUB 并保存到 storage_dir/<owner>/<id>.epub."""

    def __init__(
        self,
        orchestrator: FetchOrchestrator,
        storage_dir: str | Path,
        base_url: str = AO3_BASE_URL,
    ) -> None:
        self.orchestrator = orchestrator
        self.storage_dir = Path(storage_dir)
        self.base_url = base_url

    def archive_path(self, owner_id: int, source_id: str) -> Path:
        """本地归档路径."""
        return self.storage_dir / str(owner_id) / f"{source_id}.epub"

    async def download(self, owner_id: int, source_id: str) -> str:
        """下载并写入归档，返回文件路径."""
        url = epub_download_url(source_id, self.base_url)
        try:
            data = await self.orchestrator.fetch_epub(url)
        except FetchExhaustedError as e:
            raise DownloadFailedError(f"EPUB 下载失败: {e}") from e

        if not data:
            raise DownloadFailedError(f"EPUB 为空: {url}")

        path = self.archive_path(owner_id, source_id)
        try:
            await asyncio.to_thread(_write_file, path, data)
        except OSError as e:
            raise DownloadFailedError(f"EPUB 写入失败: {e}") from e

        logger.info(f"EPUB 已保存: {path} ({len(data)} bytes)")
        return str(path)


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".part")
    tmp.write_bytes(data)
    tmp.replace(path)
