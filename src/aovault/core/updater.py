"""WIP 作品更新检查."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from aovault.core import store
from aovault.core.archive import ArchiveDownloader
from aovault.errors import DownloadFailedError, WorkNotFoundError
from aovault.extractors.base import WorkParser
from aovault.extractors.metadata import AO3_BASE_URL, canonical_work_url
from aovault.fetcher.orchestrator import FetchOrchestrator
from aovault.models.work import Work
from aovault.utils.clock import utc_now

logger = logging.getLogger(__name__)

# 更新检查会比较的字段
TRACKED_FIELDS = ("chapter_count", "chapter_total", "word_count", "status", "updated_at")


class CheckStatus:
    """检查结果."""

    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class UpdateCheckResult:
    """单篇作品的检查结果."""

    work_id: int
    title: str
    status: str
    changes: dict[str, dict[str, Any]] = field(default_factory=dict)
    error: str | None = None

    @property
    def skipped(self) -> bool:
        """是否因熔断而跳过."""
        return self.status == CheckStatus.SKIPPED

    def to_dict(self) -> dict[str, Any]:
        """序列化为接口响应."""
        data: dict[str, Any] = {"workId": self.work_id, "title": self.title}
        if self.skipped:
            data["skipped"] = True
        elif self.error is not None:
            data["error"] = self.error
        else:
            data["changes"] = self.changes
        return data


class UpdateChecker:
    """
    批量检查 WIP 作品是否有更新.

    按最近检查时间从旧到新处理；同一批次内连续失败达到阈值后熔断，
    剩余作品直接标记为 skipped，不再请求源站。
    """

    def __init__(
        self,
        session: AsyncSession,
        orchestrator: FetchOrchestrator,
        parser: WorkParser,
        downloader: ArchiveDownloader | None = None,
        failure_threshold: int = 2,
        base_url: str = AO3_BASE_URL,
    ) -> None:
        self.session = session
        self.orchestrator = orchestrator
        self.parser = parser
        self.downloader = downloader
        self.failure_threshold = failure_threshold
        self.base_url = base_url

    async def check_for_updates(
        self, owner_id: int, limit: int = 10
    ) -> list[UpdateCheckResult]:
        """检查指定用户的 WIP 作品."""
        works = await store.list_wips_for_recheck(self.session, owner_id, limit)
        if not works:
            logger.info("没有需要检查的 WIP 作品")
            return []

        logger.info(f"开始检查 {len(works)} 篇 WIP 作品")
        # 失败时会 rollback 使实例过期，先取出 id 和标题
        batch = [(work.id, work.title) for work in works if work.id is not None]
        results: list[UpdateCheckResult] = []
        consecutive_failures = 0

        for index, (work_id, title) in enumerate(batch, 1):
            if consecutive_failures >= self.failure_threshold:
                logger.warning(f"[{index}/{len(batch)}] 熔断跳过: {title}")
                await store.record_check(
                    self.session, work_id, CheckStatus.SKIPPED, {"reason": "circuit_open"}
                )
                results.append(
                    UpdateCheckResult(
                        work_id=work_id, title=title, status=CheckStatus.SKIPPED
                    )
                )
                continue

            try:
                result = await self._check_one(work_id)
            except Exception as e:
                consecutive_failures += 1
                logger.exception(f"[{index}/{len(batch)}] 检查失败: {title}")
                await self.session.rollback()
                await self._mark_checked(work_id)
                await store.record_check(
                    self.session, work_id, CheckStatus.FAILED, {"error": str(e)}
                )
                results.append(
                    UpdateCheckResult(
                        work_id=work_id,
                        title=title,
                        status=CheckStatus.FAILED,
                        error=str(e),
                    )
                )
                continue

            consecutive_failures = 0
            logger.info(f"[{index}/{len(batch)}] {result.status}: {title}")
            results.append(result)

        updated = sum(1 for r in results if r.status == CheckStatus.UPDATED)
        skipped = sum(1 for r in results if r.skipped)
        logger.info(
            f"更新检查完成: 共 {len(results)} 篇, 有更新 {updated}, 跳过 {skipped}"
        )
        return results

    async def _mark_checked(self, work_id: int) -> None:
        """失败的作品也记录检查时间，下一批轮到其他作品."""
        work = await store.get_work(self.session, work_id)
        if work is None:
            return
        work.last_checked_at = utc_now()
        self.session.add(work)
        await self.session.commit()

    async def _check_one(self, work_id: int) -> UpdateCheckResult:
        """抓取并比较单篇作品."""
        work = await store.get_work(self.session, work_id)
        if work is None:
            raise WorkNotFoundError(work_id)
        url = canonical_work_url(work.source_id, self.base_url)
        html = await self.orchestrator.fetch_html(url)
        metadata = self.parser.parse(url, html)

        changes: dict[str, dict[str, Any]] = {}
        for name in TRACKED_FIELDS:
            old = getattr(work, name)
            new = getattr(metadata, name)
            if old != new:
                changes[name] = {"old": old, "new": new}
                setattr(work, name, new)

        grew = "chapter_count" in changes and metadata.chapter_count > (
            changes["chapter_count"]["old"] or 0
        )

        work.last_checked_at = utc_now()
        self.session.add(work)
        await self.session.commit()

        if grew:
            # 新章节发布：旧缓存和旧归档都已过期
            await store.delete_chapters(self.session, work_id)
            await self._refresh_archive(work)

        status = CheckStatus.UPDATED if changes else CheckStatus.UNCHANGED
        await store.record_check(self.session, work_id, status, changes or None)
        return UpdateCheckResult(
            work_id=work_id, title=work.title, status=status, changes=changes
        )

    async def _refresh_archive(self, work: Work) -> None:
        """重新下载归档；失败则放弃旧归档，阅读时回退到源站."""
        if self.downloader is None:
            return
        try:
            work.epub_path = await self.downloader.download(
                work.owner_id, work.source_id
            )
        except DownloadFailedError as e:
            logger.warning(f"归档刷新失败，改为在线读取: {work.title} - {e}")
            if work.epub_path:
                Path(work.epub_path).unlink(missing_ok=True)
            work.epub_path = None
        self.session.add(work)
        await self.session.commit()
