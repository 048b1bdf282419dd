"""定时任务定义."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from aovault.config import Settings

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def recheck_task(settings: Settings) -> None:
    """WIP 更新检查任务."""
    from aovault.core.archive import ArchiveDownloader
    from aovault.core.updater import UpdateChecker
    from aovault.extractors import AO3WorkParser
    from aovault.fetcher import get_orchestrator
    from aovault.models.database import get_session

    if not settings.recheck_enabled:
        logger.info("WIP 更新检查已禁用，跳过")
        return

    logger.info("开始 WIP 更新检查任务...")
    orchestrator = get_orchestrator()

    try:
        async for session in get_session():
            checker = UpdateChecker(
                session,
                orchestrator,
                parser=AO3WorkParser(settings.ao3_base_url),
                downloader=ArchiveDownloader(
                    orchestrator, settings.storage_dir, settings.ao3_base_url
                ),
                failure_threshold=settings.recheck_failure_threshold,
                base_url=settings.ao3_base_url,
            )
            results = await checker.check_for_updates(
                settings.default_owner_id, settings.recheck_batch_size
            )
            logger.info(f"WIP 更新检查结束: 处理 {len(results)} 篇")
            break  # 只需要一个会话

    except Exception as e:
        logger.exception(f"WIP 更新检查任务失败: {e}")


def create_scheduler(settings: Settings) -> AsyncIOScheduler:
    """创建并启动定时任务调度器."""
    global _scheduler

    _scheduler = AsyncIOScheduler()

    if settings.recheck_enabled:
        _scheduler.add_job(
            recheck_task,
            "interval",
            minutes=settings.recheck_interval_minutes,
            args=[settings],
            id="recheck_task",
            name="WIP 更新检查",
            replace_existing=True,
            max_instances=1,
        )

    _scheduler.start()
    logger.info(
        f"定时任务调度器已启动，检查间隔: {settings.recheck_interval_minutes} 分钟"
    )

    return _scheduler


async def shutdown_scheduler() -> None:
    """关闭定时任务调度器."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        logger.info("定时任务调度器已关闭")
        _scheduler = None
