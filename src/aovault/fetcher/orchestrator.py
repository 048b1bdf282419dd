"""抓取编排器：并发竞速多个传输策略，按限流提示重试一次."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from aovault.errors import FetchExhaustedError
from aovault.fetcher.transports import (
    DocumentKind,
    FailureKind,
    Transport,
    TransportResult,
)

logger = logging.getLogger(__name__)


class FetchOrchestrator:
    """
    对外隐藏传输细节的抓取入口.

    所有策略同时发起，第一个成功的结果胜出，其余任务被取消。
    全部失败时：若带有限流提示且不超过上限，则等待后整体重试一次；
    否则（或重试仍失败）抛出 FetchExhaustedError。
    """

    def __init__(
        self,
        transports: Sequence[Transport],
        retry_ceiling: float = 45.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.transports = list(transports)
        self.retry_ceiling = retry_ceiling
        self._sleep = sleep

    async def close(self) -> None:
        """关闭所有传输策略的客户端."""
        for transport in self.transports:
            await transport.close()

    async def fetch(self, url: str, kind: str = DocumentKind.HTML) -> TransportResult:
        """抓取文档，返回胜出的结果."""
        outcome = await self._race(url, kind)
        if isinstance(outcome, TransportResult):
            return outcome

        retry_after = self._retry_hint(outcome)
        if retry_after is None or retry_after > self.retry_ceiling:
            logger.warning(f"抓取失败且不可重试: {url} (retry_after={retry_after})")
            raise FetchExhaustedError(outcome, retry_after=retry_after)

        logger.warning(f"源站限流，{retry_after:.0f}s 后重试一次: {url}")
        await self._sleep(retry_after)

        outcome = await self._race(url, kind)
        if isinstance(outcome, TransportResult):
            return outcome

        logger.warning(f"重试后仍失败: {url}")
        raise FetchExhaustedError(outcome, retry_after=self._retry_hint(outcome))

    async def fetch_html(self, url: str) -> str:
        """抓取 HTML 页面."""
        result = await self.fetch(url, DocumentKind.HTML)
        return result.text

    async def fetch_epub(self, url: str) -> bytes:
        """抓取 EPUB 文件."""
        result = await self.fetch(url, DocumentKind.EPUB)
        return result.body or b""

    async def _race(
        self, url: str, kind: str
    ) -> TransportResult | list[TransportResult]:
        """一轮竞速：返回第一个成功结果，或全部失败结果."""
        tasks = [
            asyncio.create_task(self._attempt(transport, url, kind), name=transport.name)
            for transport in self.transports
        ]
        failures: list[TransportResult] = []

        try:
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                if result.success:
                    logger.info(f"[{result.transport}] 抓取成功: {url}")
                    return result

                logger.info(
                    f"[{result.transport}] 抓取失败: {url} - "
                    f"{result.failure} {result.error or ''}"
                )
                failures.append(result)
        finally:
            # 取消落败者，避免泄漏后台任务
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        return failures

    @staticmethod
    async def _attempt(transport: Transport, url: str, kind: str) -> TransportResult:
        """运行单个策略；意外异常记为该策略的失败."""
        try:
            return await transport.fetch(url, kind)
        except Exception as e:
            logger.exception(f"[{transport.name}] 传输策略异常: {url}")
            return TransportResult(
                transport=transport.name,
                success=False,
                failure=FailureKind.NETWORK_ERROR,
                error=f"{type(e).__name__}: {e}",
            )

    @staticmethod
    def _retry_hint(failures: list[TransportResult]) -> float | None:
        """取所有限流失败中最长的建议等待时间."""
        hints = [
            f.retry_after
            for f in failures
            if f.is_rate_limited and f.retry_after is not None
        ]
        return max(hints) if hints else None
