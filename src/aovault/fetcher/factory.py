"""抓取组件工厂."""

import logging

from aovault.config import Settings, get_settings
from aovault.fetcher.orchestrator import FetchOrchestrator
from aovault.fetcher.ratelimit import RateLimiter
from aovault.fetcher.transports import DirectTransport, ProxyTransport, Transport

logger = logging.getLogger(__name__)

# 进程级实例，由应用生命周期持有
_rate_limiter: RateLimiter | None = None
_orchestrator: FetchOrchestrator | None = None


def create_orchestrator(settings: Settings, rate_limiter: RateLimiter) -> FetchOrchestrator:
    """根据配置创建编排器，所有策略共享同一个限流器."""
    transports: list[Transport] = [
        DirectTransport(
            rate_limiter,
            user_agent=settings.user_agent,
            html_timeout=settings.direct_html_timeout_seconds,
            epub_timeout=settings.direct_epub_timeout_seconds,
        )
    ]

    if settings.proxy_url:
        transports.append(
            ProxyTransport(
                rate_limiter,
                proxy_url=settings.proxy_url,
                html_timeout=settings.proxy_html_timeout_seconds,
                epub_timeout=settings.proxy_epub_timeout_seconds,
            )
        )
    else:
        logger.info("未配置边缘代理，仅使用直连")

    return FetchOrchestrator(
        transports,
        retry_ceiling=settings.retry_after_ceiling_seconds,
    )


def get_rate_limiter() -> RateLimiter:
    """获取进程级限流器（懒加载）."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(min_interval=get_settings().rate_limit_seconds)
    return _rate_limiter


def get_orchestrator() -> FetchOrchestrator:
    """获取进程级编排器（用于依赖注入）."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = create_orchestrator(get_settings(), get_rate_limiter())
    return _orchestrator


async def close_orchestrator() -> None:
    """关闭编排器持有的 HTTP 客户端."""
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.close()
        _orchestrator = None
