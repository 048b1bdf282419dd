"""源站抓取模块."""

from aovault.fetcher.factory import (
    close_orchestrator,
    create_orchestrator,
    get_orchestrator,
    get_rate_limiter,
)
from aovault.fetcher.orchestrator import FetchOrchestrator
from aovault.fetcher.ratelimit import RateLimiter
from aovault.fetcher.transports import (
    DirectTransport,
    DocumentKind,
    FailureKind,
    ProxyTransport,
    Transport,
    TransportResult,
)

__all__ = [
    "DirectTransport",
    "DocumentKind",
    "FailureKind",
    "FetchOrchestrator",
    "ProxyTransport",
    "RateLimiter",
    "Transport",
    "TransportResult",
    "close_orchestrator",
    "create_orchestrator",
    "get_orchestrator",
    "get_rate_limiter",
]
