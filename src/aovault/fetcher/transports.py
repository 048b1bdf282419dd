"""传输策略：直连 / 边缘代理."""

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from pydantic import BaseModel

from aovault.fetcher.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

# 源站未给出 Retry-After 时的默认等待
DEFAULT_RETRY_AFTER = 60.0


class DocumentKind:
    """请求的文档类型."""

    HTML = "html"
    EPUB = "epub"


class FailureKind:
    """传输失败类型."""

    NETWORK_ERROR = "network_error"
    RATE_LIMITED = "rate_limited"
    HTTP_ERROR = "http_error"
    UNEXPECTED_CONTENT_TYPE = "unexpected_content_type"


class TransportResult(BaseModel):
    """单个传输策略的抓取结果."""

    transport: str
    success: bool
    body: bytes | None = None
    content_type: str | None = None
    failure: str | None = None
    status_code: int | None = None
    retry_after: float | None = None
    error: str | None = None

    @property
    def text(self) -> str:
        """按 UTF-8 解码的正文."""
        if self.body is None:
            return ""
        return self.body.decode("utf-8", errors="replace")

    @property
    def is_rate_limited(self) -> bool:
        """是否为限流失败."""
        return self.failure == FailureKind.RATE_LIMITED


def parse_retry_after(value: str | None, default: float = DEFAULT_RETRY_AFTER) -> float:
    """解析 Retry-After（秒数或 HTTP 日期）."""
    if not value:
        return default
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def with_view_adult(url: str) -> str:
    """HTML 页面补上 view_adult=true，跳过成人内容确认页."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(key == "view_adult" for key, _ in query):
        return url
    query.append(("view_adult", "true"))
    return urlunsplit(parts._replace(query=urlencode(query)))


def looks_like_epub(body: bytes) -> bool:
    """EPUB 是 zip 容器，以 PK 开头."""
    return body[:2] == b"PK"


class Transport(ABC):
    """传输策略抽象基类."""

    name: str = "transport"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.rate_limiter = rate_limiter
        self._client = client or httpx.AsyncClient(follow_redirects=True)

    async def close(self) -> None:
        """关闭客户端."""
        await self._client.aclose()

    async def fetch(self, url: str, kind: str = DocumentKind.HTML) -> TransportResult:
        """先经过限流器，再执行具体抓取."""
        await self.rate_limiter.acquire()
        try:
            return await self._fetch(url, kind)
        except httpx.HTTPError as e:
            logger.warning(f"[{self.name}] 网络错误: {url} - {type(e).__name__}: {e}")
            return self._fail(FailureKind.NETWORK_ERROR, error=f"{type(e).__name__}: {e}")

    @abstractmethod
    async def _fetch(self, url: str, kind: str) -> TransportResult:
        """执行一次抓取，网络异常由 fetch() 统一转换."""
        ...

    def _ok(self, body: bytes, content_type: str | None = None) -> TransportResult:
        return TransportResult(
            transport=self.name,
            success=True,
            body=body,
            content_type=content_type,
            status_code=200,
        )

    def _fail(
        self,
        failure: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
        error: str | None = None,
    ) -> TransportResult:
        return TransportResult(
            transport=self.name,
            success=False,
            failure=failure,
            status_code=status_code,
            retry_after=retry_after,
            error=error,
        )


class DirectTransport(Transport):
    """直连源站，模拟浏览器请求头."""

    name = "direct"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        user_agent: str,
        html_timeout: float = 8.0,
        epub_timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(rate_limiter, client)
        self.user_agent = user_agent
        self.html_timeout = html_timeout
        self.epub_timeout = epub_timeout

    def _headers(self, kind: str) -> dict[str, str]:
        accept = (
            "application/epub+zip,application/octet-stream,*/*"
            if kind == DocumentKind.EPUB
            else "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
        )
        return {
            "User-Agent": self.user_agent,
            "Accept": accept,
            "Accept-Language": "en-US,en;q=0.5",
            "Upgrade-Insecure-Requests": "1",
        }

    async def _fetch(self, url: str, kind: str) -> TransportResult:
        is_epub = kind == DocumentKind.EPUB
        target = url if is_epub else with_view_adult(url)
        response = await self._client.get(
            target,
            headers=self._headers(kind),
            timeout=self.epub_timeout if is_epub else self.html_timeout,
        )

        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(f"[direct] 源站限流 429，建议等待 {retry_after:.0f}s")
            return self._fail(
                FailureKind.RATE_LIMITED,
                status_code=429,
                retry_after=retry_after,
                error="AO3 rate limited (429)",
            )

        if not response.is_success:
            return self._fail(
                FailureKind.HTTP_ERROR,
                status_code=response.status_code,
                error=f"AO3 returned status {response.status_code}",
            )

        content_type = response.headers.get("Content-Type", "")
        body = response.content
        if is_epub:
            if "html" in content_type.lower() or not looks_like_epub(body):
                return self._fail(
                    FailureKind.UNEXPECTED_CONTENT_TYPE,
                    status_code=response.status_code,
                    error=f"期望 EPUB，实际为 {content_type or '未知类型'}",
                )
        elif content_type and "html" not in content_type.lower():
            return self._fail(
                FailureKind.UNEXPECTED_CONTENT_TYPE,
                status_code=response.status_code,
                error=f"期望 HTML，实际为 {content_type}",
            )

        return self._ok(body, content_type)


class ProxyTransport(Transport):
    """
    通过边缘代理抓取.

    代理以 GET {proxy_url}/?url=<目标> 调用：
    HTML 直接返回页面；EPUB 返回 {"epub": <base64>, "size": n}；
    失败返回 {"error", "rateLimited", "retryAfter"} JSON 信封。
    """

    name = "proxy"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        proxy_url: str,
        html_timeout: float = 15.0,
        epub_timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(rate_limiter, client)
        self.proxy_url = proxy_url.rstrip("/")
        self.html_timeout = html_timeout
        self.epub_timeout = epub_timeout

    async def _fetch(self, url: str, kind: str) -> TransportResult:
        is_epub = kind == DocumentKind.EPUB
        target = url if is_epub else with_view_adult(url)
        response = await self._client.get(
            f"{self.proxy_url}/",
            params={"url": target},
            timeout=self.epub_timeout if is_epub else self.html_timeout,
        )

        content_type = response.headers.get("Content-Type", "")
        if "json" in content_type.lower():
            return self._from_envelope(response, is_epub)

        if response.status_code == 429:
            return self._fail(
                FailureKind.RATE_LIMITED,
                status_code=429,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
                error="proxy rate limited (429)",
            )

        if not response.is_success:
            return self._fail(
                FailureKind.HTTP_ERROR,
                status_code=response.status_code,
                error=f"proxy returned status {response.status_code}",
            )

        body = response.content
        if is_epub:
            if looks_like_epub(body):
                return self._ok(body, content_type)
        elif "html" in content_type.lower():
            return self._ok(body, content_type)

        return self._fail(
            FailureKind.UNEXPECTED_CONTENT_TYPE,
            status_code=response.status_code,
            error=f"代理返回了意外的内容类型: {content_type or '未知'}",
        )

    def _from_envelope(self, response: httpx.Response, is_epub: bool) -> TransportResult:
        """解析代理的 JSON 信封."""
        try:
            data = response.json()
        except ValueError:
            return self._fail(
                FailureKind.UNEXPECTED_CONTENT_TYPE,
                status_code=response.status_code,
                error="代理返回了无法解析的 JSON",
            )
        if not isinstance(data, dict):
            return self._fail(
                FailureKind.UNEXPECTED_CONTENT_TYPE,
                status_code=response.status_code,
                error="代理返回了非对象 JSON",
            )

        if data.get("rateLimited") or response.status_code == 429:
            retry_after = data.get("retryAfter")
            seconds = (
                float(retry_after)
                if isinstance(retry_after, int | float) and retry_after > 0
                else parse_retry_after(response.headers.get("Retry-After"))
            )
            logger.warning(f"[proxy] 源站限流，建议等待 {seconds:.0f}s")
            return self._fail(
                FailureKind.RATE_LIMITED,
                status_code=response.status_code,
                retry_after=seconds,
                error=data.get("error") or "AO3 rate limited",
            )

        if is_epub and response.is_success and data.get("epub"):
            try:
                body = base64.b64decode(data["epub"], validate=True)
            except (binascii.Error, ValueError):
                return self._fail(
                    FailureKind.UNEXPECTED_CONTENT_TYPE,
                    status_code=response.status_code,
                    error="代理返回的 EPUB 不是合法 base64",
                )
            if not looks_like_epub(body):
                return self._fail(
                    FailureKind.UNEXPECTED_CONTENT_TYPE,
                    status_code=response.status_code,
                    error="代理返回的 EPUB 内容无效",
                )
            return self._ok(body, "application/epub+zip")

        if response.is_success:
            return self._fail(
                FailureKind.UNEXPECTED_CONTENT_TYPE,
                status_code=response.status_code,
                error="代理返回了 JSON，但期望的是文档",
            )

        return self._fail(
            FailureKind.HTTP_ERROR,
            status_code=response.status_code,
            error=data.get("error") or f"proxy returned status {response.status_code}",
        )
