"""错误类型定义."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from aovault.fetcher.transports import TransportResult


class AOVaultError(Exception):
    """AOVault 基础异常."""


class InvalidUrlError(AOVaultError):
    """URL 中没有可识别的作品 ID."""

    def __init__(self, url: str) -> None:
        super().__init__(f"无效的 AO3 作品链接: {url}")
        self.url = url


class ParseError(AOVaultError):
    """文档结构不符合预期."""

    def __init__(self, stage: str, message: str = "") -> None:
        super().__init__(f"解析失败 [{stage}] {message}".strip())
        self.stage = stage


class ArchiveParseError(ParseError):
    """EPUB 归档解析失败."""


class FetchExhaustedError(AOVaultError):
    """所有传输策略均失败（含一次限流重试）."""

    def __init__(
        self,
        failures: list["TransportResult"],
        retry_after: float | None = None,
    ) -> None:
        summary = "; ".join(
            f"{f.transport}={f.failure}({f.error or f.status_code})" for f in failures
        )
        super().__init__(f"所有抓取策略均失败: {summary}")
        self.failures = failures
        self.retry_after = retry_after


class RateLimitedError(AOVaultError):
    """源站限流，可在 retry_after 秒后重试."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"AO3 限流，请在 {int(retry_after)} 秒后重试")
        self.retry_after = retry_after


class UnreachableError(AOVaultError):
    """缓存、归档和源站均无法提供内容."""


class DownloadFailedError(AOVaultError):
    """元数据成功但 EPUB 下载失败."""


class WorkNotFoundError(AOVaultError):
    """作品不存在."""

    def __init__(self, work_id: int) -> None:
        super().__init__(f"作品不存在: {work_id}")
        self.work_id = work_id
