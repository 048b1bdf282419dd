"""测试配置和 fixtures."""

import asyncio
import io
import struct
import zipfile
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from aovault.fetcher.transports import TransportResult
from aovault.models.chapter import Chapter
from aovault.models.work import Work, WorkStatus

WORK_URL = "https://archiveofourown.org/works/61463624"


def build_work_page(
    title: str | None = "Test Fic",
    author: str | None = "testauthor",
    words: str | None = "12,345",
    chapters: str | None = "3/5",
    published: str = "2024-01-02",
    updated: str | None = "2024-03-04",
    summary: str | None = "A summary.",
) -> str:
    """构造 AO3 作品页."""
    parts = ['<html><body><div id="main">', '<dl class="work meta group">']
    parts.append('<dd class="rating tags"><ul><li><a class="tag">Teen And Up Audiences</a></li></ul></dd>')
    parts.append('<dd class="warning tags"><ul><li><a class="tag">No Archive Warnings Apply</a></li></ul></dd>')
    parts.append('<dd class="category tags"><ul><li><a class="tag">M/M</a></li></ul></dd>')
    parts.append(
        '<dd class="fandom tags"><ul><li><a class="tag">Fandom A</a></li>'
        '<li><a class="tag">Fandom B</a></li></ul></dd>'
    )
    parts.append('<dd class="relationship tags"><ul><li><a class="tag">A/B</a></li></ul></dd>')
    parts.append(
        '<dd class="character tags"><ul><li><a class="tag">A</a></li>'
        '<li><a class="tag">B</a></li></ul></dd>'
    )
    parts.append(
        '<dd class="freeform tags"><ul><li><a class="tag">Fluff</a></li>'
        '<li><a class="tag">Angst</a></li></ul></dd>'
    )
    parts.append('<dd class="language">English</dd>')
    parts.append('<dd class="stats"><dl class="stats">')
    parts.append(f'<dd class="published">{published}</dd>')
    if updated is not None:
        parts.append(f'<dd class="status">{updated}</dd>')
    if words is not None:
        parts.append(f'<dd class="words">{words}</dd>')
    if chapters is not None:
        parts.append(f'<dd class="chapters">{chapters}</dd>')
    parts.append("</dl></dd></dl>")
    parts.append('<div id="workskin"><div class="preface group">')
    if title is not None:
        parts.append(f'<h2 class="title heading">\n  {title}\n</h2>')
    if author is not None:
        parts.append(
            f'<h3 class="byline heading"><a rel="author" href="/users/{author}/pseuds/{author}">'
            f"{author}</a></h3>"
        )
    if summary is not None:
        parts.append(
            '<div class="summary module"><h3 class="heading">Summary:</h3>'
            f'<blockquote class="userstuff"><p>{summary}</p></blockquote></div>'
        )
    parts.append("</div></div></div></body></html>")
    return "".join(parts)


def build_full_work_page(chapter_texts: list[tuple[str, str]]) -> str:
    """构造整篇阅读页（view_full_work）."""
    chapters = "".join(
        f'<div class="chapter" id="chapter-{i}">'
        f'<div class="chapter preface group"><h3 class="title">{title}</h3></div>'
        f'<div class="userstuff module" role="article">'
        f'<h3 class="landmark heading" id="work">Chapter Text</h3>{body}</div>'
        f"</div>"
        for i, (title, body) in enumerate(chapter_texts, 1)
    )
    return (
        '<html><body><div id="workskin">'
        '<div class="preface group"><h2 class="title heading">Test Fic</h2>'
        '<div class="notes module"><h3 class="heading">Notes:</h3>'
        '<blockquote class="userstuff"><p>Work notes.</p></blockquote></div></div>'
        f'<div id="chapters" role="article">{chapters}</div>'
        '<div id="work_endnotes" class="end notes module">'
        '<blockquote class="userstuff"><p>Thanks for reading.</p></blockquote></div>'
        "</div></body></html>"
    )


def build_epub_files(
    chapters: list[tuple[str, str]],
    opf_dir: str = "OEBPS",
    with_extras: bool = True,
) -> dict[str, str]:
    """构造 AO3 风格 EPUB 的文件表（章节标题, 正文）."""
    prefix = f"{opf_dir}/" if opf_dir else ""
    files: dict[str, str] = {
        "mimetype": "application/epub+zip",
        "META-INF/container.xml": (
            '<?xml version="1.0"?><container version="1.0" '
            'xmlns="urn:oasis:names:tc:opendocument:xmlns:container"><rootfiles>'
            f'<rootfile full-path="{prefix}content.opf" '
            'media-type="application/oebps-package+xml"/></rootfiles></container>'
        ),
    }
    items: list[str] = []
    spine: list[str] = []

    if with_extras:
        files[f"{prefix}title.xhtml"] = (
            "<html><body><h1>Test Fic</h1><p>by testauthor</p></body></html>"
        )
        files[f"{prefix}nav.xhtml"] = "<html><body><nav><ol><li>1</li></ol></nav></body></html>"
        items.append('<item id="titlepage" href="title.xhtml" media-type="application/xhtml+xml"/>')
        items.append(
            '<item href="nav.xhtml" id="nav" properties="nav" '
            'media-type="application/xhtml+xml"/>'
        )
        spine.extend(["titlepage", "nav"])

    for i, (title, body) in enumerate(chapters, 1):
        name = f"chapter_{i:03d}.xhtml"
        files[f"{prefix}{name}"] = (
            '<?xml version="1.0" encoding="utf-8"?><html xmlns="http://www.w3.org/1999/xhtml">'
            f'<head><title>{title}</title></head><body>'
            f'<h2 class="toc-heading">{title}</h2>{body}</body></html>'
        )
        items.append(f'<item id="ch{i}" href="{name}" media-type="application/xhtml+xml"/>')
        spine.append(f"ch{i}")

    files[f"{prefix}content.opf"] = (
        '<?xml version="1.0"?><package xmlns="http://www.idpf.org/2007/opf" version="3.0">'
        f'<manifest>{"".join(items)}</manifest><spine>'
        + "".join(f'<itemref idref="{ref}"/>' for ref in spine)
        + "</spine></package>"
    )
    return files


def zip_bytes(files: dict[str, str], compression: int = zipfile.ZIP_STORED) -> bytes:
    """把文件表打包为 zip 字节."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=compression) as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def corrupt_member(data: bytes, member: str, length: int = 40) -> bytes:
    """翻转 zip 中某个成员压缩数据中段的字节."""
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        info = archive.getinfo(member)
    # 本地文件头 30 字节，26..30 为文件名和扩展字段长度
    name_len, extra_len = struct.unpack(
        "<HH", data[info.header_offset + 26 : info.header_offset + 30]
    )
    data_start = info.header_offset + 30 + name_len + extra_len
    start = data_start + max(0, info.compress_size // 2 - length // 2)
    damaged = bytearray(data)
    for i in range(start, min(start + length, data_start + info.compress_size)):
        damaged[i] ^= 0xFF
    return bytes(damaged)


def build_corrupt_epub() -> bytes:
    """压缩过的 EPUB，第一章数据损坏."""
    body = "<p>" + " ".join(f"word{i}" for i in range(3000)) + "</p>"
    data = zip_bytes(build_epub_files([("Chapter 1", body)]), zipfile.ZIP_DEFLATED)
    return corrupt_member(data, "OEBPS/chapter_001.xhtml")


class FakeClock:
    """可控时钟：sleep 直接推进时间."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeTransport:
    """按脚本返回结果的传输策略."""

    def __init__(
        self,
        name: str,
        results: list[TransportResult],
        block: asyncio.Event | None = None,
    ) -> None:
        self.name = name
        self.results = results
        self.block = block
        self.calls: list[tuple[str, str]] = []
        self.cancelled = False
        self.closed = False

    async def fetch(self, url: str, kind: str = "html") -> TransportResult:
        self.calls.append((url, kind))
        if self.block is not None:
            try:
                await self.block.wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        index = min(len(self.calls), len(self.results)) - 1
        return self.results[index]

    async def close(self) -> None:
        self.closed = True


def ok_result(name: str, body: bytes = b"<html></html>") -> TransportResult:
    return TransportResult(transport=name, success=True, body=body, status_code=200)


def failed_result(
    name: str,
    failure: str = "network_error",
    retry_after: float | None = None,
) -> TransportResult:
    return TransportResult(
        transport=name,
        success=False,
        failure=failure,
        retry_after=retry_after,
        status_code=429 if failure == "rate_limited" else None,
    )


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """内存数据库的会话工厂."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """创建测试用的内存数据库会话."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def sample_work(async_session: AsyncSession) -> Work:
    """一篇已入库的 WIP 作品."""
    work = Work(
        owner_id=1,
        source_id="61463624",
        source_url=WORK_URL,
        title="Test Fic",
        author="testauthor",
        word_count=12345,
        chapter_count=3,
        chapter_total=5,
        status=WorkStatus.WIP,
        published_at="2024-01-02",
        updated_at="2024-03-04",
    )
    async_session.add(work)
    await async_session.commit()
    await async_session.refresh(work)
    return work


@pytest_asyncio.fixture
async def cached_chapters(async_session: AsyncSession, sample_work: Work) -> list[Chapter]:
    """sample_work 已缓存的两章."""
    assert sample_work.id is not None
    chapters = [
        Chapter(work_id=sample_work.id, number=1, title="One", html="<p>first</p>"),
        Chapter(work_id=sample_work.id, number=2, title="Two", html="<p>second</p>"),
    ]
    for chapter in chapters:
        async_session.add(chapter)
    await async_session.commit()
    return chapters


@pytest.fixture
def work_page() -> Callable[..., str]:
    """作品页构造器."""
    return build_work_page


@pytest.fixture
def full_work_page() -> Callable[[list[tuple[str, str]]], str]:
    """整篇阅读页构造器."""
    return build_full_work_page


@pytest.fixture
def epub_bytes() -> Callable[..., bytes]:
    """EPUB 字节构造器."""

    def _build(chapters: list[tuple[str, str]], opf_dir: str = "OEBPS") -> bytes:
        return zip_bytes(build_epub_files(chapters, opf_dir=opf_dir))

    return _build


@pytest.fixture
def make_epub(tmp_path: Path) -> Callable[..., Path]:
    """把文件表写成 tmp_path 下的 EPUB 文件."""

    def _make(files: dict[str, str], name: str = "work.epub") -> Path:
        path = tmp_path / name
        path.write_bytes(zip_bytes(files))
        return path

    return _make


@pytest.fixture
def fake_clock() -> FakeClock:
    """可控时钟."""
    return FakeClock()
