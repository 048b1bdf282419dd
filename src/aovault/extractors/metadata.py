"""AO3 作品页元数据提取."""

import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from aovault.errors import InvalidUrlError
from aovault.extractors.base import RawWorkFields, WorkMetadata, WorkParser
from aovault.models.work import derive_status
from aovault.utils.html_parser import normalize_whitespace

AO3_BASE_URL = "https://archiveofourown.org"

_WORK_ID_PATTERN = re.compile(r"/works/(\d+)")
_WORD_COUNT_PATTERN = re.compile(r"\d[\d,]*")
_CHAPTERS_PATTERN = re.compile(r"(\d+)\s*/\s*(\d+|\?)")

# 标题候选位置，按顺序取第一个非空
_TITLE_SELECTORS = [
    "h2.title.heading",
    "#workskin .preface h2.title",
    "#workskin h2",
]


def parse_source_id(url: str) -> str:
    """从 URL 中提取作品 ID，失败即为致命错误."""
    match = _WORK_ID_PATTERN.search(url or "")
    if not match:
        raise InvalidUrlError(url)
    return match.group(1)


def canonical_work_url(source_id: str, base_url: str = AO3_BASE_URL) -> str:
    """规范化的作品链接."""
    return f"{base_url.rstrip('/')}/works/{source_id}"


def parse_word_count(text: str | None) -> int:
    """去掉千分位后解析字数，无法解析时为 0."""
    if not text:
        return 0
    match = _WORD_COUNT_PATTERN.search(text)
    if not match:
        return 0
    try:
        return int(match.group(0).replace(",", ""))
    except ValueError:
        return 0


def parse_chapter_progress(text: str | None) -> tuple[int, int | None]:
    """解析 "当前/总数"，总数为 ? 表示未知."""
    if not text:
        return 1, None
    match = _CHAPTERS_PATTERN.search(text)
    if not match:
        return 1, None
    current = int(match.group(1))
    total = None if match.group(2) == "?" else int(match.group(2))
    return current, total


def join_tags(values: list[str] | None) -> str:
    """按源站顺序以逗号拼接."""
    if not values:
        return ""
    return ", ".join(v for v in values if v)


def _text(node: Tag | None, separator: str = " ") -> str | None:
    if node is None:
        return None
    text = node.get_text(separator, strip=True)
    return text or None


def _link_texts(soup: BeautifulSoup, selector: str) -> list[str] | None:
    """定义块内所有链接的文本；块不存在时为 None."""
    block = soup.select_one(selector)
    if block is None:
        return None
    texts = [normalize_whitespace(a.get_text()) for a in block.find_all("a")]
    return [t for t in texts if t]


def extract_raw_fields(html: str) -> RawWorkFields:
    """宽松解析作品页，缺失字段保留为 None."""
    soup = BeautifulSoup(html or "", "lxml")

    title = None
    for selector in _TITLE_SELECTORS:
        title = _text(soup.select_one(selector))
        if title:
            title = normalize_whitespace(title)
            break

    author_link = soup.select_one('a[rel="author"]')
    author = _text(author_link)
    author_href = author_link.get("href") if author_link is not None else None
    if isinstance(author_href, list):
        author_href = author_href[0] if author_href else None

    summary = _text(soup.select_one("div.summary blockquote"), separator="\n")

    return RawWorkFields(
        title=title,
        author=author,
        author_href=author_href or None,
        rating=_text(soup.select_one("dd.rating")),
        warnings=_link_texts(soup, "dd.warning"),
        categories=_link_texts(soup, "dd.category"),
        fandoms=_link_texts(soup, "dd.fandom"),
        relationships=_link_texts(soup, "dd.relationship"),
        characters=_link_texts(soup, "dd.character"),
        freeforms=_link_texts(soup, "dd.freeform"),
        language=_text(soup.select_one("dd.language")),
        words=_text(soup.select_one("dd.words")),
        chapters=_text(soup.select_one("dd.chapters")),
        published=_text(soup.select_one("dd.published")),
        updated=_text(soup.select_one("dd.status")),
        summary=summary,
    )


def build_metadata(
    source_id: str,
    raw: RawWorkFields,
    base_url: str = AO3_BASE_URL,
) -> WorkMetadata:
    """为缺失字段填默认值，推导完结状态."""
    chapter_count, chapter_total = parse_chapter_progress(raw.chapters)
    published = raw.published or ""

    return WorkMetadata(
        source_id=source_id,
        source_url=canonical_work_url(source_id, base_url),
        title=raw.title or "Untitled",
        author=raw.author or "Anonymous",
        author_url=urljoin(base_url, raw.author_href) if raw.author_href else None,
        rating=raw.rating or "",
        warnings=join_tags(raw.warnings),
        categories=join_tags(raw.categories),
        fandom=join_tags(raw.fandoms),
        ship=join_tags(raw.relationships),
        characters=join_tags(raw.characters),
        tags=join_tags(raw.freeforms),
        summary=raw.summary or "",
        word_count=parse_word_count(raw.words),
        chapter_count=chapter_count,
        chapter_total=chapter_total,
        status=derive_status(chapter_count, chapter_total),
        language=raw.language or "",
        published_at=published,
        updated_at=raw.updated or published,
    )


class AO3WorkParser(WorkParser):
    """基于选择器的 AO3 作品页解析器."""

    def __init__(self, base_url: str = AO3_BASE_URL) -> None:
        self.base_url = base_url

    def parse(self, url: str, html: str) -> WorkMetadata:
        """URL 无效时立即失败，不解析文档."""
        source_id = parse_source_id(url)
        return build_metadata(source_id, extract_raw_fields(html), self.base_url)
