"""EPUB 归档章节提取.

AO3 导出的 EPUB 由同一个生成器产出，这里用模式匹配读取
container.xml 和 OPF 清单，而不是完整的 XML/OPF 解析。
"""

import html as html_lib
import logging
import posixpath
import re
import zipfile
import zlib
from pathlib import Path
from typing import ClassVar
from urllib.parse import unquote

from aovault.errors import ArchiveParseError
from aovault.extractors.base import ArchiveExtractor, ExtractedChapter
from aovault.utils.html_parser import (
    normalize_whitespace,
    sanitize_html,
    strip_control_chars,
)

logger = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"

_FULL_PATH = re.compile(r"""full-path\s*=\s*["']([^"']+)["']""", re.IGNORECASE)
_ITEM = re.compile(r"<(?:\w+:)?item\b([^>]*?)/?>", re.IGNORECASE)
_ITEMREF = re.compile(
    r"""<(?:\w+:)?itemref\b[^>]*?\bidref\s*=\s*["']([^"']+)["']""", re.IGNORECASE
)
_ATTR = re.compile(r"""([\w:-]+)\s*=\s*["']([^"']*)["']""")
_BODY = re.compile(r"<body\b[^>]*>(.*)</body>", re.IGNORECASE | re.DOTALL)
_HEADING = re.compile(r"<(h[1-4])\b([^>]*)>(.*?)</\1\s*>", re.IGNORECASE | re.DOTALL)
_CLASS_ATTR = re.compile(r"""\bclass\s*=\s*["']([^"']*)["']""", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")


class ManifestItem:
    """OPF 清单条目."""

    __slots__ = ("href", "item_id", "properties")

    def __init__(self, item_id: str, href: str, properties: str = "") -> None:
        self.item_id = item_id
        self.href = href
        self.properties = properties


def _strip_tags(fragment: str) -> str:
    return normalize_whitespace(html_lib.unescape(_TAG.sub(" ", fragment)))


def read_archive(path: str | Path) -> dict[str, str]:
    """把归档读成 路径 -> 文本 的映射；二进制资源解码失败无影响."""
    try:
        with zipfile.ZipFile(path) as archive:
            return {
                info.filename: archive.read(info).decode("utf-8", errors="replace")
                for info in archive.infolist()
                if not info.is_dir()
            }
    except zipfile.BadZipFile as e:
        raise ArchiveParseError("archive", f"不是有效的 zip 文件: {e}") from e
    except (zlib.error, EOFError, NotImplementedError, RuntimeError) as e:
        # 压缩数据损坏、截断、加密或不支持的压缩方式
        raise ArchiveParseError("archive", f"归档内容无法解压: {e}") from e


def parse_manifest(opf: str) -> tuple[dict[str, ManifestItem], list[str]]:
    """返回 (id -> 条目, 阅读顺序 id 列表)."""
    items: dict[str, ManifestItem] = {}
    for match in _ITEM.finditer(opf):
        attrs = {k.lower(): v for k, v in _ATTR.findall(match.group(1))}
        item_id = attrs.get("id")
        href = attrs.get("href")
        if item_id and href:
            items[item_id] = ManifestItem(item_id, href, attrs.get("properties", ""))
    spine = _ITEMREF.findall(opf)
    return items, spine


def resolve_href(files: dict[str, str], opf_dir: str, href: str) -> str | None:
    """相对 OPF 目录解析路径，兼容扁平与嵌套布局."""
    href = unquote(href.split("#", 1)[0])
    candidates = [
        posixpath.normpath(posixpath.join(opf_dir, href)),
        posixpath.normpath(href),
    ]
    for candidate in candidates:
        if candidate in files:
            return candidate

    # 最后按文件名匹配
    basename = posixpath.basename(href)
    for name in files:
        if posixpath.basename(name) == basename:
            return name
    return None


def extract_chapter_title(body: str, number: int) -> str:
    """带 title 类名的标题 > 任意标题 > "Chapter N"."""
    headings = _HEADING.findall(body)
    for _, attrs, inner in headings:
        class_match = _CLASS_ATTR.search(attrs)
        if class_match and "title" in class_match.group(1).lower():
            title = _strip_tags(inner)
            if title:
                return title
    for _, _, inner in headings:
        title = _strip_tags(inner)
        if title:
            return title
    return f"Chapter {number}"


class EpubExtractor(ArchiveExtractor):
    """AO3 EPUB 章节提取器，不依赖网络."""

    # 非正文条目（导航、封面、标题页、目录、版权、致谢、前言、后记）
    SKIP_PATTERN: ClassVar[re.Pattern[str]] = re.compile(
        r"(nav|cover|title|toc|copyright|acknowledg|preface|afterword)",
        re.IGNORECASE,
    )
    SKIP_PROPERTIES: ClassVar[tuple[str, ...]] = ("nav", "cover-image")

    def extract(self, path: str | Path) -> list[ExtractedChapter]:
        files = read_archive(path)

        container = files.get(CONTAINER_PATH)
        if container is None:
            raise ArchiveParseError("missing_container", f"缺少 {CONTAINER_PATH}")

        match = _FULL_PATH.search(container)
        if not match:
            raise ArchiveParseError("missing_manifest_ref", "container.xml 未指向 OPF")

        opf_path = match.group(1)
        opf = files.get(opf_path)
        if opf is None:
            raise ArchiveParseError("missing_manifest", f"缺少清单文件 {opf_path}")

        items, spine = parse_manifest(opf)
        opf_dir = posixpath.dirname(opf_path)

        chapters: list[ExtractedChapter] = []
        for item_id in spine:
            item = items.get(item_id)
            if item is None:
                continue
            if self._is_skipped(item):
                logger.debug(f"跳过非正文条目: {item.href}")
                continue

            file_path = resolve_href(files, opf_dir, item.href)
            if file_path is None:
                logger.warning(f"清单条目找不到文件: {item.href}")
                continue

            document = strip_control_chars(files[file_path])
            body_match = _BODY.search(document)
            body = body_match.group(1) if body_match else document

            content = sanitize_html(body)
            if not _strip_tags(content):
                continue

            number = len(chapters) + 1
            chapters.append(
                ExtractedChapter(
                    number=number,
                    title=extract_chapter_title(body, number),
                    html=content,
                )
            )

        logger.info(f"EPUB 提取到 {len(chapters)} 章: {path}")
        return chapters

    def _is_skipped(self, item: ManifestItem) -> bool:
        properties = item.properties.lower().split()
        if any(p in properties for p in self.SKIP_PROPERTIES):
            return True
        return bool(self.SKIP_PATTERN.search(posixpath.basename(item.href)))
