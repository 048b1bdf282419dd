"""结构化提取器：作品页元数据、整篇章节、EPUB 归档."""

from aovault.extractors.base import (
    ArchiveExtractor,
    ChapterParser,
    ExtractedChapter,
    ParsedWorkText,
    RawWorkFields,
    WorkMetadata,
    WorkParser,
)
from aovault.extractors.chapters import AO3ChapterParser
from aovault.extractors.epub import EpubExtractor
from aovault.extractors.metadata import AO3WorkParser, parse_source_id

__all__ = [
    "AO3ChapterParser",
    "AO3WorkParser",
    "ArchiveExtractor",
    "ChapterParser",
    "EpubExtractor",
    "ExtractedChapter",
    "ParsedWorkText",
    "RawWorkFields",
    "WorkMetadata",
    "WorkParser",
    "parse_source_id",
]
