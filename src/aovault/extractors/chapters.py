"""AO3 整篇作品页（view_full_work）章节提取."""

import logging

from bs4 import BeautifulSoup, Tag

from aovault.extractors.base import ChapterParser, ExtractedChapter, ParsedWorkText
from aovault.utils.html_parser import html_to_text, normalize_whitespace, sanitize_html

logger = logging.getLogger(__name__)


def _chapter_divisions(container: Tag) -> list[Tag]:
    """#chapters 下直接的 div.chapter 子节点."""
    return [
        div
        for div in container.find_all("div", recursive=False)
        if "chapter" in (div.get("class") or [])
    ]


def _body_html(body: Tag) -> str:
    # 去掉 "Chapter Text" 之类的无障碍标题
    for landmark in body.select("h3.landmark"):
        landmark.decompose()
    return sanitize_html(body.decode_contents())


def _note_html(root: Tag, selector: str) -> str | None:
    node = root.select_one(selector)
    if node is None:
        return None
    html = sanitize_html(node.decode_contents())
    return html or None


class AO3ChapterParser(ChapterParser):
    """基于选择器的整篇作品页章节解析器."""

    def parse(self, html: str, work_title: str = "") -> ParsedWorkText:
        soup = BeautifulSoup(html or "", "lxml")
        chapters: list[ExtractedChapter] = []

        container = soup.select_one("#chapters")
        divisions = _chapter_divisions(container) if container is not None else []

        if divisions:
            for division in divisions:
                body = division.select_one('div.userstuff[role="article"]')
                if body is None:
                    body = division.select_one("div.userstuff")
                if body is None:
                    continue

                content = _body_html(body)
                if not html_to_text(content):
                    continue

                number = len(chapters) + 1
                heading = division.select_one("h3.title")
                title = normalize_whitespace(heading.get_text()) if heading else ""
                chapters.append(
                    ExtractedChapter(
                        number=number,
                        title=title or f"Chapter {number}",
                        html=content,
                    )
                )
        else:
            # 单章作品没有 div.chapter 分段
            body = soup.select_one("#chapters .userstuff") or soup.select_one(
                "div.userstuff"
            )
            if body is not None:
                content = _body_html(body)
                if html_to_text(content):
                    chapters.append(
                        ExtractedChapter(
                            number=1,
                            title=work_title or "Chapter 1",
                            html=content,
                        )
                    )

        pre_note = None
        for preface in soup.select("div.preface.group"):
            if preface.find_parent(id="chapters") is None:
                pre_note = _note_html(preface, "div.notes blockquote.userstuff")
                break

        end_note = _note_html(soup, "#work_endnotes blockquote.userstuff")

        logger.debug(f"整篇页面提取到 {len(chapters)} 章")
        return ParsedWorkText(chapters=chapters, pre_note=pre_note, end_note=end_note)
