"""HTML 清理工具."""

import re

from bs4 import BeautifulSoup

# 会破坏 JSON / 文本序列化的控制字符（保留 \t \n \r）
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# 正文中不允许出现的标签
_UNSAFE_TAGS = ["script", "style", "iframe", "object", "embed", "form", "noscript"]


def strip_control_chars(text: str) -> str:
    """移除控制字符."""
    return _CONTROL_CHARS.sub("", text)


def normalize_whitespace(text: str) -> str:
    """合并连续空白."""
    return " ".join(text.split())


def sanitize_html(html: str) -> str:
    """
    清理章节 HTML 片段.

    移除脚本类标签和事件属性，返回 body 内部的 HTML。
    三级缓存写入前都经过这里，保证章节表示一致。
    """
    if not html or not html.strip():
        return ""

    soup = BeautifulSoup(strip_control_chars(html), "lxml")

    for element in soup(_UNSAFE_TAGS):
        element.decompose()

    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            value = tag.attrs[attr]
            if attr.lower().startswith("on"):
                del tag.attrs[attr]
            elif (
                attr.lower() in ("href", "src")
                and isinstance(value, str)
                and value.strip().lower().startswith("javascript:")
            ):
                del tag.attrs[attr]

    container = soup.body or soup
    return container.decode_contents().strip()


def html_to_text(html: str) -> str:
    """
    将 HTML 转换为纯文本.

    Args:
        html: HTML 内容

    Returns:
        提取的纯文本内容
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "lxml")

    for element in soup(["script", "style"]):
        element.decompose()

    text = soup.get_text(separator="\n")

    lines = [line.strip() for line in text.split("\n")]
    text = "\n".join(line for line in lines if line)

    return strip_control_chars(text).strip()
