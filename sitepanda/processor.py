"""
Content Processor
=================
Turns a fetched page's HTML into a ``PageRecord``: title, readable article
HTML and its Markdown rendering.

1. With a content selector, the first matching element is used; if nothing
   matches, the full page is processed instead.
2. Without a selector, script/style/link/img/video are removed up front.
3. The main content block is located (semantic tags, well-known ids and
   classes, else the whole body), non-content tags are stripped and
   relative links/images are made absolute.
4. The article is converted to Markdown with markdownify.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Comment, Tag
from markdownify import ATX, markdownify

from .errors import ProcessingError

logger = logging.getLogger(__name__)

_BS_PARSER = "lxml"

# Removed before extraction when no content selector is given
PREFILTER_TAGS = ("script", "style", "link", "img", "video")

# Never part of readable content
ALWAYS_STRIP_TAGS = {
    "script", "style", "noscript", "iframe", "svg", "canvas",
    "template", "object", "embed", "meta", "link",
}

# Tried in order when looking for the main content block
MAIN_CONTENT_SELECTORS = ("main", "article", "[role=main]")

MAIN_CONTENT_IDENTIFIERS = {
    "content", "main", "main-content", "article", "post",
    "entry", "body-content", "page-content", "primary",
    "site-content", "entry-content", "post-content",
    "text-content", "maincontent", "mainContent", "markdown-body",
}

# A candidate block must carry at least this share of the body's text
_MIN_CANDIDATE_SHARE = 0.25

_BLANK_LINES_RE = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")


@dataclass
class PageRecord:
    """One saved page."""
    title: str
    url: str
    markdown: str
    raw_html: str = ""
    article_html: str = ""


def _text_length(node: Tag) -> int:
    return len(node.get_text(" ", strip=True))


def _page_title(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    og = soup.find("meta", attrs={"property": "og:title"})
    if og and og.get("content"):
        return og["content"].strip()
    h1 = soup.find("h1")
    if h1:
        return h1.get_text(" ", strip=True)
    return ""


def _find_main_content(soup: BeautifulSoup) -> Optional[Tag]:
    """Pick the element most likely to hold the page's readable content."""
    body = soup.body or soup
    body_len = _text_length(body) if body else 0
    if body_len == 0:
        return body

    def big_enough(node: Tag) -> bool:
        return _text_length(node) >= body_len * _MIN_CANDIDATE_SHARE

    for selector in MAIN_CONTENT_SELECTORS:
        node = soup.select_one(selector)
        if node is not None and big_enough(node):
            return node

    best, best_len = None, 0
    for node in soup.find_all(["div", "section"]):
        ids = [node.get("id") or ""] + list(node.get("class") or [])
        if not any(i in MAIN_CONTENT_IDENTIFIERS for i in ids):
            continue
        length = _text_length(node)
        if length > best_len:
            best, best_len = node, length
    if best is not None and big_enough(best):
        return best
    return body


def _clean(node: Tag) -> None:
    for tag in node.find_all(ALWAYS_STRIP_TAGS):
        tag.decompose()
    for comment in node.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()


def _absolutize(node: Tag, base_url: str) -> None:
    """Rewrite relative href/src attributes against *base_url*."""
    for attr, tags in (("href", ["a"]), ("src", ["img", "source"])):
        for tag in node.find_all(tags):
            value = (tag.get(attr) or "").strip()
            if not value or value.startswith(("#", "javascript:", "data:", "mailto:")):
                continue
            tag[attr] = urljoin(base_url, value)


def _article_html(node: Tag) -> str:
    if node.name in ("body", "[document]", "html"):
        inner = node.decode_contents().strip()
        return f"<div>{inner}</div>" if inner else ""
    return str(node)


def html_to_markdown(html: str) -> str:
    if not html:
        return ""
    text = markdownify(html, heading_style=ATX, bullets="-")
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


def process_html(url: str, raw_html: str, content_selector: Optional[str] = None) -> PageRecord:
    """
    Extract readable content from *raw_html*.

    Raises:
        ProcessingError: parsing, selection or conversion failed.
    """
    try:
        page_soup = BeautifulSoup(raw_html or "", _BS_PARSER)
        title = _page_title(page_soup)

        selected = None
        if content_selector:
            selected = page_soup.select_one(content_selector)
            if selected is not None:
                logger.info(f"[PROCESS] Content selector '{content_selector}' applied on {url}")
            else:
                logger.warning(
                    f"[PROCESS] Content selector '{content_selector}' matched nothing on {url}, "
                    f"using the full page"
                )
        else:
            removed = []
            for name in PREFILTER_TAGS:
                found = page_soup.find_all(name)
                if found:
                    removed.append(name)
                for tag in found:
                    tag.decompose()
            if removed:
                logger.debug(f"[PROCESS] Pre-filtered {', '.join(removed)} on {url}")

        root = selected if selected is not None else _find_main_content(page_soup)

        if root is None:
            article_html = ""
        else:
            _clean(root)
            _absolutize(root, url)
            article_html = _article_html(root)
        markdown = html_to_markdown(article_html)
    except Exception as exc:
        raise ProcessingError(f"failed to extract readable content from {url}: {exc}") from exc

    logger.info(f"[PROCESS] {url} (title: {title!r}, markdown length: {len(markdown)})")
    return PageRecord(
        title=title,
        url=url,
        markdown=markdown,
        raw_html=raw_html,
        article_html=article_html,
    )
