"""
Extractor for the kpopofficial.com comeback schedule.

Index pages list release "cards": an album link plus loosely structured text
where one line carries the date ("December 12, 2025 7PM KST") followed by the
artist and a few info lines. Cards have no stable class names, so a card is
the nearest ancestor of an album link whose text contains a month name and at
least three lines.

Detail pages are flattened into text/link/image blocks and windowed by label.
"""

import logging
import re
from typing import Optional, Sequence

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from ..ingestion.config import SiteConfig
from ..models.records import RawRecord, Section
from .base import Extractor, clean_url, same_site
from .sections import IMAGE, LINK, TEXT, Block, collapse_ws, window_sections

logger = logging.getLogger(__name__)

MONTH_RE = re.compile(
    r"\b(January|February|March|April|May|June|July|August|September|October|November|December)\b",
    re.IGNORECASE,
)
VIEWS_RE = re.compile(r"views?", re.IGNORECASE)
URL_LINE_RE = re.compile(r"^https?://", re.IGNORECASE)

MAX_CARD_DEPTH = 8
MIN_CARD_LINES = 3
MAX_INFO_LINES = 4
MAX_RAW_LINES = 10

SKIP_TAGS = {"script", "style", "noscript", "template"}


def text_lines(element: Tag) -> list[str]:
    """Visible text of an element split into lines, blanks and repeats dropped."""
    lines: list[str] = []
    for piece in element.get_text("\n").replace("\r", "").split("\n"):
        line = collapse_ws(piece)
        if line and (not lines or lines[-1] != line):
            lines.append(line)
    return lines


def split_card_lines(lines: list[str]) -> tuple[str, str, list[str]]:
    """Split card lines into (date line, artist line, info lines).

    The date line is the first line mentioning a month (else the first line).
    The artist is the next line that is neither a view counter nor a bare URL.
    """
    date_idx = next((i for i, line in enumerate(lines) if MONTH_RE.search(line)), 0)
    date_raw = lines[date_idx] if lines else ""

    artist = ""
    info: list[str] = []
    for line in lines[date_idx + 1 :]:
        if VIEWS_RE.search(line) or URL_LINE_RE.match(line):
            continue
        if not artist:
            artist = line
        else:
            info.append(line)
    return date_raw, artist, info[:MAX_INFO_LINES]


class KpopOfficialExtractor(Extractor):
    """BeautifulSoup extractor for kpopofficial.com listing and album pages."""

    name = "kpopofficial"

    def __init__(self, site: Optional[SiteConfig] = None):
        self.site = site or SiteConfig()
        self._detail_re = re.compile(self.site.detail_link_pattern, re.IGNORECASE)
        self._index_re = re.compile(self.site.index_link_pattern, re.IGNORECASE)
        self._exclude_re = (
            re.compile(self.site.index_link_exclude, re.IGNORECASE) if self.site.index_link_exclude else None
        )

    def parse(self, body: str) -> BeautifulSoup:
        return BeautifulSoup(body, "html.parser")

    def page_title(self, document: BeautifulSoup) -> str:
        h1 = document.find("h1")
        if h1 is not None:
            text = collapse_ws(h1.get_text(" "))
            if text:
                return text
        title = document.find("title")
        return collapse_ws(title.get_text(" ")) if title is not None else ""

    # =========================================================================
    # INDEX PAGES
    # =========================================================================

    def locate_records(self, document: BeautifulSoup, base_url: str) -> list[RawRecord]:
        records: list[RawRecord] = []
        seen: set[str] = set()

        for anchor in document.find_all("a", href=True):
            url = clean_url(anchor["href"], base_url)
            if not self._detail_re.match(url) or url in seen:
                continue
            seen.add(url)

            lines = text_lines(self._find_card(anchor, url, base_url))
            date_raw, artist, info = split_card_lines(lines)
            aux = [artist, *info] if artist else info
            records.append(
                RawRecord(
                    detail_url=url,
                    raw_date_text=date_raw,
                    raw_aux_lines=aux,
                    raw_lines=lines[:MAX_RAW_LINES],
                )
            )

        logger.debug(f"Located {len(records)} records on {base_url}")
        return records

    def _find_card(self, anchor: Tag, url: str, base_url: str) -> Tag:
        """Nearest ancestor that looks like a single record card."""
        current = anchor
        for _ in range(MAX_CARD_DEPTH):
            parent = current.parent
            if parent is None or isinstance(parent, BeautifulSoup):
                break
            # Never merge two records into one card
            if self._holds_other_record(parent, url, base_url):
                if current is not anchor:
                    return current
                break
            lines = text_lines(parent)
            if len(lines) >= MIN_CARD_LINES and any(MONTH_RE.search(line) for line in lines):
                return parent
            current = parent

        container = anchor.find_parent(["article", "li", "div"])
        return container if container is not None else (anchor.parent or anchor)

    def _holds_other_record(self, element: Tag, url: str, base_url: str) -> bool:
        for anchor in element.find_all("a", href=True):
            other = clean_url(anchor["href"], base_url)
            if other != url and self._detail_re.match(other):
                return True
        return False

    def locate_index_links(self, document: BeautifulSoup, base_url: str) -> list[str]:
        links: list[str] = []
        for anchor in document.find_all("a", href=True):
            url = clean_url(anchor["href"], base_url)
            if not same_site(url, self.site.base_url) or not self._index_re.search(url):
                continue
            if self._exclude_re is not None and self._exclude_re.search(url):
                continue
            if url not in links:
                links.append(url)
        return links

    def next_page_hint(self, document: BeautifulSoup, base_url: str) -> Optional[str]:
        for tag_name in ("link", "a"):
            tag = document.find(tag_name, rel="next", href=True)
            if tag is not None:
                return clean_url(tag["href"], base_url)
        return None

    # =========================================================================
    # DETAIL PAGES
    # =========================================================================

    def locate_sections(
        self,
        document: BeautifulSoup,
        heading_labels: Sequence[str],
        base_url: Optional[str] = None,
    ) -> dict[str, Section]:
        return window_sections(self.linearize(document, base_url), heading_labels)

    def linearize(self, document: BeautifulSoup, base_url: Optional[str] = None) -> list[Block]:
        """Flatten the main content into blocks in reading order."""
        root = (
            document.find("article")
            or document.find(class_="entry-content")
            or document.find("main")
            or document.body
            or document
        )

        blocks: list[Block] = []
        for node in root.descendants:
            if isinstance(node, NavigableString):
                if isinstance(node, PreformattedString):
                    continue
                if node.parent is not None and node.parent.name in SKIP_TAGS:
                    continue
                text = collapse_ws(str(node))
                if text:
                    blocks.append(Block(TEXT, text))
            elif isinstance(node, Tag):
                if node.name == "a" and node.get("href"):
                    href = node["href"]
                    if not href.startswith(("#", "javascript:", "mailto:")):
                        blocks.append(Block(LINK, clean_url(href, base_url)))
                elif node.name == "img":
                    src = node.get("data-src") or node.get("data-lazy-src") or node.get("src")
                    if src and not src.startswith("data:"):
                        blocks.append(Block(IMAGE, clean_url(src, base_url)))
        return blocks
