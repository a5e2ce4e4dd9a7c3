"""Extractor contract for pluggable source parsers.

The pipeline never embeds site-specific selection rules. It parses bodies and
locates records, labelled sections and links only through this interface, so
the pipeline itself stays source-agnostic and testable with synthetic
documents.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence
from urllib.parse import urldefrag, urljoin, urlparse

from ..models.records import RawRecord, Section


def clean_url(href: str, base_url: Optional[str] = None) -> str:
    """Resolve ``href`` against ``base_url`` and drop any fragment."""
    absolute = urljoin(base_url, href.strip()) if base_url else href.strip()
    return urldefrag(absolute).url


def same_site(url: str, base_url: str) -> bool:
    """True if both URLs share a host (ignoring a leading ``www.``)."""

    def host(u: str) -> str:
        netloc = urlparse(u).netloc.lower()
        return netloc[4:] if netloc.startswith("www.") else netloc

    return bool(host(url)) and host(url) == host(base_url)


class Extractor(ABC):
    """Minimal extractor contract.

    Subclasses implement the document-shape rules for one source.
    """

    name: str = "base"

    @abstractmethod
    def parse(self, body: str) -> Any:
        """Parse a raw body into the document type the other methods accept."""
        raise NotImplementedError

    @abstractmethod
    def page_title(self, document: Any) -> str:
        """Human-visible title of the page, used for year inference."""
        raise NotImplementedError

    @abstractmethod
    def locate_records(self, document: Any, base_url: str) -> list[RawRecord]:
        """Locate every record on an index page."""
        raise NotImplementedError

    @abstractmethod
    def locate_sections(
        self,
        document: Any,
        heading_labels: Sequence[str],
        base_url: Optional[str] = None,
    ) -> dict[str, Section]:
        """Split a detail page into labelled sections."""
        raise NotImplementedError

    @abstractmethod
    def locate_index_links(self, document: Any, base_url: str) -> list[str]:
        """Same-site links shaped like index pages."""
        raise NotImplementedError

    def next_page_hint(self, document: Any, base_url: str) -> Optional[str]:
        """Explicit next-page link advertised by the page, if any."""
        return None
