"""
Discovery stage: seeds -> bounded set of index pages.

Seeds are tried in priority order. A paginated seed is walked page by page;
every fetched page contributes the same-site index links it carries. The first
seed that yields a non-empty set wins.
"""

import logging
import re
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from ..hashing import sha256_hexdigest
from ..ingestion.client import PolitenessFetcher
from ..ingestion.config import HarvestConfig, SeedConfig
from ..ingestion.errors import AntiBotChallenge, FetchError, NotFoundError
from ..ingestion.pacing import PacingGate
from ..models.documents import DiscoveryDocument
from ..sources.base import Extractor
from ..storage.state_store import StateStore
from .summary import Clock, StageSummary, utc_now

logger = logging.getLogger(__name__)

PAGE_SEGMENT_RE = re.compile(r"/page/(\d+)/?$")


def conventional_next_page(url: str) -> Optional[str]:
    """Next page under the ``/page/N/`` convention.

    >>> conventional_next_page("https://example.com/category/x/")
    'https://example.com/category/x/page/2/'
    >>> conventional_next_page("https://example.com/category/x/page/2/")
    'https://example.com/category/x/page/3/'
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    m = PAGE_SEGMENT_RE.search(parts.path)
    if m:
        path = PAGE_SEGMENT_RE.sub(f"/page/{int(m.group(1)) + 1}/", parts.path)
    else:
        path = parts.path.rstrip("/") + "/page/2/"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


class DiscoveryStage:
    """Build the set of index pages to extract from."""

    name = "discover"

    def __init__(
        self,
        store: StateStore,
        fetcher: PolitenessFetcher,
        extractor: Extractor,
        config: HarvestConfig,
        gate: PacingGate,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.fetcher = fetcher
        self.extractor = extractor
        self.config = config
        self.gate = gate
        self.clock = clock

    def run(self, max_pages: Optional[int] = None) -> StageSummary:
        summary = StageSummary(stage=self.name, started_at=self.clock())
        max_pages = max_pages or self.config.discovery.max_pages
        previous = self.store.load_model(StateStore.INDEX_PAGES, DiscoveryDocument)

        found: set[str] = set()
        pages_scanned: list[str] = []
        sources_tried: list[str] = []
        source_used: Optional[str] = None

        for seed in self.config.discovery.seeds:
            sources_tried.append(seed.url)
            self._walk_seed(seed, max_pages, found, pages_scanned, summary)
            if summary.blocked:
                break
            if found:
                source_used = seed.url
                break

        index_pages = sorted(found)
        previous_pages = set(previous.index_pages) if previous else set()
        document = DiscoveryDocument(
            discovered_at=summary.started_at,
            source_used=source_used,
            sources_tried=sources_tried,
            pages_scanned=pages_scanned,
            index_pages=index_pages,
            added_pages=sorted(found - previous_pages),
            dropped_pages=sorted(previous_pages - found) if found else [],
            blocked=summary.blocked,
        )

        summary.counts.update(
            {
                "discovered": len(index_pages),
                "pages_scanned": len(pages_scanned),
                "added_pages": len(document.added_pages),
                "dropped_pages": len(document.dropped_pages),
            }
        )
        summary.details["source_used"] = source_used

        if found or previous is None:
            self.store.save_model(StateStore.INDEX_PAGES, document)
        else:
            summary.warn("Discovery found no index pages; keeping previous discovery result")

        logger.info(f"Discovered {len(index_pages)} index pages from {source_used or 'no source'}")
        return summary.finish(self.clock(), self.store.drain_warnings())

    def _walk_seed(
        self,
        seed: SeedConfig,
        max_pages: int,
        found: set[str],
        pages_scanned: list[str],
        summary: StageSummary,
    ) -> None:
        """Walk one seed, adding index links to ``found``."""
        url = seed.url
        visited: set[str] = set()
        budget = max_pages if seed.paginate else 1

        for step in range(budget):
            self.gate.wait()
            try:
                body = self.fetcher.fetch(url)
            except NotFoundError as e:
                if step == 0:
                    summary.fail(url, e)
                    summary.warn(f"Seed {seed.url} not found")
                    self._record_seed_error(seed, e)
                else:
                    logger.debug(f"End of pagination at {url}")
                return
            except AntiBotChallenge as e:
                summary.blocked = True
                summary.fail(url, e)
                summary.warn(f"Challenge on {url}; stopping discovery")
                self._record_seed_error(seed, e)
                return
            except FetchError as e:
                summary.fail(url, e)
                summary.warn(f"Seed {seed.url} walk truncated at {url}: {e}")
                self._record_seed_error(seed, e)
                return

            visited.add(url)
            pages_scanned.append(url)
            if self.config.discovery.save_raw:
                self.store.write_raw(f"index/index-{len(pages_scanned)}.html", body)

            document = self.extractor.parse(body)
            links = self.extractor.locate_index_links(document, url)
            found.update(links)
            logger.debug(f"{url}: {len(links)} index links")

            if not seed.paginate:
                return
            next_url = self.extractor.next_page_hint(document, url) or conventional_next_page(url)
            if not next_url or next_url == url or next_url in visited:
                return
            url = next_url

    def _record_seed_error(self, seed: SeedConfig, error: FetchError) -> None:
        self.store.write_raw(f"errors/error-{sha256_hexdigest(seed.url)[:8]}.txt", str(error))
