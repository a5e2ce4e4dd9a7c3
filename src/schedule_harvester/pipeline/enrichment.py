"""
Enrichment stage: entity detail pages -> attributes.

Due entities are pulled from a shared queue by a fixed pool of worker loops.
Every worker passes the shared pacing gate before each request. An anti-bot
challenge sets a shared stop flag so no further entities are claimed; results
already completed are still persisted.
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Optional

from ..hashing import sha256_hexdigest
from ..ingestion.client import PolitenessFetcher
from ..ingestion.config import HarvestConfig
from ..ingestion.errors import AntiBotChallenge, FetchError, MissingStateError
from ..ingestion.pacing import PacingGate
from ..models.documents import EntitiesDocument, FreshnessDocument
from ..models.records import Entity, EntityAttributes, FreshnessRecord, Section
from ..sources.base import Extractor
from ..storage.state_store import StateStore
from .summary import Clock, StageSummary, utc_now

logger = logging.getLogger(__name__)

# Ordered label table for album detail pages
DETAIL_LABELS = (
    "Artist",
    "Album",
    "Title",
    "Type",
    "Release Date",
    "Release Time",
    "Title Track",
    "Tracklist",
    "Genre",
    "Language",
    "Label",
    "Agency",
    "Pre-release",
    "Teasers",
)

NAME_LABELS = ("Album", "Title")
GROUP_LABEL = "Artist"
CLASSIFICATION_LABEL = "Type"


def is_stale(
    record: Optional[FreshnessRecord],
    now: datetime,
    refresh_interval_hours: float,
    force: bool = False,
) -> bool:
    """Whether an entity is due for (re-)enrichment."""
    if force or record is None:
        return True
    return now - record.last_fetched_at >= timedelta(hours=refresh_interval_hours)


def build_attributes(
    sections: dict[str, Section],
    page_title: str = "",
    max_links: int = 20,
    max_media: int = 10,
) -> EntityAttributes:
    """Map labelled sections onto entity attributes."""

    def text_of(label: str) -> Optional[str]:
        section = sections.get(label)
        return section.text if section is not None and section.text else None

    name = next((text_of(label) for label in NAME_LABELS if text_of(label)), None) or page_title or None
    mapped = {*NAME_LABELS, GROUP_LABEL, CLASSIFICATION_LABEL}

    links: list[str] = []
    media: list[str] = []
    for section in sections.values():
        links.extend(link for link in section.links if link not in links)
        media.extend(image for image in section.images if image not in media)

    return EntityAttributes(
        name=name,
        group=text_of(GROUP_LABEL),
        classification=text_of(CLASSIFICATION_LABEL),
        release_metadata={
            label: section.text
            for label, section in sections.items()
            if label not in mapped and section.text
        },
        links=links[:max_links],
        media=media[:max_media],
    )


class EnrichmentStage:
    """Fetch detail pages for due entities over a bounded worker pool.

    Usage:
        >>> stage = EnrichmentStage(store, fetcher, extractor, config, gate)
        >>> summary = stage.run(concurrency=4, limit=50)
        >>> summary.counts["enriched_ok"], summary.blocked
    """

    name = "enrich"

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

    def enrich(self, entity_key: str) -> Entity:
        """Fetch and parse one detail page.

        Returns:
            Entity carrying only enrichment fields

        Raises:
            FetchError: On any fetch failure, including AntiBotChallenge
        """
        cfg = self.config.enrichment
        body = self.fetcher.fetch(entity_key)
        if cfg.save_raw:
            self.store.write_raw(f"detail/{sha256_hexdigest(entity_key)[:16]}.html", body)

        document = self.extractor.parse(body)
        sections = self.extractor.locate_sections(document, DETAIL_LABELS, base_url=entity_key)
        attributes = build_attributes(
            sections,
            page_title=self.extractor.page_title(document),
            max_links=cfg.max_links,
            max_media=cfg.max_media,
        )
        return Entity(
            entity_key=entity_key,
            detail_url=entity_key,
            attributes=attributes,
            content_hash=attributes.compute_hash(),
            fetched_at=self.clock(),
        )

    def run(
        self,
        concurrency: Optional[int] = None,
        force: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> StageSummary:
        """Enrich every due, discoverable entity.

        Raises:
            MissingStateError: If extraction has never produced entities.json
        """
        cfg = self.config.enrichment
        force = cfg.force if force is None else force
        limit = limit or cfg.limit
        summary = StageSummary(stage=self.name, started_at=self.clock())
        now = summary.started_at

        registry_doc = self.store.load_model(StateStore.ENTITIES, EntitiesDocument)
        if registry_doc is None:
            raise MissingStateError(f"{StateStore.ENTITIES} not found. Run events first.")
        registry = registry_doc.by_key()
        freshness = self.store.load_model(StateStore.FRESHNESS, FreshnessDocument) or FreshnessDocument(
            updated_at=now
        )

        # =====================================================================
        # SELECT DUE ENTITIES
        # =====================================================================
        candidates = sorted(key for key, entity in registry.items() if entity.discoverable)
        due: list[str] = []
        for key in candidates:
            if is_stale(freshness.records.get(key), now, cfg.refresh_interval_hours, force):
                due.append(key)
            else:
                summary.count("skipped_fresh")
        if limit:
            due = due[:limit]

        workers = self.config.effective_workers(concurrency)
        logger.info(f"Enriching {len(due)} of {len(candidates)} entities with {workers} workers")

        # =====================================================================
        # WORKER POOL
        # =====================================================================
        work: queue.Queue[str] = queue.Queue()
        for key in due:
            work.put(key)
        stop = threading.Event()
        lock = threading.Lock()
        results: dict[str, Entity] = {}
        failures: dict[str, FetchError] = {}

        def worker() -> None:
            while not stop.is_set():
                try:
                    key = work.get_nowait()
                except queue.Empty:
                    return
                self.gate.wait()
                if stop.is_set():
                    return
                try:
                    enriched = self.enrich(key)
                except AntiBotChallenge as e:
                    logger.warning(f"Challenge while enriching {key}; stopping batch")
                    stop.set()
                    with lock:
                        failures[key] = e
                    return
                except FetchError as e:
                    logger.warning(f"Failed to enrich {key}: {e}")
                    with lock:
                        failures[key] = e
                    continue
                with lock:
                    results[key] = enriched

        if due:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="enrich") as pool:
                futures = [pool.submit(worker) for _ in range(workers)]
                for future in futures:
                    future.result()

        # =====================================================================
        # MERGE AND PERSIST
        # =====================================================================
        for key in sorted(results):
            enriched = results[key]
            entity = registry[key]
            entity.attributes = enriched.attributes
            entity.content_hash = enriched.content_hash
            entity.fetched_at = enriched.fetched_at
            entity.last_error = None
            freshness.records[key] = FreshnessRecord(last_fetched_at=enriched.fetched_at)

        for key in sorted(failures):
            error = failures[key]
            registry[key].last_error = f"{error.kind}: {error}"
            summary.fail(key, error)
            if isinstance(error, AntiBotChallenge):
                summary.blocked = True

        finished = self.clock()
        if results or failures:
            self.store.save_model(
                StateStore.ENTITIES,
                EntitiesDocument(updated_at=finished, entities=[registry[k] for k in sorted(registry)]),
            )
        if results:
            freshness.updated_at = finished
            freshness.records = dict(sorted(freshness.records.items()))
            self.store.save_model(StateStore.FRESHNESS, freshness)

        summary.counts.update(
            {
                "candidates": len(candidates),
                "due": len(due),
                "enriched_ok": len(results),
                "enriched_failed": len(failures),
                "not_attempted": len(due) - len(results) - len(failures),
                "workers": workers,
            }
        )
        summary.counts.setdefault("skipped_fresh", 0)
        return summary.finish(finished, self.store.drain_warnings())
