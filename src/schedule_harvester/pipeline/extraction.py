"""
Extraction stage: index pages -> normalized events and entity seeds.

Events are rebuilt from scratch on every run. Entities are merged into the
persisted registry: seed fields are refreshed, enrichment fields are kept, and
entities not observed by a complete run are marked non-discoverable.
"""

import logging
from datetime import datetime
from typing import Optional

from ..ingestion.client import PolitenessFetcher
from ..ingestion.config import HarvestConfig
from ..ingestion.errors import AntiBotChallenge, FetchError, MissingStateError
from ..ingestion.pacing import PacingGate
from ..models.documents import DiscoveryDocument, EntitiesDocument, EventsDocument
from ..models.records import Entity, EntitySeed, Event, EventKind, RawRecord
from ..sources.base import Extractor, clean_url
from ..sources.sections import collapse_ws
from ..storage.state_store import StateStore
from .dates import infer_year_hint, parse_primary_date, parse_secondary_dates
from .summary import Clock, StageSummary, utc_now

logger = logging.getLogger(__name__)

MAX_SEED_LINES = 10


def normalize_record(
    raw: RawRecord,
    source_page: str,
    year_hint: Optional[int],
    now: datetime,
    tz: str,
) -> tuple[list[Event], EntitySeed]:
    """Turn one raw record into events plus an entity seed.

    Args:
        raw: Record located by the extractor
        source_page: Index page the record was found on
        year_hint: Year inferred from the page title
        now: Current instant
        tz: Canonical source timezone

    Returns:
        (events, seed). A record without any parseable date yields a single
        undated ``unknown`` event carrying the raw text.
    """
    entity_key = clean_url(raw.detail_url)
    text = collapse_ws(raw.raw_date_text)

    events: list[Event] = []
    primary = parse_primary_date(text, year_hint, now, tz)
    if primary is not None:
        events.append(
            Event.create(
                entity_key,
                EventKind.PRIMARY_RELEASE,
                primary.date,
                primary.time,
                primary.tz,
                text,
                source_page,
            )
        )
    for kind, parsed in parse_secondary_dates(text, year_hint, now, tz):
        events.append(Event.create(entity_key, kind, parsed.date, None, parsed.tz, parsed.raw, source_page))

    if not events:
        events.append(Event.create(entity_key, EventKind.UNKNOWN, None, None, tz, text, source_page))

    unique: dict[str, Event] = {}
    for event in events:
        unique.setdefault(event.event_key, event)

    aux = [collapse_ws(line) for line in raw.raw_aux_lines if collapse_ws(line)]
    seed = EntitySeed(
        entity_key=entity_key,
        detail_url=entity_key,
        artist_raw=aux[0] if aux else None,
        info_raw=" | ".join(aux[1:]) or None,
        first_seen_page=source_page,
        raw_lines=raw.raw_lines[:MAX_SEED_LINES],
    )
    return list(unique.values()), seed


def event_sort_key(event: Event) -> tuple:
    """(date, time, key) with undated events last."""
    return (
        event.event_date is None,
        event.event_date.isoformat() if event.event_date else "",
        event.event_time or "",
        event.event_key,
    )


class ExtractionStage:
    """Parse index pages into events and seed the entity registry.

    Usage:
        >>> stage = ExtractionStage(store, fetcher, extractor, config, gate)
        >>> summary = stage.run(max_index_pages=6)
        >>> summary.counts["extracted_events"]
    """

    name = "extract"

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

    def extract_page(
        self,
        body: str,
        page_url: str,
        now: datetime,
    ) -> tuple[list[Event], list[EntitySeed], int]:
        """Events and seeds from one index page body.

        Returns:
            (events, seeds, record_count) with page-level duplicates collapsed
        """
        tz = self.config.extraction.source_timezone
        document = self.extractor.parse(body)
        year_hint = infer_year_hint(self.extractor.page_title(document))

        records: dict[str, RawRecord] = {}
        for raw in self.extractor.locate_records(document, page_url):
            records.setdefault(clean_url(raw.detail_url), raw)

        events: list[Event] = []
        seeds: list[EntitySeed] = []
        for raw in records.values():
            page_events, seed = normalize_record(raw, page_url, year_hint, now, tz)
            events.extend(page_events)
            seeds.append(seed)
        return events, seeds, len(records)

    def run(self, max_index_pages: Optional[int] = None) -> StageSummary:
        """Run extraction over the discovered index pages.

        Raises:
            MissingStateError: If discovery has never produced index_pages.json
        """
        summary = StageSummary(stage=self.name, started_at=self.clock())
        now = summary.started_at

        discovery = self.store.load_model(StateStore.INDEX_PAGES, DiscoveryDocument)
        if discovery is None:
            raise MissingStateError(f"{StateStore.INDEX_PAGES} not found. Run discover first.")

        limit = max(1, max_index_pages or self.config.extraction.max_index_pages)
        pages = sorted(discovery.index_pages)[:limit]
        complete = bool(pages)
        if not pages:
            summary.warn("Discovery produced no index pages; nothing to extract")

        events_by_key: dict[str, Event] = {}
        seeds: dict[str, EntitySeed] = {}
        pages_parsed = 0

        for i, page_url in enumerate(pages, start=1):
            self.gate.wait()
            try:
                body = self.fetcher.fetch(page_url)
            except AntiBotChallenge as e:
                summary.blocked = True
                summary.fail(page_url, e)
                summary.warn(f"Challenge on {page_url}; stopping extraction")
                complete = False
                break
            except FetchError as e:
                summary.fail(page_url, e)
                summary.warn(f"Failed to fetch index page {page_url}: {e}")
                complete = False
                continue

            if self.config.extraction.save_raw:
                self.store.write_raw(f"pages/page-{i}.html", body)

            page_events, page_seeds, record_count = self.extract_page(body, page_url, now)
            pages_parsed += 1
            summary.count("records", record_count)

            for event in page_events:
                known = events_by_key.get(event.event_key)
                if known is None:
                    events_by_key[event.event_key] = event
                else:
                    known.add_source(page_url)
            for seed in page_seeds:
                seeds.setdefault(seed.entity_key, seed)

            logger.info(f"Page {i}/{len(pages)}: {record_count} records from {page_url}")

        events = sorted(events_by_key.values(), key=event_sort_key)
        summary.counts.update(
            {
                "index_pages": len(pages),
                "pages_parsed": pages_parsed,
                "extracted_events": len(events),
                "dated_events": sum(1 for e in events if e.is_dated),
                "undated_events": sum(1 for e in events if not e.is_dated),
            }
        )
        summary.details["complete"] = complete

        if pages_parsed == 0 and self.store.exists(StateStore.EVENTS):
            summary.warn("No index page could be parsed; keeping previous events")
            return summary.finish(self.clock(), self.store.drain_warnings())

        self.store.save_model(
            StateStore.EVENTS,
            EventsDocument(
                generated_at=now,
                index_pages_used=pages,
                complete=complete,
                blocked=summary.blocked,
                events=events,
            ),
        )
        self._merge_entities(seeds, now, complete, summary)

        return summary.finish(self.clock(), self.store.drain_warnings())

    def _merge_entities(
        self,
        seeds: dict[str, EntitySeed],
        now: datetime,
        complete: bool,
        summary: StageSummary,
    ) -> None:
        existing = self.store.load_model(StateStore.ENTITIES, EntitiesDocument)
        entities = existing.by_key() if existing else {}

        created = 0
        for key, seed in seeds.items():
            entity = entities.get(key)
            if entity is None:
                entities[key] = Entity.from_seed(seed, seen_at=now)
                created += 1
            else:
                entity.apply_seed(seed, seen_at=now)

        # An incomplete run may have missed pages, so absence proves nothing
        retired = 0
        if complete:
            for key, entity in entities.items():
                if key not in seeds and entity.discoverable:
                    entity.discoverable = False
                    retired += 1

        self.store.save_model(
            StateStore.ENTITIES,
            EntitiesDocument(updated_at=now, entities=[entities[k] for k in sorted(entities)]),
        )
        summary.counts.update(
            {
                "seeded_entities": created,
                "observed_entities": len(seeds),
                "retired_entities": retired,
                "entities_total": len(entities),
            }
        )
