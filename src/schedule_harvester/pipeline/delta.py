"""
Delta engine: current records vs. the last committed snapshot.

Records are compared by content hash, per key. Events hash their full
normalized record; entities use their stored ``content_hash`` (empty until
enriched). The new snapshot is committed only after delta.json is written,
and the snapshot pointer swap is the commit point.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from ..hashing import content_hash
from ..ingestion.errors import MissingStateError
from ..models.documents import Delta, EntitiesDocument, EventsDocument, KeyDelta, Snapshot
from ..models.records import Entity, Event
from ..storage.state_store import StateStore
from .summary import Clock, StageSummary, utc_now

logger = logging.getLogger(__name__)


def classify(previous: dict[str, str], current: dict[str, str]) -> KeyDelta:
    """Split keys into added/removed/updated/unchanged by hash."""
    prev_keys, curr_keys = set(previous), set(current)
    common = prev_keys & curr_keys
    return KeyDelta(
        added=sorted(curr_keys - prev_keys),
        removed=sorted(prev_keys - curr_keys),
        updated=sorted(k for k in common if previous[k] != current[k]),
        unchanged=sorted(k for k in common if previous[k] == current[k]),
    )


def event_hashes(events: Iterable[Event]) -> dict[str, str]:
    return {e.event_key: e.record_hash() for e in events}


def entity_hashes(entities: Iterable[Entity]) -> dict[str, str]:
    return {e.entity_key: e.content_hash or "" for e in entities}


def snapshot_generation(events: Iterable[Event], entities: Iterable[Entity]) -> str:
    """Content-derived generation id; identical content yields the same id."""
    return content_hash(
        {
            "events": dict(sorted(event_hashes(events).items())),
            "entities": dict(sorted(entity_hashes(entities).items())),
        }
    )


def compute_delta(
    previous: Optional[Snapshot],
    events: list[Event],
    entities: list[Entity],
    generated_at: datetime,
) -> Delta:
    """Diff the current sets against the previous snapshot.

    With no previous snapshot every key is ``added``.
    """
    prev_events = previous.event_hashes() if previous else {}
    prev_entities = previous.entity_hashes() if previous else {}
    return Delta(
        generation=snapshot_generation(events, entities),
        previous_generation=previous.generation if previous else None,
        generated_at=generated_at,
        events=classify(prev_events, event_hashes(events)),
        entities=classify(prev_entities, entity_hashes(entities)),
    )


class DeltaEngine:
    """Compute delta.json and commit the new snapshot.

    Usage:
        >>> engine = DeltaEngine(store)
        >>> summary = engine.run(allow_partial=False)
        >>> summary.details["committed"]
    """

    name = "delta"

    def __init__(self, store: StateStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def run(self, allow_partial: bool = False) -> StageSummary:
        """Diff and (normally) commit.

        Raises:
            MissingStateError: If extraction has never produced events.json
        """
        summary = StageSummary(stage=self.name, started_at=self.clock())
        now = summary.started_at

        events_doc = self.store.load_model(StateStore.EVENTS, EventsDocument)
        if events_doc is None:
            raise MissingStateError(f"{StateStore.EVENTS} not found. Run events first.")
        entities_doc = self.store.load_model(StateStore.ENTITIES, EntitiesDocument)

        events = list(events_doc.events)
        entities = [e for e in (entities_doc.entities if entities_doc else []) if e.discoverable]

        previous = self.store.load_snapshot()
        delta = compute_delta(previous, events, entities, now)
        delta.complete = events_doc.complete

        # delta.json first; a crash after this leaves the previous snapshot current
        self.store.save_model(StateStore.DELTA, delta)

        if delta.complete or allow_partial:
            self.commit(delta, events, entities)
        else:
            summary.warn("Extraction was incomplete; snapshot not committed (use --allow-partial to override)")

        summary.counts.update({f"events_{k}": v for k, v in delta.events.counts().items()})
        summary.counts.update({f"entities_{k}": v for k, v in delta.entities.counts().items()})
        summary.details.update(
            {
                "generation": delta.generation,
                "previous_generation": delta.previous_generation,
                "complete": delta.complete,
                "committed": delta.committed,
            }
        )
        return summary.finish(self.clock(), self.store.drain_warnings())

    def commit(self, delta: Delta, events: list[Event], entities: list[Entity]) -> None:
        """Make the delta's generation the current snapshot."""
        if delta.previous_generation == delta.generation:
            logger.info("Snapshot content unchanged; nothing to commit")
        else:
            self.store.commit_snapshot(
                Snapshot(
                    generation=delta.generation,
                    committed_at=delta.generated_at,
                    events=events,
                    entities=entities,
                )
            )
        delta.committed = True
        self.store.save_model(StateStore.DELTA, delta)
