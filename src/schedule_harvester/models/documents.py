"""
Persisted document models.

One model per JSON document kept in the state directory. Each document is
written whole, so these models are the unit of atomic replacement.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .records import Entity, Event, FreshnessRecord


class DiscoveryDocument(BaseModel):
    """Index pages found by the discovery stage."""

    discovered_at: datetime
    source_used: Optional[str] = Field(None, description="Seed that produced the set")
    sources_tried: list[str] = Field(default_factory=list)
    pages_scanned: list[str] = Field(default_factory=list, description="Literal visit order")
    index_pages: list[str] = Field(default_factory=list, description="Sorted, de-duplicated")
    added_pages: list[str] = Field(default_factory=list)
    dropped_pages: list[str] = Field(default_factory=list)
    blocked: bool = False


class EventsDocument(BaseModel):
    """Normalized events from the latest extraction run."""

    generated_at: datetime
    index_pages_used: list[str] = Field(default_factory=list)
    complete: bool = Field(True, description="Every index page was fetched and parsed")
    blocked: bool = False
    events: list[Event] = Field(default_factory=list)


class EntitiesDocument(BaseModel):
    """Every entity ever seeded, enriched or not."""

    updated_at: datetime
    entities: list[Entity] = Field(default_factory=list)

    def by_key(self) -> dict[str, Entity]:
        return {e.entity_key: e for e in self.entities}


class FreshnessDocument(BaseModel):
    updated_at: datetime
    records: dict[str, FreshnessRecord] = Field(default_factory=dict)


class Views(BaseModel):
    """Time-bucketed event slices relative to a reference instant."""

    generated_at: datetime
    reference_timezone: str
    horizon_days: int
    recent_days: int
    upcoming: list[Event] = Field(default_factory=list)
    recent: list[Event] = Field(default_factory=list)
    undated: list[Event] = Field(default_factory=list)


class KeyDelta(BaseModel):
    """Key-level classification of one record set against the previous snapshot."""

    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)

    @property
    def common(self) -> list[str]:
        return sorted(set(self.updated) | set(self.unchanged))

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.updated)

    def counts(self) -> dict[str, int]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "updated": len(self.updated),
            "unchanged": len(self.unchanged),
        }


class Delta(BaseModel):
    """Changes between the previous snapshot and the current run."""

    generation: str = Field(..., description="Generation the new snapshot is stored under")
    previous_generation: Optional[str] = None
    generated_at: datetime
    events: KeyDelta = Field(default_factory=KeyDelta)
    entities: KeyDelta = Field(default_factory=KeyDelta)
    complete: bool = True
    committed: bool = False


class Snapshot(BaseModel):
    """Committed Event and Entity sets, compared across runs."""

    generation: str
    committed_at: datetime
    events: list[Event] = Field(default_factory=list)
    entities: list[Entity] = Field(default_factory=list)

    def event_hashes(self) -> dict[str, str]:
        return {e.event_key: e.record_hash() for e in self.events}

    def entity_hashes(self) -> dict[str, str]:
        return {e.entity_key: e.content_hash or "" for e in self.entities}
