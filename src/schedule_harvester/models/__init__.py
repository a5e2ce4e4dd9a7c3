"""Data models for harvested records and persisted state documents.

Contains two groups of models:
1. Records (records.py) - raw fragments, events, entities, sections
2. Documents (documents.py) - the JSON documents kept in the state directory
"""

from .documents import (
    Delta,
    DiscoveryDocument,
    EntitiesDocument,
    EventsDocument,
    FreshnessDocument,
    KeyDelta,
    Snapshot,
    Views,
)
from .records import (
    DEFAULT_TIMEZONE,
    Entity,
    EntityAttributes,
    EntitySeed,
    Event,
    EventKind,
    FreshnessRecord,
    RawRecord,
    Section,
    make_event_key,
)

__all__ = [
    "DEFAULT_TIMEZONE",
    "Delta",
    "DiscoveryDocument",
    "EntitiesDocument",
    "Entity",
    "EntityAttributes",
    "EntitySeed",
    "Event",
    "EventKind",
    "EventsDocument",
    "FreshnessDocument",
    "FreshnessRecord",
    "KeyDelta",
    "RawRecord",
    "Section",
    "Snapshot",
    "Views",
    "make_event_key",
]
