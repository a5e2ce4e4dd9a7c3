"""
Harvested record models.

Pydantic models for the records flowing through the pipeline: raw record
fragments returned by an extractor, normalized events, and the entities they
belong to.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator, model_validator

from ..hashing import content_hash, sha256_hexdigest

DEFAULT_TIMEZONE = "Asia/Seoul"


class EventKind(str, Enum):
    """Kinds of dated occurrences found in schedule listings."""

    PRIMARY_RELEASE = "primary-release"
    PRE_RELEASE = "pre-release"
    SUB_RELEASE = "sub-release"
    UNKNOWN = "unknown"


def make_event_key(
    entity_key: str,
    event_kind: EventKind | str,
    event_date: Optional[date],
    event_time: Optional[str],
    event_tz: Optional[str],
    raw_text: str = "",
) -> str:
    """Stable fingerprint for one logical event.

    Undated events fall back to their raw text so two different undated
    announcements for the same entity do not collide.
    """
    kind = event_kind.value if isinstance(event_kind, EventKind) else str(event_kind)
    when = event_date.isoformat() if event_date else f"TBD:{raw_text}"
    return sha256_hexdigest("|".join([entity_key, kind, when, event_time or "", event_tz or ""]))


class RawRecord(BaseModel):
    """One record fragment as located by an extractor on an index page."""

    detail_url: str = Field(..., description="Canonical URL of the entity detail page")
    raw_date_text: str = Field("", description="Unparsed date/time text blob")
    raw_aux_lines: list[str] = Field(
        default_factory=list,
        description="Ordered auxiliary lines (candidate author/title fields)",
    )
    raw_lines: list[str] = Field(default_factory=list, description="Card text lines, for provenance")


class Event(BaseModel):
    """A dated (or undated) occurrence tied to one entity."""

    event_key: str = Field(..., description="Stable fingerprint")
    entity_key: str = Field(..., description="Owning entity key (detail URL)")
    event_kind: EventKind = Field(EventKind.UNKNOWN)
    event_date: Optional[date] = Field(None, description="Local calendar date")
    event_time: Optional[str] = Field(None, description="Local time of day, HH:MM")
    event_tz: str = Field(DEFAULT_TIMEZONE, description="IANA zone name")
    raw_text: str = Field("", description="Original unparsed text")
    sources: list[str] = Field(
        default_factory=list,
        description="Index pages that contributed this event, in order of contribution",
    )

    @field_validator("event_time")
    @classmethod
    def validate_event_time(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        hh, _, mm = v.partition(":")
        if not (hh.isdigit() and mm.isdigit() and len(hh) == 2 and len(mm) == 2):
            raise ValueError(f"event_time must be HH:MM, got {v!r}")
        if int(hh) > 23 or int(mm) > 59:
            raise ValueError(f"event_time out of range: {v!r}")
        return v

    @model_validator(mode="after")
    def check_dated_invariants(self) -> "Event":
        if self.event_date is not None and not self.event_tz:
            raise ValueError("a dated event must carry a timezone")
        if self.event_date is None and self.event_time is not None:
            raise ValueError("an undated event cannot carry a time")
        return self

    @classmethod
    def create(
        cls,
        entity_key: str,
        event_kind: EventKind,
        event_date: Optional[date],
        event_time: Optional[str],
        event_tz: str,
        raw_text: str,
        source: Optional[str] = None,
    ) -> "Event":
        """Build an event and derive its key."""
        return cls(
            event_key=make_event_key(entity_key, event_kind, event_date, event_time, event_tz, raw_text),
            entity_key=entity_key,
            event_kind=event_kind,
            event_date=event_date,
            event_time=event_time,
            event_tz=event_tz,
            raw_text=raw_text,
            sources=[source] if source else [],
        )

    @property
    def is_dated(self) -> bool:
        return self.event_date is not None

    def add_source(self, page_url: str) -> None:
        """Record provenance; re-adding a known page is a no-op."""
        if page_url not in self.sources:
            self.sources.append(page_url)

    def starts_at(self) -> Optional[datetime]:
        """Timezone-aware start instant, or None for undated events.

        Date-only events start at local midnight.
        """
        if self.event_date is None:
            return None
        hour, minute = 0, 0
        if self.event_time:
            hour, minute = (int(p) for p in self.event_time.split(":"))
        return datetime(
            self.event_date.year,
            self.event_date.month,
            self.event_date.day,
            hour,
            minute,
            tzinfo=ZoneInfo(self.event_tz),
        )

    def record_hash(self) -> str:
        """Hash of the full normalized record."""
        return content_hash(self.model_dump(mode="json"))


class EntitySeed(BaseModel):
    """Shallow entity information observed on an index page."""

    entity_key: str
    detail_url: str
    artist_raw: Optional[str] = None
    info_raw: Optional[str] = None
    first_seen_page: Optional[str] = None
    raw_lines: list[str] = Field(default_factory=list)


class EntityAttributes(BaseModel):
    """Enriched attributes parsed from an entity detail page."""

    name: Optional[str] = Field(None, description="Display name (release title)")
    group: Optional[str] = Field(None, description="Group or author")
    classification: Optional[str] = Field(None, description="Release type label")
    release_metadata: dict[str, str] = Field(
        default_factory=dict,
        description="Free-form labelled release metadata",
    )
    links: list[str] = Field(default_factory=list, description="Related links")
    media: list[str] = Field(default_factory=list, description="Media references")

    def compute_hash(self) -> str:
        """Content hash over a field-sorted projection of the attributes."""
        return content_hash(self.model_dump(mode="json"))


class Entity(BaseModel):
    """The subject of one or more events.

    Seed fields are written by extraction; ``attributes``, ``content_hash``,
    ``fetched_at`` and ``last_error`` are written by enrichment only.
    """

    entity_key: str = Field(..., description="Canonical detail URL")
    detail_url: str

    # Seed fields
    artist_raw: Optional[str] = None
    info_raw: Optional[str] = None
    first_seen_page: Optional[str] = None
    raw_lines: list[str] = Field(default_factory=list)
    discoverable: bool = Field(True, description="Observed by the latest extraction run")
    last_seen_at: Optional[datetime] = None

    # Enrichment fields
    attributes: Optional[EntityAttributes] = None
    content_hash: Optional[str] = None
    fetched_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @classmethod
    def from_seed(cls, seed: EntitySeed, seen_at: Optional[datetime] = None) -> "Entity":
        return cls(
            entity_key=seed.entity_key,
            detail_url=seed.detail_url,
            artist_raw=seed.artist_raw,
            info_raw=seed.info_raw,
            first_seen_page=seed.first_seen_page,
            raw_lines=list(seed.raw_lines),
            discoverable=True,
            last_seen_at=seen_at,
        )

    def apply_seed(self, seed: EntitySeed, seen_at: Optional[datetime] = None) -> None:
        """Refresh seed fields from a new observation, keeping enrichment fields."""
        self.artist_raw = seed.artist_raw or self.artist_raw
        self.info_raw = seed.info_raw or self.info_raw
        self.first_seen_page = self.first_seen_page or seed.first_seen_page
        self.raw_lines = list(seed.raw_lines) or self.raw_lines
        self.discoverable = True
        self.last_seen_at = seen_at

    @property
    def is_enriched(self) -> bool:
        return self.attributes is not None


class Section(BaseModel):
    """Labelled window of a detail document."""

    text: str = ""
    links: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)


class FreshnessRecord(BaseModel):
    """Last successful enrichment time for one entity."""

    last_fetched_at: datetime
