"""Time-bucketed views over the event set."""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from ..ingestion.config import HarvestConfig
from ..ingestion.errors import MissingStateError
from ..models.documents import EventsDocument, Views
from ..models.records import Event
from ..storage.state_store import StateStore
from .summary import Clock, StageSummary, utc_now

logger = logging.getLogger(__name__)


def local_date(event: Event, tz: ZoneInfo) -> Optional[date]:
    """Calendar date of an event in the reference zone.

    Timed events are converted to the reference zone first. Date-only events
    keep their calendar date.
    """
    if event.event_date is None:
        return None
    if event.event_time is None:
        return event.event_date
    return event.starts_at().astimezone(tz).date()


def _instant_key(event: Event, tz: ZoneInfo) -> tuple:
    starts = event.starts_at()
    if event.event_time is None:
        starts = datetime.combine(event.event_date, datetime.min.time(), tzinfo=tz)
    return (starts, event.event_key)


def build_views(
    events: Iterable[Event],
    now: datetime,
    horizon_days: int,
    recent_days: int,
    tz: str,
) -> Views:
    """Partition events into upcoming, recent and undated slices.

    Args:
        events: Event set
        now: Reference instant (timezone-aware)
        horizon_days: Upcoming window length, inclusive of today
        recent_days: Lookback window length, exclusive of today
        tz: Reference IANA zone

    Returns:
        Views with each slice sorted deterministically
    """
    zone = ZoneInfo(tz)
    today = now.astimezone(zone).date()
    horizon_end = today + timedelta(days=horizon_days)
    recent_start = today - timedelta(days=recent_days)

    upcoming: list[Event] = []
    recent: list[Event] = []
    undated: list[Event] = []
    for event in events:
        day = local_date(event, zone)
        if day is None:
            undated.append(event)
        elif today <= day <= horizon_end:
            upcoming.append(event)
        elif recent_start <= day < today:
            recent.append(event)

    return Views(
        generated_at=now,
        reference_timezone=tz,
        horizon_days=horizon_days,
        recent_days=recent_days,
        upcoming=sorted(upcoming, key=lambda e: _instant_key(e, zone)),
        recent=sorted(recent, key=lambda e: _instant_key(e, zone)),
        undated=sorted(undated, key=lambda e: (e.raw_text, e.event_key)),
    )


class ViewStage:
    """Materialize views.json from events.json."""

    name = "views"

    def __init__(self, store: StateStore, config: HarvestConfig, clock: Clock = utc_now):
        self.store = store
        self.config = config
        self.clock = clock

    def run(self, horizon_days: Optional[int] = None, recent_days: Optional[int] = None) -> StageSummary:
        summary = StageSummary(stage=self.name, started_at=self.clock())
        events_doc = self.store.load_model(StateStore.EVENTS, EventsDocument)
        if events_doc is None:
            raise MissingStateError(f"{StateStore.EVENTS} not found. Run events first.")

        views = build_views(
            events_doc.events,
            now=summary.started_at,
            horizon_days=self.config.views.horizon_days if horizon_days is None else horizon_days,
            recent_days=self.config.views.recent_days if recent_days is None else recent_days,
            tz=self.config.extraction.source_timezone,
        )
        self.store.save_model(StateStore.VIEWS, views)

        summary.counts.update(
            {
                "upcoming": len(views.upcoming),
                "recent": len(views.recent),
                "undated": len(views.undated),
                "outside_windows": len(events_doc.events)
                - len(views.upcoming)
                - len(views.recent)
                - len(views.undated),
            }
        )
        logger.info(f"Views: {len(views.upcoming)} upcoming, {len(views.recent)} recent, {len(views.undated)} undated")
        return summary.finish(self.clock(), self.store.drain_warnings())
