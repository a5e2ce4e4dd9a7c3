"""Unit tests for the view builder."""

from datetime import date, datetime, timezone

import pytest
from conftest import SITE

from schedule_harvester.ingestion.errors import MissingStateError
from schedule_harvester.models.documents import EventsDocument, Views
from schedule_harvester.models.records import Event, EventKind
from schedule_harvester.pipeline.views import ViewStage, build_views
from schedule_harvester.storage.state_store import StateStore

NOW = datetime(2025, 12, 1, 3, 0, tzinfo=timezone.utc)  # 2025-12-01 12:00 KST
SEOUL = "Asia/Seoul"


def event(slug, day=None, time=None, tz=SEOUL, raw="", kind=EventKind.PRIMARY_RELEASE):
    if day is None:
        kind = EventKind.UNKNOWN
    return Event.create(f"{SITE}/album/{slug}/", kind, day, time, tz, raw or slug)


class TestBuildViews:
    """Test bucketing relative to the reference date."""

    def test_buckets(self):
        events = [
            event("today", date(2025, 12, 1)),
            event("horizon-edge", date(2025, 12, 31)),
            event("beyond", date(2026, 1, 1)),
            event("yesterday", date(2025, 11, 30)),
            event("recent-edge", date(2025, 11, 1)),
            event("too-old", date(2025, 10, 31)),
            event("tba", raw="Coming soon"),
        ]

        views = build_views(events, NOW, horizon_days=30, recent_days=30, tz=SEOUL)

        assert [e.raw_text for e in views.upcoming] == ["today", "horizon-edge"]
        assert [e.raw_text for e in views.recent] == ["recent-edge", "yesterday"]
        assert [e.raw_text for e in views.undated] == ["Coming soon"]

    def test_today_is_reference_zone_date(self):
        """Test that 'today' is taken in the reference zone, not UTC."""
        late_utc = datetime(2025, 11, 30, 16, 0, tzinfo=timezone.utc)  # already Dec 1 in Seoul

        views = build_views([event("dec1", date(2025, 12, 1))], late_utc, 0, 0, SEOUL)

        assert len(views.upcoming) == 1

    def test_timed_event_converted_to_reference_zone(self):
        """Test that Nov 30 8PM in New York is Dec 1 in Seoul."""
        ny = event("ny", date(2025, 11, 30), "20:00", tz="America/New_York")

        views = build_views([ny], NOW, 10, 10, SEOUL)

        assert views.upcoming == [ny]
        assert views.recent == []

    def test_upcoming_sorted_by_instant_then_key(self):
        late = event("late", date(2025, 12, 5), "19:00")
        early = event("early", date(2025, 12, 5), "09:00")
        date_only = event("date-only", date(2025, 12, 5))

        views = build_views([late, early, date_only], NOW, 30, 0, SEOUL)

        assert views.upcoming == [date_only, early, late]

    def test_undated_sorted_by_raw_text(self):
        events = [event("b", raw="TBA"), event("a", raw="Coming soon")]

        views = build_views(events, NOW, 30, 30, SEOUL)

        assert [e.raw_text for e in views.undated] == ["Coming soon", "TBA"]


class TestViewStage:
    """Test views.json materialization."""

    def test_requires_events(self, store, config, clock):
        with pytest.raises(MissingStateError):
            ViewStage(store, config, clock).run()

    def test_writes_views(self, store, config, clock):
        store.save_model(
            StateStore.EVENTS,
            EventsDocument(generated_at=NOW, events=[event("soon", date(2025, 12, 3)), event("tba")]),
        )

        summary = ViewStage(store, config, clock).run(horizon_days=7)

        views = store.load_model(StateStore.VIEWS, Views)
        assert views.horizon_days == 7
        assert views.reference_timezone == SEOUL
        assert summary.counts["upcoming"] == 1
        assert summary.counts["undated"] == 1
