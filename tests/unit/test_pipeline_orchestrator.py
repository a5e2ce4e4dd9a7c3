"""Unit tests for pipeline orchestrator.

Tests the HarvestPipeline class that runs discovery, extraction, enrichment,
views and delta against one state directory.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest
from conftest import CATEGORY_URL, SITE, FakeFetcher, card_html, detail_page_html, index_page_html

from schedule_harvester.ingestion.errors import AntiBotChallenge
from schedule_harvester.models.documents import Delta, EntitiesDocument, EventsDocument, Views
from schedule_harvester.pipeline.orchestrator import HarvestPipeline, PipelineResult
from schedule_harvester.pipeline.summary import StageSummary
from schedule_harvester.storage.state_store import StateStore

DEC = f"{SITE}/kpop-comeback-schedule-december-2025/"
ACME = f"{SITE}/album/acme-new-single/"
BETA = f"{SITE}/album/beta-mini/"


def site_responses() -> dict:
    return {
        CATEGORY_URL: index_page_html("Kpop Comeback Schedule", [], links=[DEC]),
        DEC: index_page_html(
            "December 2025 Kpop Comeback Schedule",
            [
                card_html("acme-new-single", "December 12, 2025 7PM KST", "ACME", "New Single"),
                card_html("beta-mini", "Coming soon", "BETA", "Mini Album"),
            ],
        ),
        ACME: detail_page_html([("Artist", "ACME"), ("Album", "New Single"), ("Type", "Single")]),
        BETA: detail_page_html([("Artist", "BETA"), ("Album", "Mini"), ("Type", "EP")]),
    }


@pytest.fixture
def make_pipeline(config, store, clock):
    def make(fetcher):
        return HarvestPipeline(config, store=store, fetcher=fetcher, clock=clock, sleep=lambda seconds: None)

    return make


class TestPipelineResult:
    """Test PipelineResult dataclass."""

    def test_initial_values(self, fixed_now):
        """Test initial result values."""
        result = PipelineResult(started_at=fixed_now)

        assert result.stages == []
        assert result.skipped == []
        assert result.blocked is False

    def test_blocked_if_any_stage_blocked(self, fixed_now):
        result = PipelineResult(started_at=fixed_now)
        result.stages.append(StageSummary(stage="discover", started_at=fixed_now))
        result.stages.append(StageSummary(stage="extract", started_at=fixed_now, blocked=True))

        assert result.blocked is True

    def test_to_dict(self, fixed_now):
        result = PipelineResult(started_at=fixed_now, finished_at=fixed_now + timedelta(seconds=2))
        result.stages.append(StageSummary(stage="discover", started_at=fixed_now))

        data = result.to_dict()

        assert data["stage"] == "run"
        assert data["duration_seconds"] == 2.0
        assert list(data["stages"]) == ["discover"]


class TestHarvestPipeline:
    """Test stage sequencing."""

    def test_full_run(self, make_pipeline, store):
        fetcher = FakeFetcher(site_responses())

        with make_pipeline(fetcher) as pipeline:
            result = pipeline.run()

        assert [s.stage for s in result.stages] == ["discover", "extract", "enrich", "views", "delta"]
        assert result.skipped == []
        assert result.blocked is False

        events = store.load_model(StateStore.EVENTS, EventsDocument)
        assert events.complete is True
        assert {e.entity_key for e in events.events} == {ACME, BETA}

        entities = store.load_model(StateStore.ENTITIES, EntitiesDocument).by_key()
        assert entities[ACME].attributes.group == "ACME"
        assert entities[BETA].attributes.classification == "EP"

        views = store.load_model(StateStore.VIEWS, Views)
        assert [e.entity_key for e in views.upcoming] == [ACME]
        assert [e.entity_key for e in views.undated] == [BETA]

        delta = store.load_model(StateStore.DELTA, Delta)
        assert len(delta.events.added) == 2
        assert delta.committed is True

        for stage in ("discover", "extract", "enrich", "views", "delta", "run"):
            assert (store.root / "summaries" / f"{stage}.json").exists()

    def test_second_run_is_unchanged(self, make_pipeline, store):
        """Test that re-running over the same source reports no changes."""
        with make_pipeline(FakeFetcher(site_responses())) as pipeline:
            pipeline.run()
        with make_pipeline(FakeFetcher(site_responses())) as pipeline:
            result = pipeline.run()

        delta_summary = next(s for s in result.stages if s.stage == "delta")
        assert delta_summary.counts["events_added"] == 0
        assert delta_summary.counts["events_unchanged"] == 2
        assert delta_summary.counts["entities_unchanged"] == 2

    def test_no_enrich(self, make_pipeline):
        fetcher = FakeFetcher(site_responses())

        with make_pipeline(fetcher) as pipeline:
            result = pipeline.run(enrich=False)

        assert result.skipped == ["enrich"]
        assert ACME not in fetcher.calls

    def test_blocked_on_first_run_skips_everything(self, make_pipeline, store):
        """Test that a challenge before any extraction leaves no events to view."""
        fetcher = FakeFetcher({CATEGORY_URL: AntiBotChallenge(CATEGORY_URL, "challenge", 403)})

        with make_pipeline(fetcher) as pipeline:
            result = pipeline.run()

        assert result.blocked is True
        assert [s.stage for s in result.stages] == ["discover"]
        assert result.skipped == ["extract", "enrich", "views", "delta"]
        assert not store.exists(StateStore.EVENTS)

        run_summary = json.loads((store.root / "summaries" / "run.json").read_text())
        assert run_summary["blocked"] is True

    def test_blocked_after_previous_run_keeps_state(self, make_pipeline, store):
        """Test that views and delta still run over the previous extraction."""
        with make_pipeline(FakeFetcher(site_responses())) as pipeline:
            pipeline.run()

        responses = site_responses()
        responses[DEC] = AntiBotChallenge(DEC, "challenge", 503)
        with make_pipeline(FakeFetcher(responses)) as pipeline:
            result = pipeline.run()

        assert result.blocked is True
        assert result.skipped == ["enrich"]
        assert [s.stage for s in result.stages] == ["discover", "extract", "views", "delta"]

        extract_summary = result.stages[1]
        assert extract_summary.counts["pages_parsed"] == 0
        assert any("keeping previous events" in w for w in extract_summary.warnings)

        delta_summary = result.stages[-1]
        assert delta_summary.counts["events_unchanged"] == 2
        assert delta_summary.counts["events_removed"] == 0


class TestSingleStages:
    """Test running stages one at a time."""

    def test_stage_summary_written(self, make_pipeline, store):
        with make_pipeline(FakeFetcher(site_responses())) as pipeline:
            summary = pipeline.discover()

        written = json.loads((store.root / "summaries" / "discover.json").read_text())
        assert written["counts"]["discovered"] == summary.counts["discovered"] == 1

    def test_started_at_comes_from_clock(self, make_pipeline, fixed_now):
        with make_pipeline(FakeFetcher(site_responses())) as pipeline:
            summary = pipeline.discover()

        assert summary.started_at == fixed_now
        assert summary.started_at.tzinfo == timezone.utc
        assert isinstance(summary.started_at, datetime)
