"""Unit tests for the enrichment stage."""

from datetime import datetime, timedelta, timezone

import pytest
from conftest import SITE, FakeFetcher, detail_page_html, transport_fetcher

from schedule_harvester.ingestion.errors import AntiBotChallenge, MissingStateError, NotFoundError
from schedule_harvester.models.documents import EntitiesDocument, FreshnessDocument
from schedule_harvester.models.records import Entity, FreshnessRecord, Section
from schedule_harvester.pipeline.enrichment import DETAIL_LABELS, EnrichmentStage, build_attributes, is_stale
from schedule_harvester.sources.kpopofficial import KpopOfficialExtractor
from schedule_harvester.storage.state_store import StateStore

NOW = datetime(2025, 12, 1, 3, 0, tzinfo=timezone.utc)
A = f"{SITE}/album/a/"
B = f"{SITE}/album/b/"
C = f"{SITE}/album/c/"


def detail(artist, album, kind="Single"):
    return detail_page_html(
        [("Artist", artist), ("Album", album), ("Type", kind), ("Release Date", "December 12, 2025")],
        title=f"{artist} - {album}",
        extra='<p><strong>Teasers:</strong></p><p><a href="https://youtube.com/watch?v=mv"><img src="/cover.jpg"></a></p>',
    )


def seed_entities(store, keys, discoverable=True):
    entities = [Entity(entity_key=k, detail_url=k, discoverable=discoverable) for k in keys]
    store.save_model(StateStore.ENTITIES, EntitiesDocument(updated_at=NOW, entities=entities))


@pytest.fixture
def make_stage(store, config, gate, clock):
    def make(fetcher, cfg=None):
        cfg = cfg or config
        return EnrichmentStage(store, fetcher, KpopOfficialExtractor(cfg.site), cfg, gate, clock)

    return make


class TestFreshness:
    """Test the refresh policy."""

    def test_never_fetched_is_stale(self):
        assert is_stale(None, NOW, 72)

    def test_freshness_law(self):
        """Test staleness at T + D - eps, T + D and T + D + eps."""
        fetched = NOW - timedelta(hours=72)
        eps = timedelta(seconds=1)
        record = FreshnessRecord(last_fetched_at=fetched)

        assert not is_stale(record, fetched + timedelta(hours=72) - eps, 72)
        assert is_stale(record, fetched + timedelta(hours=72), 72)
        assert is_stale(record, fetched + timedelta(hours=72) + eps, 72)

    def test_force(self):
        assert is_stale(FreshnessRecord(last_fetched_at=NOW), NOW, 72, force=True)


class TestBuildAttributes:
    """Test section to attribute mapping."""

    def test_mapping(self):
        sections = {
            "Artist": Section(text="ACME", links=["https://instagram.com/acme"]),
            "Title": Section(text="New Single"),
            "Type": Section(text="Single"),
            "Release Date": Section(text="December 12", images=["https://img/1.jpg", "https://img/2.jpg"]),
            "Genre": Section(text=""),
        }

        attributes = build_attributes(sections, page_title="fallback", max_links=5, max_media=1)

        assert attributes.name == "New Single"
        assert attributes.group == "ACME"
        assert attributes.classification == "Single"
        assert attributes.release_metadata == {"Release Date": "December 12"}
        assert attributes.links == ["https://instagram.com/acme"]
        assert attributes.media == ["https://img/1.jpg"]

    def test_name_falls_back_to_page_title(self):
        attributes = build_attributes({"Artist": Section(text="ACME")}, page_title="ACME - Comeback")

        assert attributes.name == "ACME - Comeback"

    def test_hash_is_stable(self):
        sections = {"Artist": Section(text="ACME")}

        assert build_attributes(sections).compute_hash() == build_attributes(dict(sections)).compute_hash()

    def test_detail_labels_are_ordered_and_unique(self):
        assert len(DETAIL_LABELS) == len(set(DETAIL_LABELS))
        assert DETAIL_LABELS[0] == "Artist"


class TestEnrichmentStage:
    """Test the enrichment worker pool."""

    def test_requires_entities(self, make_stage):
        with pytest.raises(MissingStateError):
            make_stage(FakeFetcher()).run()

    def test_enriches_and_records_freshness(self, make_stage, store):
        seed_entities(store, [A, B])
        fetcher = FakeFetcher({A: detail("ACME", "One"), B: detail("BETA", "Two", "EP")})

        summary = make_stage(fetcher).run()

        entities = store.load_model(StateStore.ENTITIES, EntitiesDocument).by_key()
        assert entities[A].attributes.group == "ACME"
        assert entities[A].attributes.name == "One"
        assert entities[B].attributes.classification == "EP"
        assert entities[A].attributes.release_metadata == {"Release Date": "December 12, 2025"}
        assert entities[A].attributes.links == ["https://youtube.com/watch?v=mv"]
        assert entities[A].attributes.media == [f"{SITE}/cover.jpg"]
        assert entities[A].content_hash == entities[A].attributes.compute_hash()
        assert entities[A].fetched_at == NOW

        freshness = store.load_model(StateStore.FRESHNESS, FreshnessDocument)
        assert set(freshness.records) == {A, B}
        assert summary.counts["enriched_ok"] == 2
        assert summary.counts["enriched_failed"] == 0

    def test_fresh_entities_skipped(self, make_stage, store):
        seed_entities(store, [A, B])
        store.save_model(
            StateStore.FRESHNESS,
            FreshnessDocument(updated_at=NOW, records={A: FreshnessRecord(last_fetched_at=NOW - timedelta(hours=1))}),
        )
        fetcher = FakeFetcher({A: detail("ACME", "One"), B: detail("BETA", "Two")})

        summary = make_stage(fetcher).run()

        assert fetcher.calls == [B]
        assert summary.counts["skipped_fresh"] == 1

    def test_force_refetches_fresh_entities(self, make_stage, store):
        seed_entities(store, [A])
        store.save_model(
            StateStore.FRESHNESS,
            FreshnessDocument(updated_at=NOW, records={A: FreshnessRecord(last_fetched_at=NOW)}),
        )
        fetcher = FakeFetcher({A: detail("ACME", "One")})

        make_stage(fetcher).run(force=True)

        assert fetcher.calls == [A]

    def test_only_discoverable_and_limit(self, make_stage, store):
        store.save_model(
            StateStore.ENTITIES,
            EntitiesDocument(
                updated_at=NOW,
                entities=[
                    Entity(entity_key=A, detail_url=A, discoverable=False),
                    Entity(entity_key=B, detail_url=B),
                    Entity(entity_key=C, detail_url=C),
                ],
            ),
        )
        fetcher = FakeFetcher({B: detail("B", "b"), C: detail("C", "c")})

        summary = make_stage(fetcher).run(limit=1, concurrency=1)

        assert fetcher.calls == [B]
        assert summary.counts["candidates"] == 2

    def test_challenge_short_circuits(self, make_stage, store):
        """Test that a challenge stops claiming further entities."""
        seed_entities(store, [A, B, C])
        fetcher = FakeFetcher(
            {A: AntiBotChallenge(A, "challenge", 403), B: detail("B", "b"), C: detail("C", "c")}
        )

        summary = make_stage(fetcher).run(concurrency=1)

        assert fetcher.calls == [A]
        assert summary.blocked is True
        assert summary.counts["enriched_ok"] == 0
        assert summary.counts["not_attempted"] == 2
        assert summary.failures[0]["kind"] == "challenge"

    def test_challenge_keeps_completed_results(self, make_stage, store):
        seed_entities(store, [A, B, C])
        fetcher = FakeFetcher({A: detail("A", "a"), B: AntiBotChallenge(B, "challenge", 503), C: detail("C", "c")})

        summary = make_stage(fetcher).run(concurrency=1)

        entities = store.load_model(StateStore.ENTITIES, EntitiesDocument).by_key()
        assert entities[A].is_enriched
        assert not entities[C].is_enriched
        assert summary.blocked is True
        assert fetcher.calls == [A, B]

    def test_not_found_does_not_stop_batch(self, make_stage, store):
        """Test that a detail 404 is a per-entity failure."""
        seed_entities(store, [A, B])
        fetcher = FakeFetcher({A: NotFoundError(A, "HTTP 404", 404), B: detail("B", "b")})

        summary = make_stage(fetcher).run(concurrency=1)

        entities = store.load_model(StateStore.ENTITIES, EntitiesDocument).by_key()
        assert summary.blocked is False
        assert summary.counts["enriched_ok"] == 1
        assert summary.counts["enriched_failed"] == 1
        assert summary.failures[0]["kind"] == "not_found"
        assert entities[A].last_error.startswith("not_found")
        assert entities[B].is_enriched

    def test_parallel_workers_enrich_everything(self, make_stage, store):
        keys = [f"{SITE}/album/{i:02d}/" for i in range(12)]
        seed_entities(store, keys)
        fetcher = FakeFetcher({k: detail(k, k) for k in keys})

        summary = make_stage(fetcher).run(concurrency=4)

        assert sorted(fetcher.calls) == keys
        assert summary.counts["enriched_ok"] == 12
        assert summary.counts["workers"] == 4

    def test_pacing_clamps_workers(self, make_stage, store, config):
        seed_entities(store, [A])
        cfg = config.model_copy(deep=True)
        cfg.pacing.enabled = True
        cfg.pacing.min_delay = 0.0
        cfg.pacing.max_delay = 0.0
        cfg.pacing.max_workers = 2

        summary = make_stage(FakeFetcher({A: detail("A", "a")}), cfg).run(concurrency=8)

        assert summary.counts["workers"] == 2

    def test_raw_detail_saved(self, make_stage, store):
        seed_entities(store, [A])

        make_stage(FakeFetcher({A: detail("A", "a")})).run()

        assert len(list((store.root / "raw" / "detail").iterdir())) == 1

    def test_redirect_loop_is_a_per_entity_failure(self, make_stage, store):
        """Test that a redirect loop on one detail page does not lose the rest of the batch."""
        seed_entities(store, [A, B])
        fetcher = transport_fetcher({B: detail("BETA", "Two")}, redirect_loops=(A,))

        summary = make_stage(fetcher).run(concurrency=1)

        entities = store.load_model(StateStore.ENTITIES, EntitiesDocument).by_key()
        assert summary.blocked is False
        assert summary.counts["enriched_ok"] == 1
        assert summary.counts["enriched_failed"] == 1
        assert summary.failures[0]["kind"] == "terminal"
        assert entities[A].last_error.startswith("terminal")
        assert entities[B].attributes.group == "BETA"
