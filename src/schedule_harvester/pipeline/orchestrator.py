"""Pipeline orchestrator for incremental schedule harvesting.

Orchestrates the flow:
    Discovery → Extraction → Enrichment → Views → Delta

Each stage reads the previous stage's output from the state store, so any
stage can be re-run on its own. Every stage writes summaries/<stage>.json.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..ingestion.client import PolitenessFetcher
from ..ingestion.config import HarvestConfig
from ..ingestion.pacing import PacingGate
from ..sources.base import Extractor
from ..sources.kpopofficial import KpopOfficialExtractor
from ..storage.state_store import StateStore
from .delta import DeltaEngine
from .discovery import DiscoveryStage
from .enrichment import EnrichmentStage
from .extraction import ExtractionStage
from .summary import Clock, StageSummary, utc_now
from .views import ViewStage

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Results from a full pipeline run."""

    started_at: datetime
    finished_at: datetime | None = None
    stages: list[StageSummary] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return any(s.blocked for s in self.stages)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return (utc_now() - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": "run",
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "blocked": self.blocked,
            "skipped": list(self.skipped),
            "stages": {s.stage: s.to_dict() for s in self.stages},
        }


class HarvestPipeline:
    """Wires the fetcher, pacing gate, extractor and state store into stages.

    Usage:
        >>> with HarvestPipeline(HarvestConfig.from_env()) as pipeline:
        ...     result = pipeline.run()
        ...     print(result.blocked)
    """

    def __init__(
        self,
        config: HarvestConfig,
        store: Optional[StateStore] = None,
        fetcher: Optional[PolitenessFetcher] = None,
        extractor: Optional[Extractor] = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the pipeline.

        Args:
            config: Harvest configuration
            store: State store (created under config.state_dir if None)
            fetcher: Fetcher (a browser-like httpx fetcher if None)
            extractor: Source extractor (kpopofficial.com if None)
            clock: Returns the current timezone-aware instant
            sleep: Sleep function for pacing and retry backoff
        """
        self.config = config
        self.clock = clock
        self.store = store or StateStore(config.state_dir)
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or PolitenessFetcher(config.fetch, sleep=sleep)
        self.extractor = extractor or KpopOfficialExtractor(config.site)
        self.gate = PacingGate(config.pacing, sleep=sleep)

        self.discovery = DiscoveryStage(self.store, self.fetcher, self.extractor, config, self.gate, clock)
        self.extraction = ExtractionStage(self.store, self.fetcher, self.extractor, config, self.gate, clock)
        self.enrichment = EnrichmentStage(self.store, self.fetcher, self.extractor, config, self.gate, clock)
        self.view_stage = ViewStage(self.store, config, clock)
        self.delta_engine = DeltaEngine(self.store, clock)

    def close(self) -> None:
        if self._owns_fetcher:
            self.fetcher.close()

    def __enter__(self) -> "HarvestPipeline":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _record(self, summary: StageSummary) -> StageSummary:
        self.store.write_summary(summary.stage, summary.to_dict())
        logger.info(
            f"Stage {summary.stage} finished in {summary.duration_seconds:.1f}s "
            f"(blocked={summary.blocked}, warnings={len(summary.warnings)}, failures={len(summary.failures)})"
        )
        return summary

    # =========================================================================
    # SINGLE STAGES
    # =========================================================================

    def discover(self, max_pages: Optional[int] = None) -> StageSummary:
        return self._record(self.discovery.run(max_pages=max_pages))

    def extract(self, max_index_pages: Optional[int] = None) -> StageSummary:
        return self._record(self.extraction.run(max_index_pages=max_index_pages))

    def enrich(
        self,
        concurrency: Optional[int] = None,
        force: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> StageSummary:
        return self._record(self.enrichment.run(concurrency=concurrency, force=force, limit=limit))

    def views(self, horizon_days: Optional[int] = None, recent_days: Optional[int] = None) -> StageSummary:
        return self._record(self.view_stage.run(horizon_days=horizon_days, recent_days=recent_days))

    def delta(self, allow_partial: bool = False) -> StageSummary:
        return self._record(self.delta_engine.run(allow_partial=allow_partial))

    # =========================================================================
    # FULL RUN
    # =========================================================================

    def run(
        self,
        max_pages: Optional[int] = None,
        max_index_pages: Optional[int] = None,
        enrich: bool = True,
        concurrency: Optional[int] = None,
        force: Optional[bool] = None,
        limit: Optional[int] = None,
        horizon_days: Optional[int] = None,
        recent_days: Optional[int] = None,
        allow_partial: bool = False,
    ) -> PipelineResult:
        """Run every stage in order.

        Once a stage reports a challenge, the remaining network stages are
        skipped; views and delta still run on whatever state exists.
        """
        result = PipelineResult(started_at=self.clock())

        result.stages.append(self.discover(max_pages=max_pages))

        if result.blocked:
            result.skipped.append(self.extraction.name)
        else:
            result.stages.append(self.extract(max_index_pages=max_index_pages))

        if not enrich or result.blocked:
            result.skipped.append(self.enrichment.name)
        else:
            result.stages.append(self.enrich(concurrency=concurrency, force=force, limit=limit))

        if self.store.exists(StateStore.EVENTS):
            result.stages.append(self.views(horizon_days=horizon_days, recent_days=recent_days))
            result.stages.append(self.delta(allow_partial=allow_partial))
        else:
            # Blocked before any extraction ever succeeded
            result.skipped.extend([self.view_stage.name, self.delta_engine.name])

        result.finished_at = self.clock()
        self.store.write_summary("run", result.to_dict())
        return result
