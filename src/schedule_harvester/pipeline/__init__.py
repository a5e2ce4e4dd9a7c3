"""Incremental harvesting pipeline.

Stages:
- DiscoveryStage: seeds -> index pages
- ExtractionStage: index pages -> events and entity seeds
- EnrichmentStage: entity detail pages -> attributes
- ViewStage: events -> upcoming/recent/undated views
- DeltaEngine: diff against the last snapshot, then commit
"""

from .delta import DeltaEngine, compute_delta
from .discovery import DiscoveryStage, conventional_next_page
from .enrichment import DETAIL_LABELS, EnrichmentStage, build_attributes, is_stale
from .extraction import ExtractionStage, normalize_record
from .orchestrator import HarvestPipeline, PipelineResult
from .summary import StageSummary, utc_now
from .views import ViewStage, build_views

__all__ = [
    "DETAIL_LABELS",
    "DeltaEngine",
    "DiscoveryStage",
    "EnrichmentStage",
    "ExtractionStage",
    "HarvestPipeline",
    "PipelineResult",
    "StageSummary",
    "ViewStage",
    "build_attributes",
    "build_views",
    "compute_delta",
    "conventional_next_page",
    "is_stale",
    "normalize_record",
    "utc_now",
]
