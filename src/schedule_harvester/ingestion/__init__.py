"""Ingestion layer for the schedule source.

Provides:
- PolitenessFetcher: httpx client with retry/backoff and challenge detection
- PacingGate: shared, cooperative inter-request pacing
- HarvestConfig: configuration models for a harvest run
"""

from .client import PolitenessFetcher
from .config import (
    FetchPolicy,
    HarvestConfig,
    PacingConfig,
    load_harvest_config,
)
from .errors import (
    AntiBotChallenge,
    FetchError,
    MissingStateError,
    NotFoundError,
    StateCorruption,
    TerminalFetchError,
    TransientFetchError,
)
from .pacing import PacingGate

__all__ = [
    "AntiBotChallenge",
    "FetchError",
    "FetchPolicy",
    "HarvestConfig",
    "MissingStateError",
    "NotFoundError",
    "PacingConfig",
    "PacingGate",
    "PolitenessFetcher",
    "StateCorruption",
    "TerminalFetchError",
    "TransientFetchError",
    "load_harvest_config",
]
