"""Per-stage run summaries."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..ingestion.errors import FetchError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StageSummary:
    """Results from one stage execution."""

    stage: str
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None

    # Counts
    counts: dict[str, int] = field(default_factory=dict)

    # Outcome
    blocked: bool = False
    warnings: list[str] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return (utc_now() - self.started_at).total_seconds()

    def count(self, name: str, n: int = 1) -> None:
        self.counts[name] = self.counts.get(name, 0) + n

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def fail(self, key: str, error: FetchError) -> None:
        """Record a per-item failure."""
        self.failures.append(
            {
                "key": key,
                "kind": error.kind,
                "status_code": error.status_code,
                "message": str(error),
            }
        )

    def finish(self, finished_at: datetime, warnings: list[str] | None = None) -> "StageSummary":
        """Close the summary, folding in state store warnings."""
        self.finished_at = finished_at
        if warnings:
            self.warnings.extend(warnings)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "counts": dict(sorted(self.counts.items())),
            "blocked": self.blocked,
            "warnings": list(self.warnings),
            "failures": list(self.failures),
            **self.details,
        }
