"""
JSON file state store.

Keeps one JSON document per concern under a state directory:
- index_pages.json   (discovery output)
- events.json        (normalized events)
- entities.json      (seeded and enriched entities)
- freshness.json     (per-entity last enrichment time)
- views.json         (time-bucketed event slices)
- delta.json         (changes since the previous snapshot)
- summaries/<stage>.json
- snapshots/CURRENT.json + snapshots/<generation>/{events,entities}.json
- raw/...            (raw page bodies, audit trail only)

Every write replaces the whole document through a temp file and os.replace,
so readers never observe a half-written file.
"""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from ..ingestion.errors import StateCorruption
from ..models.documents import Snapshot

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class StateStore:
    """Durable document store for the harvest pipeline.

    Corrupt documents are never fatal: readers get ``None`` and a warning is
    queued for the current stage summary (see ``drain_warnings``).

    Examples:
        >>> store = StateStore(Path("~/.schedule_harvester").expanduser())
        >>> doc = store.load_model(StateStore.EVENTS, EventsDocument)
        >>> store.save_model(StateStore.EVENTS, doc)
    """

    INDEX_PAGES = "index_pages.json"
    EVENTS = "events.json"
    ENTITIES = "entities.json"
    FRESHNESS = "freshness.json"
    VIEWS = "views.json"
    DELTA = "delta.json"

    SNAPSHOT_DIR = "snapshots"
    SNAPSHOT_POINTER = "CURRENT.json"

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._warnings: list[str] = []

    def path(self, name: str) -> Path:
        return self.root / name

    def exists(self, name: str) -> bool:
        return self.path(name).exists()

    # =========================================================================
    # WARNINGS
    # =========================================================================

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self._warnings.append(message)

    def drain_warnings(self) -> list[str]:
        """Return and clear warnings collected since the last drain."""
        warnings, self._warnings = self._warnings, []
        return warnings

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    def read_document(self, name: str, default: Any = None) -> Any:
        """Read a JSON document.

        Returns ``default`` when the document is missing or unreadable.
        """
        path = self.path(name)
        if not path.exists():
            return default
        try:
            return self._read_json(path)
        except StateCorruption as e:
            self._warn(f"Ignoring unreadable state document {name}: {e}")
            return default

    def write_document(self, name: str, payload: Any) -> Path:
        """Atomically replace a JSON document."""
        path = self.path(name)
        self._atomic_write(path, json.dumps(payload, ensure_ascii=False, indent=2, default=str))
        logger.debug(f"Wrote {path}")
        return path

    def load_model(self, name: str, model: type[ModelT]) -> Optional[ModelT]:
        """Read and validate a document, or None if missing or corrupt."""
        data = self.read_document(name)
        if data is None:
            return None
        try:
            return model.model_validate(data)
        except ValidationError as e:
            self._warn(f"Ignoring invalid state document {name}: {e.error_count()} validation error(s)")
            return None

    def save_model(self, name: str, document: BaseModel) -> Path:
        return self.write_document(name, document.model_dump(mode="json"))

    def write_raw(self, relative_path: str, text: str) -> Path:
        """Store a raw body for auditing."""
        path = self.root / "raw" / relative_path
        self._atomic_write(path, text)
        return path

    def write_summary(self, stage: str, payload: dict[str, Any]) -> Path:
        return self.write_document(f"summaries/{stage}.json", payload)

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def current_generation(self) -> Optional[str]:
        pointer = self.read_document(f"{self.SNAPSHOT_DIR}/{self.SNAPSHOT_POINTER}")
        if not isinstance(pointer, dict):
            return None
        generation = pointer.get("generation")
        return generation if isinstance(generation, str) and generation else None

    def load_snapshot(self) -> Optional[Snapshot]:
        """Load the committed snapshot, or None if there is no usable one."""
        generation = self.current_generation()
        if generation is None:
            return None

        base = f"{self.SNAPSHOT_DIR}/{generation}"
        pointer = self.read_document(f"{self.SNAPSHOT_DIR}/{self.SNAPSHOT_POINTER}") or {}
        events = self.read_document(f"{base}/events.json")
        entities = self.read_document(f"{base}/entities.json")
        if events is None or entities is None:
            self._warn(f"Snapshot generation {generation} is incomplete; treating as no previous state")
            return None

        try:
            return Snapshot.model_validate(
                {
                    "generation": generation,
                    "committed_at": pointer.get("committed_at"),
                    "events": events,
                    "entities": entities,
                }
            )
        except ValidationError as e:
            self._warn(f"Snapshot generation {generation} is invalid ({e.error_count()} errors); ignoring it")
            return None

    def commit_snapshot(self, snapshot: Snapshot) -> None:
        """Store a snapshot generation and make it current.

        The generation's files are written first; the pointer swap is the
        commit point. Anything that fails before the swap leaves the previous
        snapshot current.
        """
        previous = self.current_generation()
        if snapshot.generation == previous:
            # Re-committing the current generation rewrites its files and keeps its predecessor
            pointer = self.read_document(f"{self.SNAPSHOT_DIR}/{self.SNAPSHOT_POINTER}") or {}
            previous = pointer.get("previous_generation")
        base = f"{self.SNAPSHOT_DIR}/{snapshot.generation}"
        payload = snapshot.model_dump(mode="json")
        self.write_document(f"{base}/events.json", payload["events"])
        self.write_document(f"{base}/entities.json", payload["entities"])
        self.write_document(
            f"{self.SNAPSHOT_DIR}/{self.SNAPSHOT_POINTER}",
            {
                "generation": snapshot.generation,
                "previous_generation": previous,
                "committed_at": payload["committed_at"],
            },
        )
        logger.info(f"Committed snapshot generation {snapshot.generation[:12]}")
        self._prune_generations({snapshot.generation, previous})

    def _prune_generations(self, retain: set[Optional[str]]) -> None:
        """Drop every generation except the current and previous one."""
        for gen_dir in (self.root / self.SNAPSHOT_DIR).iterdir():
            if gen_dir.is_dir() and gen_dir.name not in retain:
                shutil.rmtree(gen_dir, ignore_errors=True)
                logger.debug(f"Pruned snapshot generation {gen_dir.name}")

    # =========================================================================
    # FILE HELPERS
    # =========================================================================

    @staticmethod
    def _read_json(path: Path) -> Any:
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StateCorruption(f"{path}: {e}") from e

    @staticmethod
    def _atomic_write(path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
