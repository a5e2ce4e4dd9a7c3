"""Canonical JSON and content hashing helpers.

Every fingerprint in the harvester (event keys, entity content hashes, snapshot
generations) goes through these two functions so that hash stability depends only
on semantic content, never on key order or whitespace.
"""

import hashlib
import json
from typing import Any


def canonical_json(obj: Any) -> str:
    """Serialize to compact JSON with sorted keys."""
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


def sha256_hexdigest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def content_hash(obj: Any) -> str:
    """Hash of the canonical JSON form of ``obj``."""
    return sha256_hexdigest(canonical_json(obj))
