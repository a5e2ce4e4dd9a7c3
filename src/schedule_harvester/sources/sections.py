"""Label-based windowing of linearized documents.

A detail page is flattened into an ordered stream of text, link and image
blocks. Each block belongs to the most recent label seen before it, so a
field's text is everything between its label and the next known label. Field
extraction therefore depends on a declared label table, not on fixed offsets.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from ..models.records import Section

TEXT = "text"
LINK = "link"
IMAGE = "image"

_WS = re.compile(r"\s+")


@dataclass(frozen=True)
class Block:
    """One unit of a linearized document."""

    kind: str
    value: str


def collapse_ws(text: str) -> str:
    return _WS.sub(" ", text or "").strip()


def _label_patterns(labels: Sequence[str]) -> list[tuple[str, re.Pattern]]:
    # Longest first so "Release Date" wins over "Release"
    ordered = sorted(dict.fromkeys(labels), key=len, reverse=True)
    return [
        (
            label,
            re.compile(rf"^\s*{re.escape(label)}\s*(?:[:：]\s*|[-–—]\s+|$)(.*)$", re.IGNORECASE | re.DOTALL),
        )
        for label in ordered
    ]


def match_label(text: str, labels: Sequence[str]) -> Optional[tuple[str, str]]:
    """Return (label, remainder) if ``text`` starts with a known label."""
    for label, pattern in _label_patterns(labels):
        m = pattern.match(text)
        if m:
            return label, collapse_ws(m.group(1))
    return None


def window_sections(blocks: Iterable[Block], labels: Sequence[str]) -> dict[str, Section]:
    """Assign blocks to label windows.

    Blocks before the first label are ignored. A label that repeats closes the
    open window, and its own window is discarded: the first occurrence wins.

    Args:
        blocks: Linearized document in reading order
        labels: Declared label table for this document type

    Returns:
        Sections keyed by label, ordered as in ``labels``
    """
    patterns = _label_patterns(labels)
    texts: dict[str, list[str]] = {}
    sections: dict[str, Section] = {}
    current: Optional[str] = None

    for block in blocks:
        if block.kind == TEXT:
            hit = None
            for label, pattern in patterns:
                m = pattern.match(block.value)
                if m:
                    hit = (label, collapse_ws(m.group(1)))
                    break
            if hit:
                label, rest = hit
                if label in sections:
                    current = None
                    continue
                sections[label] = Section()
                texts[label] = []
                current = label
                if rest:
                    texts[label].append(rest)
                continue
            if current is not None:
                value = collapse_ws(block.value)
                if value:
                    texts[current].append(value)
        elif current is None:
            continue
        elif block.kind == LINK:
            if block.value and block.value not in sections[current].links:
                sections[current].links.append(block.value)
        elif block.kind == IMAGE:
            if block.value and block.value not in sections[current].images:
                sections[current].images.append(block.value)

    for label, parts in texts.items():
        sections[label].text = " ".join(parts)

    return {label: sections[label] for label in dict.fromkeys(labels) if label in sections}
