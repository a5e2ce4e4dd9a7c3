"""Pytest configuration and fixtures for all tests."""

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

import httpx
import pytest

from schedule_harvester.ingestion.client import PolitenessFetcher
from schedule_harvester.ingestion.config import FetchPolicy, HarvestConfig, PacingConfig, SeedConfig
from schedule_harvester.ingestion.errors import NotFoundError
from schedule_harvester.ingestion.pacing import PacingGate
from schedule_harvester.sources.kpopofficial import KpopOfficialExtractor
from schedule_harvester.storage.state_store import StateStore

SITE = "https://kpopofficial.com"
CATEGORY_URL = f"{SITE}/category/kpop-comeback-schedule/"
INDEX_URL = f"{SITE}/kpop-comebacks/"


# ============================================================================
# Fakes
# ============================================================================


class FakeFetcher:
    """In-memory fetcher: URL -> body, or URL -> exception to raise."""

    def __init__(self, responses: Optional[dict[str, Union[str, Exception]]] = None):
        self.responses: dict[str, Union[str, Exception]] = dict(responses or {})
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch(self, url: str, policy=None) -> str:
        with self._lock:
            self.calls.append(url)
        response = self.responses.get(url)
        if response is None:
            raise NotFoundError(url, "HTTP 404", status_code=404)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        pass


def transport_fetcher(pages: dict[str, str], redirect_loops: tuple[str, ...] = ()) -> PolitenessFetcher:
    """Real fetcher over httpx.MockTransport; listed URLs redirect to themselves forever."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url in redirect_loops:
            return httpx.Response(302, headers={"Location": url})
        if url in pages:
            return httpx.Response(200, text=pages[url])
        return httpx.Response(404, text="not found")

    client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True, max_redirects=3)
    policy = FetchPolicy(max_retries=0, jitter_min=0.0, jitter_max=0.0)
    return PolitenessFetcher(policy, client=client, sleep=lambda seconds: None)


# ============================================================================
# HTML Builders
# ============================================================================


def card_html(slug: str, date_line: str, artist: str, *info: str, views: str = "1.2K views") -> str:
    info_html = "".join(f"<p>{line}</p>" for line in info)
    return (
        f'<div class="card">'
        f'<a href="{SITE}/album/{slug}/"><img src="{SITE}/img/{slug}.jpg"></a>'
        f"<p>{date_line}</p>"
        f"<p>{artist}</p>"
        f"{info_html}"
        f"<span>{views}</span>"
        f"</div>"
    )


def index_page_html(title: str, cards: list[str], links: Optional[list[str]] = None, next_url: Optional[str] = None) -> str:
    head_next = f'<link rel="next" href="{next_url}">' if next_url else ""
    nav = "".join(f'<a href="{link}">{link}</a>' for link in (links or []))
    return (
        f"<html><head><title>{title} - KPOP Official</title>{head_next}</head>"
        f"<body><h1>{title}</h1><nav>{nav}</nav>"
        f"<main>{''.join(cards)}</main></body></html>"
    )


def detail_page_html(fields: list[tuple[str, str]], title: str = "Album Page", extra: str = "") -> str:
    rows = "".join(f"<p><strong>{label}:</strong> {value}</p>" for label, value in fields)
    return f"<html><head><title>{title}</title></head><body><h1>{title}</h1><article>{rows}{extra}</article></body></html>"


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fixed_now() -> datetime:
    """2025-12-01 12:00 in Seoul."""
    return datetime(2025, 12, 1, 3, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_now: datetime) -> Callable[[], datetime]:
    return lambda: fixed_now


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def store(state_dir: Path) -> StateStore:
    return StateStore(state_dir)


@pytest.fixture
def config(state_dir: Path) -> HarvestConfig:
    return HarvestConfig(
        state_dir=state_dir,
        discovery={
            "seeds": [
                SeedConfig(url=CATEGORY_URL, paginate=True),
                SeedConfig(url=INDEX_URL, paginate=False),
            ],
            "max_pages": 3,
        },
        enrichment={"concurrency": 2, "save_raw": True},
    )


@pytest.fixture
def gate() -> PacingGate:
    return PacingGate(PacingConfig(), sleep=lambda seconds: None)


@pytest.fixture
def extractor() -> KpopOfficialExtractor:
    return KpopOfficialExtractor()

