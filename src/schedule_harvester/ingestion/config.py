"""Harvest configuration models using Pydantic."""

import os
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.records import DEFAULT_TIMEZONE

STATE_DIR_ENV = "SCHEDULE_HARVESTER_DIR"

DEFAULT_CHALLENGE_MARKERS = [
    "just a moment...",
    "checking your browser",
    "cf-chl-",
    "attention required! | cloudflare",
    "enable javascript and cookies to continue",
    "verify you are human",
    "are you a robot",
    "request unsuccessful. incapsula incident",
    "px-captcha",
]


def default_state_dir() -> Path:
    """State directory from the environment, else ``~/.schedule_harvester``."""
    override = os.getenv(STATE_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".schedule_harvester"


class FetchPolicy(BaseModel):
    """Per-request behaviour of the politeness fetcher."""

    timeout: float = Field(default=25.0, gt=0, le=300, description="Request timeout in seconds")
    max_retries: int = Field(default=2, ge=0, le=10, description="Retries after the first attempt")
    backoff_base: float = Field(default=0.6, ge=0, description="Backoff is base * 2^attempt seconds")
    max_backoff: float = Field(default=30.0, ge=0)
    jitter_min: float = Field(default=0.0, ge=0)
    jitter_max: float = Field(default=0.5, ge=0)
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
        )
    )
    accept_language: str = "en-US,en;q=0.9,ko;q=0.7,zh-CN;q=0.6,zh;q=0.5"
    referer: Optional[str] = None
    challenge_markers: list[str] = Field(default_factory=lambda: list(DEFAULT_CHALLENGE_MARKERS))

    @model_validator(mode="after")
    def check_jitter_bounds(self) -> "FetchPolicy":
        if self.jitter_max < self.jitter_min:
            raise ValueError("jitter_max must be >= jitter_min")
        return self

    def headers(self) -> dict[str, str]:
        """Browser-like request headers."""
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
            "Accept-Language": self.accept_language,
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }
        if self.referer:
            headers["Referer"] = self.referer
        return headers


class PacingConfig(BaseModel):
    """Human-like pacing between requests.

    The numbers are policy knobs; none of them is load-bearing.
    """

    enabled: bool = False
    min_delay: float = Field(default=1.5, ge=0, description="Seconds")
    max_delay: float = Field(default=4.0, ge=0, description="Seconds")
    burst_size: int = Field(default=8, ge=1, description="Requests between cooldowns")
    burst_cooldown_min: float = Field(default=10.0, ge=0)
    burst_cooldown_max: float = Field(default=25.0, ge=0)
    base_delay: float = Field(default=0.25, ge=0, description="Fixed delay when pacing is off")
    max_workers: int = Field(default=2, ge=1, description="Worker cap while pacing is on")

    @model_validator(mode="after")
    def check_ranges(self) -> "PacingConfig":
        if self.max_delay < self.min_delay:
            raise ValueError("max_delay must be >= min_delay")
        if self.burst_cooldown_max < self.burst_cooldown_min:
            raise ValueError("burst_cooldown_max must be >= burst_cooldown_min")
        return self


class SeedConfig(BaseModel):
    """One discovery entry point."""

    url: str
    paginate: bool = Field(default=True, description="Follow next-page links from this seed")


class SiteConfig(BaseModel):
    """Where the source lives and how its URLs are shaped."""

    base_url: str = "https://kpopofficial.com"
    index_link_pattern: str = Field(
        default=r"kpop-comeback-schedule",
        description="Regex a same-site URL must match to count as an index page",
    )
    index_link_exclude: Optional[str] = Field(
        default=r"/category/|/page/\d+|/tag/|/feed/?$",
        description="Regex for listing/archive URLs that match the index pattern but hold no records",
    )
    detail_link_pattern: str = Field(
        default=r"^https?://(?:www\.)?kpopofficial\.com/album/.+",
        description="Regex an absolute URL must match to count as a detail page",
    )


class DiscoveryConfig(BaseModel):
    seeds: list[SeedConfig] = Field(
        default_factory=lambda: [
            SeedConfig(url="https://kpopofficial.com/category/kpop-comeback-schedule/", paginate=True),
            SeedConfig(url="https://kpopofficial.com/kpop-comebacks/", paginate=False),
        ]
    )
    max_pages: int = Field(default=6, ge=1, le=100, description="Pages fetched per paginated seed")
    save_raw: bool = True


class ExtractionConfig(BaseModel):
    max_index_pages: int = Field(default=6, ge=1, description="Index pages parsed per run")
    source_timezone: str = DEFAULT_TIMEZONE
    save_raw: bool = True

    @field_validator("source_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v


class EnrichmentConfig(BaseModel):
    concurrency: int = Field(default=4, ge=1, le=32)
    refresh_interval_hours: float = Field(default=72.0, ge=0)
    force: bool = False
    limit: Optional[int] = Field(default=None, ge=1, description="Max entities attempted per run")
    max_links: int = Field(default=20, ge=0)
    max_media: int = Field(default=10, ge=0)
    save_raw: bool = False


class ViewsConfig(BaseModel):
    horizon_days: int = Field(default=60, ge=0)
    recent_days: int = Field(default=14, ge=0)


class HarvestConfig(BaseModel):
    """Complete harvester configuration."""

    state_dir: Path = Field(default_factory=default_state_dir)
    site: SiteConfig = Field(default_factory=SiteConfig)
    fetch: FetchPolicy = Field(default_factory=FetchPolicy)
    pacing: PacingConfig = Field(default_factory=PacingConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    views: ViewsConfig = Field(default_factory=ViewsConfig)

    @model_validator(mode="after")
    def default_referer(self) -> "HarvestConfig":
        if self.fetch.referer is None:
            self.fetch.referer = self.site.base_url.rstrip("/") + "/"
        return self

    @classmethod
    def from_env(cls) -> "HarvestConfig":
        """Defaults with the state directory resolved from the environment."""
        return cls(state_dir=default_state_dir())

    def effective_workers(self, requested: Optional[int] = None) -> int:
        """Enrichment pool size, clamped while human pacing is on."""
        workers = max(1, requested or self.enrichment.concurrency)
        if self.pacing.enabled:
            return min(workers, self.pacing.max_workers)
        return workers


def load_harvest_config(path: str | Path) -> HarvestConfig:
    """Load harvester configuration from a YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated HarvestConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config is invalid
    """
    config_path = Path(path)

    if not config_path.exists():
        raise FileNotFoundError(f"Harvest config not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f) or {}

    if not isinstance(config_data, dict):
        raise ValueError(f"Harvest config must be a mapping: {config_path}")

    config_data.setdefault("state_dir", str(default_state_dir()))
    return HarvestConfig(**config_data)
