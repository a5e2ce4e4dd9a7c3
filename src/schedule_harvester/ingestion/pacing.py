"""Cooperative request pacing shared across callers."""

import logging
import random
import threading
import time
from collections.abc import Callable

from .config import PacingConfig

logger = logging.getLogger(__name__)


class PacingGate:
    """Sleeps between requests to keep traffic human-shaped.

    The gate is not enforced inside the fetch call. Callers invoke ``wait()``
    before each request, so many URLs (and many worker threads) can share one
    request counter and burst cooldown schedule.

    Examples:
        >>> gate = PacingGate(PacingConfig(enabled=True))
        >>> for url in urls:
        ...     gate.wait()
        ...     body = fetcher.fetch(url)
    """

    def __init__(
        self,
        config: PacingConfig,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ):
        self.config = config
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._count = 0

    @property
    def request_count(self) -> int:
        with self._lock:
            return self._count

    def wait(self) -> float:
        """Block before the next request.

        Returns:
            Seconds slept
        """
        cfg = self.config
        with self._lock:
            self._count += 1
            count = self._count
            if cfg.enabled:
                delay = self._rng.uniform(cfg.min_delay, cfg.max_delay)
                if count % cfg.burst_size == 0:
                    cooldown = self._rng.uniform(cfg.burst_cooldown_min, cfg.burst_cooldown_max)
                    logger.debug(f"Burst of {cfg.burst_size} reached, cooling down {cooldown:.1f}s")
                    delay += cooldown
            else:
                # First request of a campaign goes out immediately
                delay = cfg.base_delay if count > 1 else 0.0

        if delay > 0:
            self._sleep(delay)
        return delay
