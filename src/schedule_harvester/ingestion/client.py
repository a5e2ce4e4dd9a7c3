"""Politeness-aware HTTP fetcher with retry, backoff and challenge detection."""

import logging
import time
from collections.abc import Callable
from typing import Optional

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from .config import FetchPolicy
from .errors import AntiBotChallenge, NotFoundError, TerminalFetchError, TransientFetchError

logger = logging.getLogger(__name__)


class PolitenessFetcher:
    """Fetch HTML pages from an unreliable, rate-limited source.

    Features:
    - Exponential backoff (base * 2^attempt) plus bounded random jitter
    - Retries on timeouts, connection failures, HTTP 429 and 5xx
    - HTTP 404 surfaced immediately as NotFoundError
    - Anti-bot challenge pages surfaced as AntiBotChallenge, never retried

    Pacing is deliberately not applied here; see PacingGate.

    Examples:
        >>> with PolitenessFetcher(FetchPolicy()) as fetcher:
        ...     html = fetcher.fetch("https://kpopofficial.com/kpop-comebacks/")
    """

    def __init__(
        self,
        policy: FetchPolicy | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the fetcher.

        Args:
            policy: Default fetch policy
            client: Pre-built httpx client (a browser-like one is created if None)
            sleep: Sleep function used between retries
        """
        self.policy = policy or FetchPolicy()
        self._owns_client = client is None
        self.client = client or httpx.Client(
            timeout=self.policy.timeout,
            headers=self.policy.headers(),
            follow_redirects=True,
        )
        self._sleep = sleep

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def fetch(self, url: str, policy: Optional[FetchPolicy] = None) -> str:
        """Fetch a page body.

        Args:
            url: Absolute URL
            policy: Override for this call (default: the fetcher's policy)

        Returns:
            Response body text

        Raises:
            NotFoundError: HTTP 404
            TerminalFetchError: Other non-retryable HTTP status
            TransientFetchError: Retryable failure that outlived max_retries
            AntiBotChallenge: Challenge page detected
        """
        policy = policy or self.policy
        retrying = self._build_retrying(policy)
        return retrying(self._fetch_once, url, policy)

    def _build_retrying(self, policy: FetchPolicy) -> Retrying:
        """Build a tenacity controller for one fetch."""
        wait_strategy = wait_exponential(
            multiplier=policy.backoff_base,
            exp_base=2,
            max=policy.max_backoff,
        ) + wait_random(min=policy.jitter_min, max=policy.jitter_max)

        return Retrying(
            retry=retry_if_exception_type(TransientFetchError),
            stop=stop_after_attempt(policy.max_retries + 1),
            wait=wait_strategy,
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Attempt {retry_state.attempt_number} failed: {exc}; retrying in {wait:.2f}s"
        )

    def _fetch_once(self, url: str, policy: FetchPolicy) -> str:
        logger.debug(f"GET {url}")
        try:
            response = self.client.get(url, timeout=policy.timeout)
        except httpx.TimeoutException as e:
            raise TransientFetchError(url, f"timeout: {e}") from e
        except httpx.TransportError as e:
            raise TransientFetchError(url, f"connection failure: {e}") from e
        except httpx.HTTPError as e:
            # Redirect loops and undecodable bodies
            raise TerminalFetchError(url, f"request failed: {e}") from e

        status = response.status_code
        if status == 404:
            raise NotFoundError(url, "HTTP 404", status_code=status)

        body = response.text
        if self.is_challenge(body, policy):
            logger.error(f"Anti-bot challenge detected at {url} (HTTP {status})")
            raise AntiBotChallenge(url, f"anti-bot challenge (HTTP {status})", status_code=status)

        if status == 429 or status >= 500:
            raise TransientFetchError(url, f"HTTP {status}", status_code=status)
        if status >= 400:
            raise TerminalFetchError(url, f"HTTP {status}", status_code=status)

        return body

    @staticmethod
    def is_challenge(body: str, policy: FetchPolicy) -> bool:
        """Check a body against known challenge-page fingerprints."""
        if not body:
            return False
        lowered = body.lower()
        return any(marker.lower() in lowered for marker in policy.challenge_markers)
