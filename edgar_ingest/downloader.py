"""HTTP fetch layer: shared rate limiting, inline retries, and block-page detection."""

import json
import logging
import re
import threading
import time
from typing import Optional

import httpx

from .config import DownloadConfig
from .errors import Blocked, FetchTimeout, NetworkError, OperationCancelled, ValidationError
from .rate_limiter import RateLimiter

logger = logging.getLogger("edgar_ingest")

# name/version (token; token[; token...])
USER_AGENT_PATTERN = re.compile(
    r"^[A-Za-z0-9\-_.]+/[A-Za-z0-9\-_.]+"
    r"(\s*\([A-Za-z0-9\-_.@+]+;\s*[A-Za-z0-9\-_.@+]+(;\s*[A-Za-z0-9\-_.@+]+)*\))?$",
    re.IGNORECASE,
)

BLOCK_MARKERS = (
    "For security purposes, and to ensure that the public service remains available "
    "to users, this government computer system",
    "Undeclared Automated Tool",
)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def validate_user_agent(user_agent: str) -> str:
    if not user_agent or not USER_AGENT_PATTERN.match(user_agent.strip()):
        raise ValidationError(
            f"Invalid User-Agent {user_agent!r}: expected 'name/version (token; token)'"
        )
    return user_agent.strip()


def is_blocked(body: bytes) -> bool:
    # Block pages are small HTML documents; only the head needs checking
    head = body[:8192].decode("utf-8", errors="replace")
    return any(marker in head for marker in BLOCK_MARKERS)


class Downloader:
    def __init__(self, config: DownloadConfig, rate_limiter: RateLimiter,
                 transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.user_agent = validate_user_agent(config.user_agent)
        self.rate_limiter = rate_limiter
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()

    @property
    def client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.Client(
                    timeout=httpx.Timeout(self.config.timeout, connect=30),
                    follow_redirects=True,
                    headers={
                        "User-Agent": self.user_agent,
                        "Accept-Encoding": "gzip, deflate",
                    },
                    transport=self._transport,
                )
            return self._client

    def close(self):
        if self._client and not self._client.is_closed:
            self._client.close()

    def fetch(self, url: str, cancel_event: Optional[threading.Event] = None) -> bytes:
        """GET `url` and return the body.

        Raises Blocked on an archive block page (not retried here), NetworkError
        on transport failure, non-2xx or empty body after `max_retries`
        attempts, and OperationCancelled if `cancel_event` is set.
        """
        max_retries = self.config.max_retries
        backoff = self.config.backoff_factor

        last_error: Optional[NetworkError] = None
        for attempt in range(max_retries):
            self.rate_limiter.acquire(cancel_event)
            try:
                return self._get(url)
            except NetworkError as e:
                last_error = e
                if e.status_code is not None and e.status_code not in RETRYABLE_STATUS:
                    raise
                if attempt + 1 >= max_retries:
                    break
                wait = backoff ** attempt
                logger.warning(f"Retry {attempt + 1}/{max_retries} for {url}: {e} (wait {wait}s)")
                if cancel_event is not None:
                    if cancel_event.wait(wait):
                        raise OperationCancelled(f"Cancelled while retrying {url}")
                else:
                    time.sleep(wait)

        raise last_error

    def _get(self, url: str) -> bytes:
        try:
            resp = self.client.get(url)
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"Timed out fetching {url}: {e}", url=url) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Transport error fetching {url}: {e}", url=url) from e

        body = resp.content
        if is_blocked(body):
            raise Blocked(f"Blocked by archive fetching {url}", url=url,
                          status_code=resp.status_code)
        if not resp.is_success:
            raise NetworkError(f"HTTP {resp.status_code} for {url}", url=url,
                               status_code=resp.status_code)
        if not body.strip():
            raise NetworkError(f"Empty response from {url}", url=url,
                               status_code=resp.status_code)
        return body

    def fetch_text(self, url: str, cancel_event: Optional[threading.Event] = None) -> str:
        return self.fetch(url, cancel_event).decode("utf-8", errors="replace")

    def fetch_json(self, url: str, cancel_event: Optional[threading.Event] = None):
        text = self.fetch_text(url, cancel_event)
        try:
            return json.loads(text)
        except ValueError as e:
            raise NetworkError(f"Invalid JSON from {url}: {e}", url=url) from e
