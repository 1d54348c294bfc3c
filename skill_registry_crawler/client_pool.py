"""Pool of GitHub API clients with independent per-bucket rate limit tracking.

Each client owns three buckets (core, search, code search) because GitHub
enforces separate quotas for general operations and the two search endpoints.
Selection round-robins per bucket class, so a client exhausted on search can
still serve core calls.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

import httpx

from .models import BucketClass

logger = logging.getLogger(__name__)

API_BASE = "https://api.github.com"
API_VERSION_HEADER = "2022-11-28"

# Limits assumed before calibration
DEFAULT_LIMITS = {
    True: {BucketClass.CORE: 5000, BucketClass.SEARCH: 30, BucketClass.CODE_SEARCH: 30},
    False: {BucketClass.CORE: 60, BucketClass.SEARCH: 10, BucketClass.CODE_SEARCH: 10},
}

# Longest single sleep while all clients are limited, then re-check
MAX_WAIT_PER_CYCLE = {BucketClass.CORE: 30.0, BucketClass.SEARCH: 60.0, BucketClass.CODE_SEARCH: 60.0}
# Sleep when all clients are limited but none reports a future reset
FALLBACK_WAIT = {BucketClass.CORE: 1.0, BucketClass.SEARCH: 5.0, BucketClass.CODE_SEARCH: 5.0}
# Window assumed when a bucket is marked limited without a reset time
UNKNOWN_RESET_WINDOW = 60.0

_BUCKET_NAMES = {BucketClass.CORE: "Core", BucketClass.SEARCH: "Search", BucketClass.CODE_SEARCH: "Code Search"}

T = TypeVar("T")


def threshold(limit: int) -> int:
    """Remaining count at or below which a bucket counts as limited.

    Search-class buckets (30/min or less) tolerate a single spare request,
    core buckets keep a margin of ten.
    """
    return 1 if limit <= 30 else 10


@dataclass
class Bucket:
    """One quota window for one class of API operation."""

    limit: int
    remaining: int
    used: int = 0
    reset_time: float | None = None
    is_limited: bool = False

    def refresh(self, now: float) -> bool:
        """Clear a limited bucket whose reset time has passed."""
        if self.is_limited and self.reset_time is not None and now >= self.reset_time:
            self.is_limited = False
            self.remaining = self.limit
            self.used = 0
            self.reset_time = None
            return True
        return False

    def update_from_headers(self, headers, now: float) -> bool:
        """Apply x-ratelimit-* headers. Returns True when the bucket just became limited."""
        if headers is None:
            return False
        remaining = _int_header(headers, "x-ratelimit-remaining")
        limit = _int_header(headers, "x-ratelimit-limit")
        used = _int_header(headers, "x-ratelimit-used")
        reset = _int_header(headers, "x-ratelimit-reset")
        if remaining is not None:
            self.remaining = remaining
        if limit is not None:
            self.limit = limit
        if used is not None:
            self.used = used
        if reset is not None:
            self.reset_time = float(reset)
        return self._apply_threshold(now)

    def update_from_resource(self, resource: dict | None, now: float) -> None:
        """Apply one resource entry of a GET /rate_limit response."""
        if not resource:
            return
        self.limit = resource.get("limit", self.limit)
        self.remaining = resource.get("remaining", self.remaining)
        self.used = resource.get("used", self.used)
        if resource.get("reset") is not None:
            self.reset_time = float(resource["reset"])
        self._apply_threshold(now)

    def mark_limited(self, reset_time: float | None, now: float) -> None:
        self.is_limited = True
        self.remaining = min(self.remaining, threshold(self.limit))
        if reset_time is not None:
            self.reset_time = reset_time
        elif self.reset_time is None or self.reset_time <= now:
            self.reset_time = now + UNKNOWN_RESET_WINDOW

    def _apply_threshold(self, now: float) -> bool:
        was_limited = self.is_limited
        if self.remaining > threshold(self.limit):
            self.is_limited = False
            return False
        if self.reset_time is None:
            self.reset_time = now + UNKNOWN_RESET_WINDOW
        self.is_limited = now < self.reset_time
        return self.is_limited and not was_limited


def _int_header(headers, name: str) -> int | None:
    val = headers.get(name)
    if val is None or val == "":
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


class ApiClient:
    """One authenticated (or anonymous) connection with its own quota buckets."""

    def __init__(
        self,
        label: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.label = label
        self.token = token
        self.is_authenticated = bool(token)
        limits = DEFAULT_LIMITS[self.is_authenticated]
        self.buckets = {bc: Bucket(limit=limits[bc], remaining=limits[bc]) for bc in BucketClass}

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION_HEADER,
            "User-Agent": "skill-registry-crawler",
        }
        if token:
            headers["Authorization"] = f"bearer {token}"
        self.http = httpx.AsyncClient(base_url=API_BASE, headers=headers, timeout=timeout, transport=transport)

    def bucket(self, bucket_class: BucketClass) -> Bucket:
        return self.buckets[bucket_class]

    def __repr__(self) -> str:
        return f"ApiClient({self.label!r})"


def select_round_robin(
    items: Sequence[T],
    cursor: int,
    predicate: Callable[[T], bool],
) -> tuple[T | None, int]:
    """Pick the first item at or after `cursor` matching `predicate`.

    Returns the item and the cursor for the next call (one past the pick), or
    (None, cursor) unchanged when nothing matches.
    """
    n = len(items)
    for i in range(n):
        idx = (cursor + i) % n
        if predicate(items[idx]):
            return items[idx], (idx + 1) % n
    return None, cursor


class ClientPool:
    """All configured API clients plus per-bucket selection state.

    Process-local and lock free: bucket state is only mutated between
    suspension points of the single event loop.
    """

    def __init__(
        self,
        tokens: Sequence[tuple[str, str]],
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._clock = clock
        self.sleep = sleep
        self._cursors = {bc: 0 for bc in BucketClass}
        self.exhausted: set[BucketClass] = set()

        if tokens:
            logger.info("Initializing %d GitHub client(s)...", len(tokens))
            self.clients = [ApiClient(label, token, timeout, transport) for label, token in tokens]
        else:
            logger.warning(
                "No GITHUB_TOKEN set. API rate limits will be severely restricted (60 req/hour)."
            )
            self.clients = [ApiClient("unauthenticated", None, timeout, transport)]

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ClientPool":
        return cls(settings.tokens, timeout=settings.request_timeout, **kwargs)

    def now(self) -> float:
        return self._clock()

    def _refresh(self, bucket_class: BucketClass) -> None:
        now = self._clock()
        for client in self.clients:
            if client.bucket(bucket_class).refresh(now):
                logger.info(
                    "%s %s API rate limit reset, resuming...", client.label, _BUCKET_NAMES[bucket_class]
                )

    def select_client(self, bucket_class: BucketClass) -> ApiClient:
        """Next client with quota for this bucket, or the one resetting soonest."""
        self._refresh(bucket_class)
        client, self._cursors[bucket_class] = select_round_robin(
            self.clients,
            self._cursors[bucket_class],
            lambda c: not c.bucket(bucket_class).is_limited,
        )
        if client is not None:
            return client

        def reset_key(c):
            reset = c.bucket(bucket_class).reset_time
            return (reset is None, reset or 0.0)

        return min(self.clients, key=reset_key)

    def all_limited(self, bucket_class: BucketClass) -> bool:
        self._refresh(bucket_class)
        return all(c.bucket(bucket_class).is_limited for c in self.clients)

    def next_reset_time(self, bucket_class: BucketClass) -> float:
        """Earliest known reset among limited clients, or one minute from now."""
        resets = [
            c.bucket(bucket_class).reset_time
            for c in self.clients
            if c.bucket(bucket_class).is_limited and c.bucket(bucket_class).reset_time is not None
        ]
        return min(resets) if resets else self._clock() + UNKNOWN_RESET_WINDOW

    def update_from_response(self, client: ApiClient, bucket_class: BucketClass, headers) -> None:
        bucket = client.bucket(bucket_class)
        if bucket.update_from_headers(headers, self._clock()):
            reset_in = max(0, int((bucket.reset_time or self._clock()) - self._clock()))
            logger.info(
                "%s %s API rate limited (%d/%d remaining), resets in %ds",
                client.label,
                _BUCKET_NAMES[bucket_class],
                bucket.remaining,
                bucket.limit,
                reset_in,
            )

    def mark_limited(self, client: ApiClient, bucket_class: BucketClass, reset_time: float | None = None) -> None:
        bucket = client.bucket(bucket_class)
        bucket.mark_limited(reset_time, self._clock())
        logger.info(
            "%s %s API marked limited until %s",
            client.label,
            _BUCKET_NAMES[bucket_class],
            time.strftime("%H:%M:%S", time.localtime(bucket.reset_time)),
        )

    async def wait_for_available(
        self,
        bucket_class: BucketClass,
        should_stop: Callable[[], bool] | None = None,
    ) -> bool:
        """Sleep while every client is limited for this bucket.

        Returns True once a client is available, False if `should_stop` fired first.
        """
        while self.all_limited(bucket_class):
            if should_stop is not None and should_stop():
                return False
            wait = self.next_reset_time(bucket_class) - self._clock()
            if wait > 0:
                if wait > 10:
                    logger.info(
                        "All clients %s-limited, waiting %ds for reset...",
                        _BUCKET_NAMES[bucket_class],
                        int(wait),
                    )
                await self.sleep(min(wait + 1, MAX_WAIT_PER_CYCLE[bucket_class]))
            else:
                await self.sleep(FALLBACK_WAIT[bucket_class])
        return True

    async def calibrate(self) -> None:
        """Probe GET /rate_limit once per client to seed every bucket."""
        logger.info("Checking rate limit status for all clients...")
        for client in self.clients:
            try:
                resp = await client.http.get("/rate_limit")
                resp.raise_for_status()
                resources = resp.json()["resources"]
            except (httpx.HTTPError, KeyError, ValueError) as e:
                logger.warning("%s: failed to fetch rate limit - %s", client.label, e)
                continue
            now = self._clock()
            for bucket_class in BucketClass:
                client.bucket(bucket_class).update_from_resource(resources.get(bucket_class.value), now)
            core = client.bucket(BucketClass.CORE)
            search = client.bucket(BucketClass.SEARCH)
            logger.info(
                "%s: %d/%d (Core), %d/%d (Search), %d/%d (Code Search)",
                client.label,
                core.remaining,
                core.limit,
                search.remaining,
                search.limit,
                client.bucket(BucketClass.CODE_SEARCH).remaining,
                client.bucket(BucketClass.CODE_SEARCH).limit,
            )
        totals = self.total_remaining()
        logger.info(
            "Pool of %d client(s): %d core, %d search, %d code search requests left",
            len(self.clients),
            totals["core"],
            totals["search"],
            totals["code_search"],
        )

    def is_rate_limited(self) -> bool:
        """True if any bucket class is exhausted on every client, or a call gave up on quota."""
        if self.exhausted:
            return True
        return any(self.all_limited(bc) for bc in BucketClass)

    def active_client_count(self, bucket_class: BucketClass = BucketClass.CORE) -> int:
        return sum(1 for c in self.clients if not c.bucket(bucket_class).is_limited)

    def total_remaining(self) -> dict[str, int]:
        return {bc.value: sum(c.bucket(bc).remaining for c in self.clients) for bc in BucketClass}

    async def aclose(self) -> None:
        for client in self.clients:
            await client.http.aclose()
