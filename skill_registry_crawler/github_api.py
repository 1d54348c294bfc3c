"""GitHub REST calls routed through the client pool."""

import base64
import logging
from collections.abc import Callable
from urllib.parse import quote

import httpx

from .client_pool import ApiClient, ClientPool
from .models import ApiResponse, BucketClass, RepoInfo

logger = logging.getLogger(__name__)

BACKOFF_FACTOR = 1.5

StopCheck = Callable[[], bool] | None


class CrawlerError(Exception):
    """Base class for crawler failures."""


class NotFoundError(CrawlerError):
    pass


class ApiError(CrawlerError):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status


class RateLimitedError(CrawlerError):
    """A single request was rejected for quota reasons."""

    def __init__(self, endpoint: str, reset_time: float | None = None):
        super().__init__(f"Rate limited: {endpoint}")
        self.reset_time = reset_time


class RateLimitExhausted(CrawlerError):
    """Every rotation attempt hit a rate limit."""


class DeadlineReached(CrawlerError):
    """The execution deadline tripped before the call could be made."""


def _parse_reset(headers) -> float | None:
    val = headers.get("x-ratelimit-reset")
    if not val:
        return None
    try:
        return float(int(val))
    except ValueError:
        return None


def _is_rate_limited(resp: httpx.Response, bucket_class: BucketClass) -> bool:
    if resp.status_code == 429:
        return True
    if resp.status_code == 403:
        return (
            resp.headers.get("x-ratelimit-remaining") == "0"
            or "retry-after" in resp.headers
            or "rate limit" in resp.text.lower()
        )
    # Code search answers 422 when a query is throttled or the repo can't be searched yet
    return resp.status_code == 422 and bucket_class == BucketClass.CODE_SEARCH


async def request_once(
    pool: ClientPool,
    client: ApiClient,
    bucket_class: BucketClass,
    endpoint: str,
    params: dict | None = None,
) -> ApiResponse:
    """One GET on one client. Updates or marks the bucket, raises on errors."""
    resp = await client.http.get(endpoint, params=params)

    if _is_rate_limited(resp, bucket_class):
        reset_time = _parse_reset(resp.headers)
        pool.mark_limited(client, bucket_class, reset_time)
        raise RateLimitedError(endpoint, reset_time)

    pool.update_from_response(client, bucket_class, resp.headers)

    if resp.status_code == 404:
        raise NotFoundError(endpoint)
    if resp.status_code >= 400:
        raise ApiError(resp.status_code, f"GitHub API error {resp.status_code}: {endpoint}")

    return ApiResponse(
        status=resp.status_code,
        body=resp.json() if resp.content else {},
        headers=dict(resp.headers),
    )


async def call(
    pool: ClientPool,
    bucket_class: BucketClass,
    endpoint: str,
    params: dict | None = None,
    should_stop: StopCheck = None,
    max_attempts: int | None = None,
) -> ApiResponse:
    """GET with client rotation on rate limits and backoff on transport errors.

    Waits (cooperatively) whenever every client is limited for the bucket.
    """
    attempts = max_attempts or len(pool.clients) + 1
    last_transport_error: httpx.TransportError | None = None

    for attempt in range(attempts):
        if should_stop is not None and should_stop():
            raise DeadlineReached(endpoint)
        if not await pool.wait_for_available(bucket_class, should_stop):
            raise DeadlineReached(endpoint)

        client = pool.select_client(bucket_class)
        try:
            return await request_once(pool, client, bucket_class, endpoint, params)
        except RateLimitedError:
            last_transport_error = None
            continue
        except httpx.TransportError as e:
            last_transport_error = e
            logger.debug("Transport error on %s (%s): %s", endpoint, client.label, e)
            await pool.sleep(BACKOFF_FACTOR**attempt)
            continue

    if last_transport_error is not None:
        raise ApiError(0, f"Network error for {endpoint}: {last_transport_error}")
    pool.exhausted.add(bucket_class)
    raise RateLimitExhausted(f"{bucket_class.value} quota exhausted after {attempts} attempts: {endpoint}")


def contents_endpoint(owner: str, repo: str, path: str = "") -> str:
    base = f"/repos/{owner}/{repo}/contents"
    return f"{base}/{quote(path)}" if path else base


def decode_content(body: dict) -> str | None:
    """Decode a base64 file payload from the contents API."""
    content = body.get("content") if isinstance(body, dict) else None
    if not content:
        return None
    return base64.b64decode(content).decode("utf-8", errors="replace")


async def get_latest_commit(
    pool: ClientPool, owner: str, repo: str, should_stop: StopCheck = None
) -> dict | None:
    """Latest commit on the default branch as {commitHash, date}, None if unavailable.

    Not-found and API errors yield None. Rate limit exhaustion and the deadline propagate.
    """
    try:
        resp = await call(pool, BucketClass.CORE, f"/repos/{owner}/{repo}/commits", {"per_page": 1}, should_stop)
    except (NotFoundError, ApiError) as e:
        logger.info("Could not get latest commit for %s/%s: %s", owner, repo, e)
        return None
    if not resp.body:
        return None
    commit = resp.body[0]
    return {
        "commitHash": commit["sha"][:12],
        "date": ((commit.get("commit") or {}).get("committer") or {}).get("date"),
    }


async def get_repository(
    pool: ClientPool,
    owner: str,
    repo: str,
    should_stop: StopCheck = None,
    max_attempts: int | None = None,
) -> RepoInfo:
    resp = await call(pool, BucketClass.CORE, f"/repos/{owner}/{repo}", should_stop=should_stop, max_attempts=max_attempts)
    return RepoInfo.from_api(resp.body)


async def search_repositories(
    pool: ClientPool,
    query: str,
    page: int = 1,
    per_page: int = 50,
    should_stop: StopCheck = None,
) -> dict:
    resp = await call(
        pool,
        BucketClass.SEARCH,
        "/search/repositories",
        {"q": query, "sort": "stars", "order": "desc", "per_page": per_page, "page": page},
        should_stop,
    )
    return resp.body


async def search_code(
    pool: ClientPool,
    query: str,
    page: int = 1,
    per_page: int = 100,
    should_stop: StopCheck = None,
) -> dict:
    resp = await call(
        pool,
        BucketClass.CODE_SEARCH,
        "/search/code",
        {"q": query, "per_page": per_page, "page": page},
        should_stop,
    )
    return resp.body


async def get_contents(
    pool: ClientPool,
    owner: str,
    repo: str,
    path: str = "",
    ref: str | None = None,
    should_stop: StopCheck = None,
) -> dict | list:
    params = {"ref": ref} if ref else None
    resp = await call(pool, BucketClass.CORE, contents_endpoint(owner, repo, path), params, should_stop)
    return resp.body


async def get_path_commit(
    pool: ClientPool, owner: str, repo: str, path: str, should_stop: StopCheck = None
) -> str:
    """Short hash of the latest commit touching `path`, "" when unknown."""
    try:
        resp = await call(
            pool, BucketClass.CORE, f"/repos/{owner}/{repo}/commits", {"path": path, "per_page": 1}, should_stop
        )
    except (NotFoundError, ApiError) as e:
        logger.debug("Could not get commit hash for %s/%s/%s: %s", owner, repo, path, e)
        return ""
    if not resp.body:
        return ""
    return resp.body[0]["sha"][:12]
