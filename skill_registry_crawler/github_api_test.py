"""Unit tests for pooled GitHub REST calls."""

import asyncio
import base64

import httpx
import pytest

from .client_pool import ClientPool
from .github_api import (
    ApiError,
    DeadlineReached,
    NotFoundError,
    RateLimitExhausted,
    call,
    contents_endpoint,
    decode_content,
    get_latest_commit,
    get_path_commit,
)
from .models import BucketClass


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


def make_pool(handler, tokens=(("A", "ta"), ("B", "tb")), clock=None) -> ClientPool:
    clock = clock or FakeClock()
    return ClientPool(list(tokens), clock=clock, sleep=clock.sleep, transport=httpx.MockTransport(handler))


def describe_call():
    def it_returns_the_response_body():
        pool = make_pool(lambda request: httpx.Response(200, json={"ok": True}))

        resp = asyncio.run(call(pool, BucketClass.CORE, "/repos/o/r"))

        assert resp.status == 200
        assert resp.body == {"ok": True}

    def it_rotates_to_the_next_client_on_rate_limit():
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            token = request.headers["Authorization"]
            seen.append(token)
            if token == "bearer ta":
                return httpx.Response(403, headers={"x-ratelimit-remaining": "0"}, json={"message": "API rate limit exceeded"})
            return httpx.Response(200, json={"ok": True})

        pool = make_pool(handler)
        resp = asyncio.run(call(pool, BucketClass.CORE, "/repos/o/r"))

        assert resp.body == {"ok": True}
        assert seen == ["bearer ta", "bearer tb"]
        assert pool.clients[0].bucket(BucketClass.CORE).is_limited
        assert not pool.clients[0].bucket(BucketClass.SEARCH).is_limited

    def it_raises_exhausted_when_every_attempt_is_limited():
        clock = FakeClock()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"x-ratelimit-reset": str(int(clock.now) + 5)})

        pool = make_pool(handler, clock=clock)

        with pytest.raises(RateLimitExhausted):
            asyncio.run(call(pool, BucketClass.SEARCH, "/search/repositories", max_attempts=3))
        assert BucketClass.SEARCH in pool.exhausted

    def it_treats_code_search_422_as_rate_limit():
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"message": "Validation Failed"})

        pool = make_pool(handler, tokens=(("A", "ta"),))

        with pytest.raises(RateLimitExhausted):
            asyncio.run(call(pool, BucketClass.CODE_SEARCH, "/search/code", max_attempts=1))

    def it_raises_api_error_for_422_outside_code_search():
        pool = make_pool(lambda request: httpx.Response(422, json={}))

        with pytest.raises(ApiError) as exc:
            asyncio.run(call(pool, BucketClass.CORE, "/repos/o/r"))
        assert exc.value.status == 422

    def it_raises_not_found():
        pool = make_pool(lambda request: httpx.Response(404, json={"message": "Not Found"}))

        with pytest.raises(NotFoundError):
            asyncio.run(call(pool, BucketClass.CORE, "/repos/o/missing"))

    def it_retries_transport_errors_then_gives_up():
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            raise httpx.ConnectError("boom", request=request)

        pool = make_pool(handler)

        with pytest.raises(ApiError) as exc:
            asyncio.run(call(pool, BucketClass.CORE, "/repos/o/r", max_attempts=2))
        assert exc.value.status == 0
        assert len(attempts) == 2
        assert not pool.exhausted

    def it_refuses_to_start_after_the_deadline():
        pool = make_pool(lambda request: pytest.fail("no request expected"))

        with pytest.raises(DeadlineReached):
            asyncio.run(call(pool, BucketClass.CORE, "/repos/o/r", should_stop=lambda: True))

    def it_updates_buckets_from_headers():
        pool = make_pool(
            lambda request: httpx.Response(200, json={}, headers={"x-ratelimit-remaining": "4321"}),
            tokens=(("A", "ta"),),
        )

        asyncio.run(call(pool, BucketClass.CORE, "/repos/o/r"))

        assert pool.clients[0].bucket(BucketClass.CORE).remaining == 4321


def describe_helpers():
    def it_builds_contents_endpoints():
        assert contents_endpoint("o", "r") == "/repos/o/r/contents"
        assert contents_endpoint("o", "r", "skills/my skill/SKILL.md") == "/repos/o/r/contents/skills/my%20skill/SKILL.md"

    def it_decodes_base64_content():
        body = {"content": base64.b64encode("héllo".encode()).decode()}

        assert decode_content(body) == "héllo"
        assert decode_content({}) is None
        assert decode_content([]) is None

    def describe_get_latest_commit():
        def it_returns_short_hash_and_date():
            pool = make_pool(
                lambda request: httpx.Response(
                    200, json=[{"sha": "abcdef1234567890", "commit": {"committer": {"date": "2024-01-01T00:00:00Z"}}}]
                )
            )

            result = asyncio.run(get_latest_commit(pool, "o", "r"))

            assert result == {"commitHash": "abcdef123456", "date": "2024-01-01T00:00:00Z"}

        def it_returns_none_for_missing_or_empty_repos():
            assert asyncio.run(get_latest_commit(make_pool(lambda r: httpx.Response(404)), "o", "r")) is None
            assert asyncio.run(get_latest_commit(make_pool(lambda r: httpx.Response(409, json={})), "o", "r")) is None
            assert asyncio.run(get_latest_commit(make_pool(lambda r: httpx.Response(200, json=[])), "o", "r")) is None

    def describe_get_path_commit():
        def it_filters_by_path():
            def handler(request: httpx.Request) -> httpx.Response:
                assert request.url.params["path"] == "skills/a"
                return httpx.Response(200, json=[{"sha": "0123456789abcdef"}])

            assert asyncio.run(get_path_commit(make_pool(handler), "o", "r", "skills/a")) == "0123456789ab"

        def it_returns_empty_string_when_unknown():
            assert asyncio.run(get_path_commit(make_pool(lambda r: httpx.Response(500)), "o", "r", "x")) == ""
