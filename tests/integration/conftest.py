"""Shared fixtures: an in-memory GitHub served through httpx.MockTransport.

Only the network is faked. The cache file, registry output, zips and the
crawler's own rate limit handling are all real.
"""

import base64
import posixpath
import re
import time
from dataclasses import dataclass, field

import httpx
import pytest

from skill_registry_crawler.client_pool import ClientPool
from skill_registry_crawler.crawler import Crawler
from skill_registry_crawler.deadline import ExecutionDeadline
from skill_registry_crawler.settings import Settings
from skill_registry_crawler.task_queue import TaskQueue

DIR_COMMIT = "0" * 40

BODY = (
    "## Usage\n\n"
    + "Run the helper script with the input file and read the generated report carefully. " * 8
    + "\n"
)


def _skill_md(name: str, description: str | None = None, body: str = BODY) -> str:
    description = description or f"The {name} skill helps with everyday agent tasks"
    return f"---\nname: {name}\ndescription: {description}\n---\n\n# {name}\n\n{body}"


@dataclass
class FakeRepo:
    full_name: str
    files: dict[str, str]
    head: str = "1" * 40
    stars: int = 0
    fork: bool = False
    dir_commits: dict[str, str] = field(default_factory=dict)

    def to_api(self) -> dict:
        owner, _, name = self.full_name.partition("/")
        return {
            "name": name,
            "full_name": self.full_name,
            "owner": {"login": owner},
            "default_branch": "main",
            "stargazers_count": self.stars,
            "forks_count": 0,
            "pushed_at": "2024-01-01T00:00:00Z",
            "fork": self.fork,
        }

    def children(self, path: str) -> list[dict]:
        prefix = f"{path}/" if path else ""
        entries: dict[str, dict] = {}
        for file_path in self.files:
            if not file_path.startswith(prefix):
                continue
            head, _, rest = file_path[len(prefix) :].partition("/")
            entries[head] = {"name": head, "path": prefix + head, "type": "dir" if rest else "file"}
        return [entries[name] for name in sorted(entries)]


class FakeGitHub:
    """Enough of the GitHub REST API for a crawl."""

    def __init__(self):
        self.repos: dict[str, FakeRepo] = {}
        self.topics: dict[str, list[str]] = {}
        self.global_hits: list[str] = []
        self.code_search_limited = False
        # Listings that fail once with a server error
        self.failing_listings: set[str] = set()
        self.requests: list[tuple[str, str]] = []
        self.on_request = None

    def add_repo(self, full_name: str, files: dict[str, str], **kwargs) -> FakeRepo:
        repo = FakeRepo(full_name, dict(files), **kwargs)
        self.repos[full_name] = repo
        return repo

    def count(self, kind: str) -> int:
        return sum(1 for k, _ in self.requests if k == kind)

    def paths(self, kind: str) -> list[str]:
        return [p for k, p in self.requests if k == kind]

    def reset(self) -> None:
        self.requests.clear()

    def _record(self, kind: str, path: str) -> None:
        self.requests.append((kind, path))
        if self.on_request is not None:
            self.on_request(kind, path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = request.url.params
        parts = path.strip("/").split("/")

        if path == "/rate_limit":
            self._record("rate_limit", path)
            reset = int(time.time()) + 3600
            return httpx.Response(
                200,
                json={
                    "resources": {
                        "core": {"limit": 5000, "remaining": 4999, "used": 1, "reset": reset},
                        "search": {"limit": 30, "remaining": 30, "used": 0, "reset": reset},
                        "code_search": {"limit": 10, "remaining": 10, "used": 0, "reset": reset},
                    }
                },
            )
        if path == "/search/code":
            return self._search_code(params)
        if path == "/search/repositories":
            self._record("search_repos", params["q"])
            topic = params["q"].removeprefix("topic:")
            names = self.topics.get(topic, []) if params.get("page", "1") == "1" else []
            return httpx.Response(200, json={"total_count": len(names), "items": [self.repos[n].to_api() for n in names]})

        if parts[0] != "repos" or len(parts) < 3:
            return httpx.Response(404, json={"message": "Not Found"})
        repo = self.repos.get(f"{parts[1]}/{parts[2]}")
        if repo is None:
            self._record("missing", path)
            return httpx.Response(404, json={"message": "Not Found"})

        if len(parts) == 3:
            self._record("repo", repo.full_name)
            return httpx.Response(200, json=repo.to_api())
        if parts[3] == "commits":
            return self._commits(repo, params)
        if parts[3] == "contents":
            return self._contents(repo, "/".join(parts[4:]))
        return httpx.Response(404, json={"message": "Not Found"})

    def _search_code(self, params) -> httpx.Response:
        query = params["q"]
        self._record("search_code", query)
        if self.code_search_limited:
            return httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": str(int(time.time()) + 3600)},
                json={"message": "API rate limit exceeded"},
            )
        if params.get("page", "1") != "1":
            return httpx.Response(200, json={"total_count": 0, "items": []})
        match = re.search(r"repo:(\S+)", query)
        if match:
            repo = self.repos[match.group(1)]
            items = [
                {"path": p, "repository": {"full_name": repo.full_name}}
                for p in sorted(repo.files)
                if posixpath.basename(p) == "SKILL.md"
            ]
        else:
            items = [{"path": "SKILL.md", "repository": {"full_name": name}} for name in self.global_hits]
        return httpx.Response(200, json={"total_count": len(items), "items": items})

    def _commits(self, repo: FakeRepo, params) -> httpx.Response:
        path = params.get("path")
        if path is None:
            self._record("latest_commit", repo.full_name)
            sha = repo.head
        else:
            self._record("path_commit", f"{repo.full_name}/{path}")
            sha = repo.dir_commits.get(path, DIR_COMMIT)
        return httpx.Response(200, json=[{"sha": sha, "commit": {"committer": {"date": "2024-02-02T00:00:00Z"}}}])

    def _contents(self, repo: FakeRepo, path: str) -> httpx.Response:
        if path in repo.files:
            self._record("skill_file" if posixpath.basename(path) == "SKILL.md" else "file", path)
            content = base64.b64encode(repo.files[path].encode()).decode()
            return httpx.Response(200, json={"type": "file", "name": posixpath.basename(path), "path": path, "content": content})
        listing = f"{repo.full_name}/{path}"
        self._record("listing", listing)
        if listing in self.failing_listings:
            self.failing_listings.discard(listing)
            return httpx.Response(500, json={"message": "Server Error"})
        children = repo.children(path)
        if not children:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(200, json=children)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def skill_md():
    return _skill_md


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def make_settings(tmp_path):
    def factory(**overrides) -> Settings:
        values = {
            "github_token": "token-a",
            "extra_token_1": "token-b",
            "extra_token_2": None,
            "output_path": tmp_path / "market" / "skills.json",
            "cache_path": tmp_path / ".crawler-cache.json",
            "local_skills_path": tmp_path / "skills",
            "repositories_path": tmp_path / "repositories.yml",
            "zip_output_dir": tmp_path / "market" / "zips",
            "r2_endpoint": None,
            "r2_access_key_id": None,
            "r2_secret_access_key": None,
            "test_mode": False,
            "global_discovery": False,
            "generate_zips": False,
            "search_topics": ["agent-skills"],
            "max_pages": 1,
            "wait_after_search": 0,
            "wait_after_topic_search": 0,
            "max_execution_time": 3600,
            "save_buffer": 0,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def make_crawler(fake_github: FakeGitHub):
    def factory(settings: Settings, deadline: ExecutionDeadline | None = None, uploader=None) -> Crawler:
        pool = ClientPool(
            settings.tokens,
            clock=time.time,
            sleep=_no_sleep,
            transport=httpx.MockTransport(fake_github.handler),
        )
        return Crawler(
            settings,
            pool=pool,
            deadline=deadline,
            queue=TaskQueue(concurrency=2, interval_cap=0),
            uploader=uploader,
        )

    return factory


@pytest.fixture
def deadline_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def deadline(deadline_clock: FakeClock) -> ExecutionDeadline:
    return ExecutionDeadline(3600, 60, clock=deadline_clock)
