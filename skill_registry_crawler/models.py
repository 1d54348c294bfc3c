"""Data models and constants for the skill registry crawler."""

from dataclasses import dataclass, field
from enum import Enum

GITHUB_SEARCH_RESULT_LIMIT = 1000  # GitHub Search API hard limit per query
CODE_SEARCH_PER_PAGE = 100
DEFAULT_VERSION = "0.0.0"
LOCAL_COMMIT = "local"
MIN_AGENT_VERSION = "0.1.0"


class BucketClass(str, Enum):
    """Independent GitHub quota classes."""

    CORE = "core"
    SEARCH = "search"
    CODE_SEARCH = "code_search"


class SkillSource(str, Enum):
    """Discovery channel a manifest came from, in priority order."""

    LOCAL = "local"
    PRIORITY = "priority"
    GITHUB = "github"

    @property
    def rank(self) -> int:
        return _SOURCE_RANK[self]


_SOURCE_RANK = {SkillSource.LOCAL: 0, SkillSource.PRIORITY: 1, SkillSource.GITHUB: 2}


@dataclass
class ApiResponse:
    """Response from a single GitHub REST API call."""

    status: int
    body: dict | list
    headers: dict = field(default_factory=dict)


@dataclass
class RepoInfo:
    """Repository fields shared by every skill in that repository."""

    owner: str
    name: str
    branch: str = "main"
    stars: int = 0
    forks: int = 0
    last_updated: str | None = None
    fork: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}"

    @property
    def download_url(self) -> str:
        return f"https://api.github.com/repos/{self.owner}/{self.name}/zipball/{self.branch}"

    def stats(self) -> dict:
        return {"stars": self.stars, "forks": self.forks, "lastUpdated": self.last_updated}

    def to_dict(self) -> dict:
        """Shape used in the registry's `repositories` map."""
        return {"url": self.url, "branch": self.branch, **self.stats()}

    @classmethod
    def from_api(cls, data: dict) -> "RepoInfo":
        """Build from a GitHub repository payload (repos.get or search item)."""
        return cls(
            owner=data["owner"]["login"],
            name=data["name"],
            branch=data.get("default_branch") or "main",
            stars=data.get("stargazers_count") or 0,
            forks=data.get("forks_count") or 0,
            last_updated=data.get("pushed_at"),
            fork=bool(data.get("fork")),
        )

    @classmethod
    def from_dict(cls, full_name: str, data: dict) -> "RepoInfo":
        """Build from a registry `repositories` entry or a cached repo entry."""
        owner, _, name = full_name.partition("/")
        stats = data.get("stats", data)
        return cls(
            owner=owner,
            name=name,
            branch=data.get("branch") or "main",
            stars=stats.get("stars") or 0,
            forks=stats.get("forks") or 0,
            last_updated=stats.get("lastUpdated"),
        )


@dataclass
class Manifest:
    """A fully dereferenced skill record."""

    id: str
    name: str
    description: str
    categories: list[str]
    author: str
    repo: RepoInfo
    path: str
    files: list[str] = field(default_factory=list)
    version: str = DEFAULT_VERSION
    commit_hash: str = ""
    tags: list[str] = field(default_factory=list)
    compatibility: dict | None = None
    skill_zip_url: str | None = None
    source: SkillSource = SkillSource.GITHUB

    @property
    def display_name(self) -> str:
        return display_name(self.name)

    @property
    def details(self) -> str:
        return f"{self.repo.url}/blob/{self.repo.branch}/{skill_file_path(self.path)}"

    def to_dict(self) -> dict:
        """Full registry form, with every derivable field spelled out."""
        data = {
            "id": self.id,
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "categories": list(self.categories),
            "details": self.details,
            "author": {
                "name": self.author,
                "url": f"https://github.com/{self.author}",
                "avatar": f"https://github.com/{self.author}.png",
            },
            "version": self.version,
            "commitHash": self.commit_hash,
            "tags": list(self.tags),
            "repository": {
                "url": self.repo.url,
                "branch": self.repo.branch,
                "path": self.path,
                "downloadUrl": self.repo.download_url,
            },
            "files": list(self.files),
            "stats": self.repo.stats(),
            "source": self.source.value,
        }
        if self.compatibility:
            data["compatibility"] = dict(self.compatibility)
        if self.skill_zip_url:
            data["skillZipUrl"] = self.skill_zip_url
        return data


def display_name(name: str | None) -> str:
    """Capitalize each word of a hyphen/underscore separated skill name."""
    if not name:
        return "Unknown Skill"
    words = name.replace("_", "-").split("-")
    return " ".join(w[:1].upper() + w[1:] for w in words)


def skill_file_path(skill_path: str, filename: str = "SKILL.md") -> str:
    return f"{skill_path}/{filename}" if skill_path else filename
