"""Two-level incremental crawl cache persisted as a single JSON document.

Repository entries record the latest commit seen and the keys of the skills
found at that commit; skill entries hold the directory-level commit hash and
a compacted manifest. A repository is only trusted when every skill key it
lists still resolves.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .compaction import compact_skill, expand_skill, manifest_from_dict
from .models import Manifest, RepoInfo, SkillSource

logger = logging.getLogger(__name__)

CACHE_VERSION = 3

MIGRATE = "migrate"
DISCARD = "discard"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class CachedSkill:
    commit_hash: str
    manifest: Manifest
    zip_path: str | None = None
    zip_hash: str | None = None


@dataclass
class CachedRepo:
    commit_hash: str
    skill_keys: list[str]
    repo: RepoInfo
    skills: list[Manifest] = field(default_factory=list)
    fetched_at: str | None = None


@dataclass
class PendingItem:
    """Post-processing work deferred by the execution deadline."""

    key: str
    repo: str
    path: str
    commit_hash: str
    name: str
    zip_path: str | None = None

    def to_dict(self) -> dict:
        data = {
            "key": self.key,
            "repo": self.repo,
            "path": self.path,
            "commitHash": self.commit_hash,
            "name": self.name,
        }
        if self.zip_path:
            data["zipPath"] = self.zip_path
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PendingItem":
        return cls(
            key=data["key"],
            repo=data.get("repo") or "",
            path=data.get("path") or "",
            commit_hash=data.get("commitHash") or "",
            name=data.get("name") or "",
            zip_path=data.get("zipPath"),
        )

    @classmethod
    def from_manifest(cls, manifest: Manifest, zip_path: str | None = None) -> "PendingItem":
        return cls(
            key=manifest.id,
            repo=manifest.repo.full_name,
            path=manifest.path,
            commit_hash=manifest.commit_hash,
            name=manifest.name,
            zip_path=zip_path,
        )


def _migrate_v1(data: dict) -> dict:
    """v1 stored full manifests, inline under repos and as `manifest` on skills."""
    skills = {}
    for key, entry in (data.get("skills") or {}).items():
        manifest = entry.get("manifest")
        if not manifest:
            continue
        migrated = {
            "commitHash": entry.get("commitHash") or manifest.get("commitHash") or "",
            "skill": compact_skill(manifest_from_dict(manifest)),
            "fetchedAt": entry.get("fetchedAt"),
        }
        for zip_field in ("zipPath", "zipHash"):
            if entry.get(zip_field):
                migrated[zip_field] = entry[zip_field]
        skills[key] = migrated

    repos = {}
    for full_name, entry in (data.get("repos") or {}).items():
        keys = list(entry.get("skillKeys") or [])
        for manifest in entry.get("skills") or []:
            compact = compact_skill(manifest_from_dict(manifest))
            key = compact["id"]
            skills.setdefault(key, {"commitHash": compact.get("commitHash", ""), "skill": compact})
            if key not in keys:
                keys.append(key)
        repos[full_name] = {
            "commitHash": entry.get("commitHash") or "",
            "skillKeys": keys,
            "url": entry.get("url"),
            "branch": entry.get("branch") or "main",
            "stats": entry.get("stats") or {},
            "fetchedAt": entry.get("fetchedAt"),
        }
    return {**data, "version": 2, "repos": repos, "skills": skills}


def _migrate_v2(data: dict) -> dict:
    """v2 had a single pending list of skill keys awaiting zips."""
    pending = []
    for item in data.get("pending") or []:
        if isinstance(item, str):
            repo = "/".join(item.split("/")[:2])
            pending.append({"key": item, "repo": repo, "path": item[len(repo) + 1 :], "commitHash": "", "name": ""})
        else:
            pending.append(item)
    migrated = {k: v for k, v in data.items() if k != "pending"}
    migrated.update(version=3, pendingZips=pending, pendingUploads=[])
    return migrated


MIGRATIONS = {1: _migrate_v1, 2: _migrate_v2}


def migrate(data: dict) -> dict | None:
    """Step an older cache document up to CACHE_VERSION, None if impossible."""
    version = data.get("version")
    while version != CACHE_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            return None
        data = step(data)
        version = data["version"]
    return data


class CrawlerCache:
    """In-memory crawl cache with versioned JSON persistence."""

    def __init__(self, path: Path | None = None, migration: str = MIGRATE):
        self.path = Path(path) if path else None
        self.migration = migration
        self.repos: dict[str, dict] = {}
        self.skills: dict[str, dict] = {}
        self.pending_zips: list[dict] = []
        self.pending_uploads: list[dict] = []
        self.is_dirty = False
        self.hits = 0

    # Persistence

    def load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to load cache %s: %s", self.path, e)
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed cache %s", self.path)
            return

        version = data.get("version")
        if version != CACHE_VERSION:
            if self.migration == MIGRATE:
                migrated = migrate(data)
                if migrated is None:
                    logger.info("Cache version %s cannot be migrated, starting empty", version)
                    self.is_dirty = True
                    return
                logger.info("Migrated cache from version %s to %d", version, CACHE_VERSION)
                data = migrated
                self.is_dirty = True
            else:
                logger.info("Cache version %s != %d, discarding", version, CACHE_VERSION)
                self.is_dirty = True
                return

        self.repos = dict(data.get("repos") or {})
        self.skills = dict(data.get("skills") or {})
        self.pending_zips = list(data.get("pendingZips") or [])
        self.pending_uploads = list(data.get("pendingUploads") or [])
        logger.info(
            "Loaded cache: %d repos, %d skills, %d pending zips, %d pending uploads",
            len(self.repos),
            len(self.skills),
            len(self.pending_zips),
            len(self.pending_uploads),
        )

    def to_dict(self) -> dict:
        return {
            "version": CACHE_VERSION,
            "generatedAt": _now_iso(),
            "repos": self.repos,
            "skills": self.skills,
            "pendingZips": self.pending_zips,
            "pendingUploads": self.pending_uploads,
        }

    def save(self, force: bool = False) -> bool:
        """Atomically write the cache file. Returns whether anything was written."""
        if self.path is None or not (self.is_dirty or force):
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        os.replace(tmp, self.path)
        self.is_dirty = False
        logger.info("Saved cache: %d repos, %d skills", len(self.repos), len(self.skills))
        return True

    # Repository level

    def get_repo(
        self,
        owner: str,
        repo: str,
        repo_info: RepoInfo | None = None,
        source: SkillSource = SkillSource.GITHUB,
    ) -> CachedRepo | None:
        """Cached repository with every listed skill expanded.

        `repo_info` carries current stats; without it the cached stats are used.
        Any skill key that fails to resolve turns the whole entry into a miss.
        """
        full_name = f"{owner}/{repo}"
        entry = self.repos.get(full_name)
        if not entry:
            return None
        if repo_info is None:
            repo_info = RepoInfo.from_dict(full_name, entry)

        skills = []
        for key in entry.get("skillKeys") or []:
            cached = self.get_skill(key, repo_info, source)
            if cached is None:
                logger.info("Cache entry for %s references missing skill %s, treating as miss", full_name, key)
                return None
            skills.append(cached.manifest)

        self.hits += 1
        return CachedRepo(
            commit_hash=entry.get("commitHash") or "",
            skill_keys=list(entry.get("skillKeys") or []),
            repo=repo_info,
            skills=skills,
            fetched_at=entry.get("fetchedAt"),
        )

    def set_repo(self, repo_info: RepoInfo, commit_hash: str, skill_keys: list[str]) -> None:
        self.repos[repo_info.full_name] = {
            "commitHash": commit_hash,
            "skillKeys": list(skill_keys),
            "url": repo_info.url,
            "branch": repo_info.branch,
            "stats": repo_info.stats(),
            "fetchedAt": _now_iso(),
        }
        self.is_dirty = True

    def cached_repo_info(self, full_name: str) -> RepoInfo | None:
        entry = self.repos.get(full_name)
        return RepoInfo.from_dict(full_name, entry) if entry else None

    # Skill level

    def get_skill(
        self,
        key: str,
        repo_info: RepoInfo | None = None,
        source: SkillSource = SkillSource.GITHUB,
    ) -> CachedSkill | None:
        entry = self.skills.get(key)
        if not entry or not entry.get("skill"):
            return None
        compact = entry["skill"]
        if repo_info is None:
            repo_info = self.cached_repo_info(compact["repo"])
        manifest = expand_skill(compact, repo_info, source)
        if entry.get("commitHash"):
            manifest.commit_hash = entry["commitHash"]
        return CachedSkill(
            commit_hash=entry.get("commitHash") or "",
            manifest=manifest,
            zip_path=entry.get("zipPath"),
            zip_hash=entry.get("zipHash"),
        )

    def set_skill(self, key: str, manifest: Manifest, commit_hash: str | None = None) -> None:
        """Store the compacted manifest. Zip info survives only if the commit is unchanged."""
        commit_hash = commit_hash if commit_hash is not None else manifest.commit_hash
        previous = self.skills.get(key) or {}
        entry = {"commitHash": commit_hash, "skill": compact_skill(manifest), "fetchedAt": _now_iso()}
        if previous.get("commitHash") == commit_hash:
            for zip_field in ("zipPath", "zipHash"):
                if previous.get(zip_field):
                    entry[zip_field] = previous[zip_field]
        self.skills[key] = entry
        self.is_dirty = True

    def set_zip(self, key: str, zip_path: str, zip_hash: str, skill_zip_url: str | None = None) -> None:
        entry = self.skills.get(key)
        if entry is None:
            return
        entry["zipPath"] = zip_path
        entry["zipHash"] = zip_hash
        if skill_zip_url:
            entry["skill"]["skillZipUrl"] = skill_zip_url
        self.is_dirty = True

    def needs_regeneration(self, key: str, current_revision: str) -> bool:
        entry = self.skills.get(key)
        if not entry or not entry.get("zipPath"):
            return True
        return entry.get("commitHash") != current_revision

    # Pending queues

    def _queue(self, name: str) -> list[dict]:
        return self.pending_zips if name == "zips" else self.pending_uploads

    def add_pending(self, name: str, item: PendingItem) -> None:
        queue = self._queue(name)
        if any(entry["key"] == item.key for entry in queue):
            return
        queue.append(item.to_dict())
        self.is_dirty = True

    def remove_pending(self, name: str, key: str) -> None:
        queue = self._queue(name)
        kept = [entry for entry in queue if entry["key"] != key]
        if len(kept) != len(queue):
            queue[:] = kept
            self.is_dirty = True

    def clear_pending(self, name: str | None = None) -> None:
        for queue_name in ([name] if name else ["zips", "uploads"]):
            if self._queue(queue_name):
                self._queue(queue_name).clear()
                self.is_dirty = True

    def pending(self, name: str) -> list[PendingItem]:
        return [PendingItem.from_dict(entry) for entry in self._queue(name)]

    def has_pending(self) -> bool:
        return bool(self.pending_zips or self.pending_uploads)
