"""Lossless compact/expand transforms for skill manifests.

The compact form drops everything derivable from the repository entry it
references (url, branch, stats) or from the name (display name, author links),
so both the cache file and the published registry stay small.
"""

from .models import DEFAULT_VERSION, LOCAL_COMMIT, Manifest, RepoInfo, SkillSource
from .utils import parse_repo_ref, relative_to_skill


def compact_skill(manifest: Manifest) -> dict:
    compact = {
        "id": manifest.id,
        "name": manifest.name,
        "description": manifest.description,
        "categories": list(manifest.categories),
        "author": manifest.author,
        "repo": manifest.repo.full_name,
        "path": manifest.path,
    }
    if manifest.commit_hash and manifest.commit_hash != LOCAL_COMMIT:
        compact["commitHash"] = manifest.commit_hash
    if manifest.version and manifest.version != DEFAULT_VERSION:
        compact["version"] = manifest.version
    if manifest.tags:
        compact["tags"] = list(manifest.tags)
    if manifest.compatibility:
        compact["compatibility"] = dict(manifest.compatibility)
    if manifest.files:
        compact["files"] = [relative_to_skill(f, manifest.path) for f in manifest.files]
    if manifest.skill_zip_url:
        compact["skillZipUrl"] = manifest.skill_zip_url
    return compact


def expand_skill(
    compact: dict,
    repo: RepoInfo | None = None,
    source: SkillSource = SkillSource.GITHUB,
) -> Manifest:
    """Rebuild a full manifest from its compact form and current repository info."""
    repo_id = compact["repo"]
    if repo is None:
        repo = RepoInfo.from_dict(repo_id, {})
    path = compact.get("path") or ""
    author = compact.get("author")
    if isinstance(author, dict):
        author = author.get("name")
    return Manifest(
        id=compact["id"],
        name=compact["name"],
        description=compact["description"],
        categories=list(compact.get("categories") or []),
        author=author or repo.owner,
        repo=repo,
        path=path,
        files=[f"{path}/{f}" if path else f for f in compact.get("files") or []],
        version=compact.get("version") or DEFAULT_VERSION,
        commit_hash=compact.get("commitHash") or "",
        tags=list(compact.get("tags") or []),
        compatibility=compact.get("compatibility"),
        skill_zip_url=compact.get("skillZipUrl"),
        source=source,
    )


def manifest_from_dict(data: dict, source: SkillSource | None = None) -> Manifest:
    """Parse the full registry form (as produced by `Manifest.to_dict`)."""
    repository = data.get("repository") or {}
    owner, name = parse_repo_ref(repository.get("url")) or parse_repo_ref(data["id"]) or ("", "")
    stats = data.get("stats") or {}
    repo = RepoInfo(
        owner=owner,
        name=name,
        branch=repository.get("branch") or "main",
        stars=stats.get("stars") or 0,
        forks=stats.get("forks") or 0,
        last_updated=stats.get("lastUpdated"),
    )
    author = data.get("author")
    if isinstance(author, dict):
        author = author.get("name")
    if source is None:
        source = SkillSource(data.get("source") or SkillSource.GITHUB.value)
    return Manifest(
        id=data["id"],
        name=data["name"],
        description=data.get("description") or "",
        categories=list(data.get("categories") or []),
        author=author or owner,
        repo=repo,
        path=repository.get("path") or "",
        files=list(data.get("files") or []),
        version=data.get("version") or DEFAULT_VERSION,
        commit_hash=data.get("commitHash") or "",
        tags=list(data.get("tags") or []),
        compatibility=data.get("compatibility"),
        skill_zip_url=data.get("skillZipUrl"),
        source=source,
    )
