"""Downloadable zip packages, one per skill."""

import base64
import hashlib
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path

from ..context import CrawlContext
from ..github_api import ApiError, DeadlineReached, NotFoundError, get_contents
from ..models import Manifest, SkillSource
from ..utils import relative_to_skill

logger = logging.getLogger(__name__)


@dataclass
class ZipResult:
    zip_path: str
    zip_hash: str


def zip_file_name(owner: str, repo: str, skill_name: str) -> str:
    return f"{owner}-{repo}-{skill_name}.zip"


def zip_url(base_url: str, owner: str, repo: str, skill_name: str) -> str:
    return f"{base_url.rstrip('/')}/{zip_file_name(owner, repo, skill_name)}"


def zip_entry_name(file_path: str, skill_path: str, skill_name: str) -> str:
    """Archive path with the skill name as the single top-level directory."""
    return f"{skill_name}/{relative_to_skill(file_path, skill_path)}"


def file_hash(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(65536), b""):
            digest.update(block)
    return digest.hexdigest()


def write_zip(zip_path: Path, files: list[tuple[str, bytes]], skill_name: str, skill_path: str) -> None:
    zip_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
        for file_path, content in files:
            zf.writestr(zip_entry_name(file_path, skill_path, skill_name), content)


def is_local(ctx: CrawlContext, manifest: Manifest) -> bool:
    return manifest.source == SkillSource.LOCAL or manifest.repo.full_name == ctx.settings.this_repo_full_name


def collect_local_files(repo_root: Path, manifest: Manifest) -> list[tuple[str, bytes]]:
    """Read skill files from the registry checkout. Entries may name files or directories."""
    collected: dict[str, bytes] = {}
    for entry in manifest.files or [manifest.path]:
        path = repo_root / entry
        if path.is_file():
            collected[entry] = path.read_bytes()
        elif path.is_dir():
            for child in sorted(p for p in path.rglob("*") if p.is_file()):
                collected[child.relative_to(repo_root).as_posix()] = child.read_bytes()
    return list(collected.items())


async def _fetch_remote_path(ctx: CrawlContext, manifest: Manifest, path: str, collected: dict[str, bytes]) -> None:
    repo = manifest.repo
    try:
        data = await get_contents(ctx.pool, repo.owner, repo.name, path, ref=repo.branch, should_stop=ctx.should_stop)
    except (NotFoundError, ApiError) as e:
        logger.warning("Failed to fetch %s/%s: %s", repo.full_name, path, e)
        return

    if isinstance(data, list):
        for item in data:
            if item.get("type") in ("file", "dir"):
                await _fetch_remote_path(ctx, manifest, item["path"], collected)
        return
    if data.get("type") != "file":
        return
    if not data.get("content"):
        # Files over 1MB come back without inline content
        logger.warning("Skipping %s/%s: content not returned by the API", repo.full_name, path)
        return
    collected[data.get("path") or path] = base64.b64decode(data["content"])


async def collect_remote_files(ctx: CrawlContext, manifest: Manifest) -> list[tuple[str, bytes]]:
    collected: dict[str, bytes] = {}
    for entry in manifest.files or [manifest.path]:
        if ctx.should_stop():
            raise DeadlineReached(f"{manifest.repo.full_name}/{entry}")
        await _fetch_remote_path(ctx, manifest, entry, collected)
    return list(collected.items())


async def generate_skill_zip(ctx: CrawlContext, manifest: Manifest) -> ZipResult:
    """Build the skill's zip under `zip_output_dir` and hash it.

    Deadline and quota exhaustion propagate from the remote fetches.
    """
    settings = ctx.settings
    output_dir = Path(settings.zip_output_dir)
    zip_path = output_dir / zip_file_name(manifest.repo.owner, manifest.repo.name, manifest.name)

    if is_local(ctx, manifest):
        files = collect_local_files(Path(settings.local_skills_path).parent, manifest)
    else:
        files = await collect_remote_files(ctx, manifest)
    if not files:
        raise FileNotFoundError(f"No files collected for {manifest.id}")

    write_zip(zip_path, files, manifest.name, manifest.path)
    zip_hash = file_hash(zip_path)
    logger.info("Generated %s (hash: %s)", zip_path.name, zip_hash[:8])
    return ZipResult(zip_path=zip_path.as_posix(), zip_hash=zip_hash)
