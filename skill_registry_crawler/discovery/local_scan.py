"""Phase 1: skills submitted directly to the registry repository."""

import logging
import subprocess
from collections.abc import Callable
from pathlib import Path

from ..models import LOCAL_COMMIT, Manifest, RepoInfo, SkillSource
from ..settings import Settings
from ..skill_parser import build_manifest, parse_skill_content

logger = logging.getLogger(__name__)


def local_dir_commit_hash(root: Path, dir_name: str) -> str:
    """Short hash of the last commit touching `dir_name`, LOCAL_COMMIT when git can't say."""
    try:
        result = subprocess.run(
            ["git", "log", "-1", "--format=%H", "--", dir_name],
            cwd=root,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return LOCAL_COMMIT
    sha = result.stdout.strip() if result.returncode == 0 else ""
    return sha[:12] if sha else LOCAL_COMMIT


def list_files_recursive(directory: Path) -> list[Path]:
    return sorted(p for p in directory.rglob("*") if p.is_file())


def scan_local_skills(settings: Settings, should_stop: Callable[[], bool] | None = None) -> list[Manifest]:
    root = Path(settings.local_skills_path)
    if not root.is_dir():
        logger.info("Local skills directory %s not found.", root)
        return []

    logger.info("Scanning local skills in %s...", root)
    repo = RepoInfo(owner=settings.this_repo_owner, name=settings.this_repo_name)
    skills = []
    for skill_dir in sorted(p for p in root.iterdir() if p.is_dir() and not p.name.startswith(".")):
        if should_stop is not None and should_stop():
            break
        skill_file = skill_dir / settings.skill_filename
        if not skill_file.is_file():
            continue
        try:
            parsed = parse_skill_content(skill_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Error processing %s: %s", skill_dir.name, e)
            continue
        if not parsed.is_valid:
            logger.info("Skipped %s: %s", skill_dir.name, parsed.invalid_reason)
            continue

        # Paths are relative to the registry repository root
        skill_path = f"{root.name}/{skill_dir.name}"
        files = [f"{skill_path}/{f.relative_to(skill_dir).as_posix()}" for f in list_files_recursive(skill_dir)]
        commit = local_dir_commit_hash(root, skill_dir.name)
        skills.append(
            build_manifest(
                repo, skill_path, parsed, files, commit, SkillSource.LOCAL, settings.max_files_per_skill
            )
        )

    logger.info("Total local skills found: %d", len(skills))
    return skills
