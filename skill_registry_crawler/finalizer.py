"""Sort, deduplicate, compact, chunk and write the published registry."""

import json
import logging
import os
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

from .compaction import compact_skill
from .models import Manifest, SkillSource

logger = logging.getLogger(__name__)

CHUNK_PREFIX = "skills-"


def sort_skills(skills: list[Manifest]) -> list[Manifest]:
    """Local first, then priority, then remote; more stars first within a source."""
    return sorted(skills, key=lambda m: (m.source.rank, -m.repo.stars))


def skill_signature(manifest: Manifest) -> str:
    return f"{(manifest.name or '').lower().strip()}::{(manifest.description or '').lower().strip()}"


def dedupe_skills(skills: list[Manifest]) -> list[Manifest]:
    """Keep the first skill per (name, description) signature in sorted order."""
    seen: set[str] = set()
    kept = []
    for manifest in sort_skills(skills):
        signature = skill_signature(manifest)
        if signature in seen:
            logger.info("Duplicate removed: %s (%s)", manifest.name, manifest.id)
            continue
        seen.add(signature)
        kept.append(manifest)
    removed = len(skills) - len(kept)
    if removed:
        logger.info("Removed %d duplicate skill(s) by name+description", removed)
    return kept


def build_meta(
    skills: list[Manifest],
    api_version: str,
    rate_limited: bool,
    timed_out: bool,
    execution_time_ms: int,
) -> dict:
    counts = Counter(m.source for m in skills)
    return {
        "generatedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "totalSkills": len(skills),
        "localSkills": counts[SkillSource.LOCAL],
        "prioritySkills": counts[SkillSource.PRIORITY],
        "remoteSkills": counts[SkillSource.GITHUB],
        "apiVersion": api_version,
        "rateLimited": rate_limited,
        "timedOut": timed_out,
        "executionTimeMs": execution_time_ms,
    }


def compact_output(skills: list[Manifest], meta: dict) -> dict:
    """Registry with shared repository fields moved to a side map."""
    repositories: dict[str, dict] = {}
    for manifest in skills:
        repositories.setdefault(manifest.repo.full_name, manifest.repo.to_dict())
    return {
        "meta": {**meta, "compact": True},
        "repositories": repositories,
        "skills": [compact_skill(m) for m in skills],
    }


def full_output(skills: list[Manifest], meta: dict) -> dict:
    return {"meta": dict(meta), "skills": [m.to_dict() for m in skills]}


def chunk_file_name(index: int) -> str:
    return f"{CHUNK_PREFIX}{index}.json"


def split_by_repo(output: dict, chunk_size: int) -> tuple[dict, list[dict]]:
    """Partition a compact registry into repository-contiguous chunks.

    A repository's skills always land in one chunk, even when that alone
    exceeds `chunk_size`. Each chunk carries only the repositories it references.
    """
    skills = output["skills"]
    if not chunk_size or len(skills) <= chunk_size:
        return output, []

    groups: dict[str, list[dict]] = {}
    for skill in skills:
        groups.setdefault(skill["repo"], []).append(skill)

    partitions: list[list[dict]] = []
    current: list[dict] = []
    for group in groups.values():
        if current and len(current) + len(group) > chunk_size:
            partitions.append(current)
            current = []
        current.extend(group)
    if current:
        partitions.append(current)

    repositories = output["repositories"]

    def referenced(chunk_skills: list[dict]) -> dict:
        return {s["repo"]: repositories[s["repo"]] for s in chunk_skills if s["repo"] in repositories}

    names = [chunk_file_name(i) for i in range(1, len(partitions))]
    meta = dict(output["meta"])
    if names:
        meta["chunks"] = names
    main = {"meta": meta, "repositories": referenced(partitions[0]), "skills": partitions[0]}
    chunks = [{"repositories": referenced(p), "skills": p} for p in partitions[1:]]
    return main, chunks


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    os.replace(tmp, path)


def write_registry(output_path: Path, main: dict, chunks: list[dict]) -> list[Path]:
    """Write the main file and numbered chunks beside it, removing stale chunks."""
    output_path = Path(output_path)
    if output_path.parent.exists():
        for stale in output_path.parent.glob(f"{CHUNK_PREFIX}*.json"):
            stale.unlink()
    _write_json(output_path, main)
    written = [output_path]
    for i, chunk in enumerate(chunks, 1):
        path = output_path.parent / chunk_file_name(i)
        _write_json(path, chunk)
        written.append(path)
    return written


def finalize(
    skills: list[Manifest],
    output_path: Path,
    api_version: str,
    rate_limited: bool,
    timed_out: bool,
    execution_time_ms: int,
    compact: bool = True,
    chunk_size: int = 500,
) -> tuple[dict, list[Path]]:
    """Dedupe, build and write the registry. Returns (main document, written paths)."""
    skills = dedupe_skills(skills)
    meta = build_meta(skills, api_version, rate_limited, timed_out, execution_time_ms)
    if compact:
        main, chunks = split_by_repo(compact_output(skills, meta), chunk_size)
    else:
        main, chunks = full_output(skills, meta), []
    written = write_registry(output_path, main, chunks)
    logger.info("Saved %d skills to %s (%d file(s))", len(skills), output_path, len(written))
    return main, written


def format_summary(meta: dict) -> str:
    """Human readable run summary with incomplete-crawl warnings."""
    elapsed = meta.get("executionTimeMs", 0) // 1000
    lines = [
        "=" * 50,
        "Summary",
        "=" * 50,
        f"  Execution time:        {elapsed // 60}m {elapsed % 60}s",
        f"  Local skills (PR):     {meta['localSkills']}",
        f"  Priority repo skills:  {meta['prioritySkills']}",
        f"  GitHub search skills:  {meta['remoteSkills']}",
        f"  {'-' * 30}",
        f"  Total skills:          {meta['totalSkills']}",
    ]
    if meta.get("rateLimited") or meta.get("timedOut"):
        lines.append("")
        if meta.get("rateLimited"):
            lines.append("  WARNING: crawl incomplete, GitHub API rate limit reached.")
        if meta.get("timedOut"):
            lines.append("  WARNING: crawl incomplete, execution timeout reached.")
        lines.append("    Run again later to collect more skills.")
    return "\n".join(lines)
