"""Unit tests for deadline-aware post-processing."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

from ..cache import CrawlerCache
from ..context import CrawlContext
from ..deadline import ExecutionDeadline
from ..models import Manifest, RepoInfo
from .runner import ZIPS, run_post_processing


def make_manifest(name: str, commit: str) -> Manifest:
    return Manifest(
        id=f"acme/skills/{name}",
        name=name,
        description="d",
        categories=[],
        author="acme",
        repo=RepoInfo(owner="acme", name="skills"),
        path=name,
        files=[f"{name}/SKILL.md"],
        commit_hash=commit,
    )


def describe_run_post_processing():
    def it_defers_only_stale_zips_when_the_deadline_has_tripped(tmp_path: Path):
        settings = MagicMock(zip_output_dir=tmp_path, zip_base_url="https://cdn.example/zips")
        deadline = MagicMock(spec=ExecutionDeadline)
        deadline.should_stop.return_value = True
        cache = CrawlerCache()
        current = make_manifest("current", "c1")
        stale = make_manifest("stale", "c2")
        for manifest in (current, stale):
            cache.set_skill(manifest.id, manifest)
        zip_path = tmp_path / "acme-skills-current.zip"
        zip_path.write_bytes(b"zip")
        cache.set_zip(current.id, zip_path.as_posix(), "hash")
        ctx = CrawlContext(settings, MagicMock(), cache, deadline, MagicMock())

        stats = asyncio.run(run_post_processing(ctx, [current, stale]))

        assert [item.key for item in cache.pending(ZIPS)] == ["acme/skills/stale"]
        assert stats.reused == 1
        assert stats.deferred_zips == 1
        assert current.skill_zip_url == "https://cdn.example/zips/acme-skills-current.zip"
        assert stale.skill_zip_url is None
