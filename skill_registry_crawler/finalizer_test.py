"""Unit tests for registry finalization."""

import json
from pathlib import Path

from .finalizer import (
    build_meta,
    compact_output,
    dedupe_skills,
    finalize,
    format_summary,
    sort_skills,
    split_by_repo,
)
from .models import Manifest, RepoInfo, SkillSource


def _skill(owner: str, repo: str, name: str, stars: int = 0, source=SkillSource.GITHUB, description=None) -> Manifest:
    return Manifest(
        id=f"{owner}/{repo}/skills/{name}",
        name=name,
        description=description or f"The {name} skill does useful things",
        categories=["Other"],
        author=owner,
        repo=RepoInfo(owner=owner, name=repo, stars=stars),
        path=f"skills/{name}",
        files=[f"skills/{name}/SKILL.md"],
        commit_hash="abc",
        source=source,
    )


def _meta(skills):
    return build_meta(skills, "1.1", False, False, 1000)


def describe_sort_skills():
    def it_orders_by_source_then_stars():
        skills = [
            _skill("a", "r", "one", stars=5),
            _skill("b", "r", "two", stars=50),
            _skill("c", "r", "three", source=SkillSource.PRIORITY),
            _skill("d", "r", "four", source=SkillSource.LOCAL),
        ]

        assert [s.name for s in sort_skills(skills)] == ["four", "three", "two", "one"]


def describe_dedupe_skills():
    def it_keeps_the_highest_ranked_duplicate(caplog):
        local = _skill("me", "market", "pdf", source=SkillSource.LOCAL, description="Same text here for both")
        remote = _skill("x", "y", "PDF ", stars=1000, description="same text here for both ")

        with caplog.at_level("INFO"):
            kept = dedupe_skills([remote, local])

        assert kept == [local]
        assert "Duplicate removed" in caplog.text

    def it_keeps_the_more_popular_copy_between_equal_sources():
        fork = _skill("fork", "skills", "pdf", stars=3, description="Fill in PDF forms")
        upstream = _skill("acme", "skills", "pdf", stars=300, description="Fill in PDF forms")

        assert dedupe_skills([fork, upstream]) == [upstream]

    def it_keeps_distinct_skills():
        skills = [_skill("a", "r", "one"), _skill("a", "r", "two")]

        assert len(dedupe_skills(skills)) == 2


def describe_split_by_repo():
    def it_keeps_each_repository_in_one_chunk():
        skills = [_skill("o", f"r{i // 3}", f"s{i}") for i in range(9)]
        output = compact_output(skills, _meta(skills))

        main, chunks = split_by_repo(output, 4)

        parts = [main] + chunks
        assert sum(len(p["skills"]) for p in parts) == 9
        for part in parts:
            repos = {s["repo"] for s in part["skills"]}
            assert set(part["repositories"]) == repos
        seen = [repo for part in parts for repo in {s["repo"] for s in part["skills"]}]
        assert len(seen) == len(set(seen))
        assert main["meta"]["chunks"] == [f"skills-{i}.json" for i in range(1, len(parts))]

    def it_allows_an_oversized_repository():
        skills = [_skill("o", "big", f"s{i}") for i in range(6)]
        output = compact_output(skills, _meta(skills))

        main, chunks = split_by_repo(output, 2)

        assert len(main["skills"]) == 6
        assert chunks == []

    def it_leaves_small_registries_alone():
        skills = [_skill("o", "r", "a")]
        output = compact_output(skills, _meta(skills))

        assert split_by_repo(output, 500) == (output, [])


def describe_finalize():
    def it_writes_compact_output_and_chunks(tmp_path: Path):
        skills = [_skill("o", f"r{i}", f"s{i}") for i in range(5)]
        output_path = tmp_path / "market" / "skills.json"
        (tmp_path / "market").mkdir()
        (tmp_path / "market" / "skills-9.json").write_text("{}")

        main, written = finalize(skills, output_path, "1.1", False, True, 1234, compact=True, chunk_size=2)

        assert [p.name for p in written] == ["skills.json", "skills-1.json", "skills-2.json"]
        assert not (tmp_path / "market" / "skills-9.json").exists()
        data = json.loads(output_path.read_text())
        assert data["meta"]["compact"] is True
        assert data["meta"]["timedOut"] is True
        assert data["meta"]["totalSkills"] == 5
        assert data["meta"]["remoteSkills"] == 5
        assert main == data

    def it_writes_full_output_when_not_compact(tmp_path: Path):
        output_path = tmp_path / "skills.json"

        finalize([_skill("o", "r", "a")], output_path, "1.1", False, False, 0, compact=False)

        data = json.loads(output_path.read_text())
        assert "compact" not in data["meta"]
        assert data["skills"][0]["repository"]["url"] == "https://github.com/o/r"


def describe_format_summary():
    def it_warns_about_incomplete_crawls():
        meta = _meta([_skill("o", "r", "a")])
        meta["rateLimited"] = True

        summary = format_summary(meta)

        assert "rate limit reached" in summary
        assert "Total skills:          1" in summary

    def it_is_quiet_for_complete_crawls():
        assert "WARNING" not in format_summary(_meta([]))
