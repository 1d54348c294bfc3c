"""Unit tests for zip packaging and R2 keys."""

import asyncio
import zipfile
from pathlib import Path
from unittest.mock import MagicMock

from ..models import Manifest, RepoInfo, SkillSource
from .r2 import R2Uploader, build_r2_key, content_type_for
from .zips import collect_local_files, file_hash, write_zip, zip_entry_name, zip_file_name, zip_url


def describe_naming():
    def it_names_zips_after_owner_repo_and_skill():
        assert zip_file_name("acme", "skills", "pdf") == "acme-skills-pdf.zip"
        assert zip_url("https://cdn.example/zips/", "acme", "skills", "pdf") == "https://cdn.example/zips/acme-skills-pdf.zip"
        assert build_r2_key("zips/", "acme", "skills", "pdf") == "zips/acme-skills-pdf.zip"

    def it_nests_entries_under_the_skill_name():
        assert zip_entry_name("skills/pdf/lib/a.py", "skills/pdf", "pdf") == "pdf/lib/a.py"
        assert zip_entry_name("SKILL.md", "", "root-skill") == "root-skill/SKILL.md"

    def it_picks_content_types():
        assert content_type_for("skills.json") == "application/json; charset=utf-8"
        assert content_type_for("zips/a.zip") == "application/zip"


def describe_write_zip():
    def it_writes_and_hashes(tmp_path: Path):
        zip_path = tmp_path / "out" / "a.zip"

        write_zip(zip_path, [("skills/pdf/SKILL.md", b"hello")], "pdf", "skills/pdf")

        with zipfile.ZipFile(zip_path) as zf:
            assert zf.read("pdf/SKILL.md") == b"hello"
        assert len(file_hash(zip_path)) == 64


def describe_collect_local_files():
    def it_expands_directories(tmp_path: Path):
        skill = tmp_path / "skills" / "pdf"
        (skill / "lib").mkdir(parents=True)
        (skill / "SKILL.md").write_text("x")
        (skill / "lib" / "a.py").write_text("y")
        manifest = Manifest(
            id="me/market/skills/pdf",
            name="pdf",
            description="d",
            categories=[],
            author="me",
            repo=RepoInfo(owner="me", name="market"),
            path="skills/pdf",
            files=["skills/pdf/SKILL.md", "skills/pdf/lib"],
            source=SkillSource.LOCAL,
        )

        files = collect_local_files(tmp_path, manifest)

        assert sorted(path for path, _ in files) == ["skills/pdf/SKILL.md", "skills/pdf/lib/a.py"]


def describe_R2Uploader():
    def it_is_disabled_without_credentials():
        settings = MagicMock(r2_configured=False)

        assert R2Uploader.from_settings(settings) is None

    def it_puts_objects_with_content_type(tmp_path: Path):
        path = tmp_path / "skills.json"
        path.write_text("{}")
        client = MagicMock()

        asyncio.run(R2Uploader("bucket", "zips/", client).upload(path, "skills.json"))

        client.put_object.assert_called_once_with(
            Bucket="bucket", Key="skills.json", Body=b"{}", ContentType="application/json; charset=utf-8"
        )
