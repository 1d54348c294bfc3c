"""Small helpers shared across the crawler."""

import posixpath
import re

_REPO_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+)")


def generate_skill_id(owner: str, repo: str, skill_path: str) -> str:
    """Skill identifier, also used as the skill cache key."""
    if skill_path and skill_path != ".":
        return f"{owner}/{repo}/{skill_path}"
    return f"{owner}/{repo}"


def determine_skill_path(file_path: str) -> str:
    """Directory holding a SKILL.md file, "" for the repository root."""
    directory = posixpath.dirname(file_path)
    return "" if directory in ("", ".") else directory


def parse_repo_ref(ref: str | None) -> tuple[str, str] | None:
    """Parse "owner/repo" or a github.com URL into (owner, repo)."""
    if not ref or not isinstance(ref, str):
        return None
    match = _REPO_URL_RE.search(ref)
    if match:
        return match.group(1), match.group(2)
    if "github.com" in ref:
        return None
    parts = [p for p in ref.strip().split("/") if p]
    if len(parts) >= 2:
        return parts[0], parts[1]
    return None


def relative_to_skill(file_path: str, skill_path: str) -> str:
    normalized = file_path.replace("\\", "/")
    if skill_path and normalized.startswith(skill_path + "/"):
        return normalized[len(skill_path) + 1 :]
    return normalized

