"""SKILL.md parsing, quality validation and keyword categorization."""

import json
import posixpath
import re
from dataclasses import dataclass, field

import yaml

from .models import DEFAULT_VERSION, MIN_AGENT_VERSION, Manifest, RepoInfo, SkillSource
from .utils import generate_skill_id

NAME_RE = re.compile(r"^[a-z0-9][a-z0-9-]*[a-z0-9]$|^[a-z0-9]$")
MIN_DESCRIPTION_LENGTH = 20
MIN_BODY_LENGTH = 500
MAX_FALLBACK_DESCRIPTION = 500

CATEGORY_KEYWORDS = {
    "Development": [
        "code", "coding", "developer", "programming", "debug", "debugging",
        "git", "commit", "repository", "refactor", "test", "testing",
        "api", "sdk", "library", "framework", "typescript", "javascript",
        "python", "rust", "react", "vue", "node", "npm", "build", "compile",
        "lint", "format", "changelog", "version", "deploy", "ci/cd",
    ],
    "Design": [
        "design", "visual", "ui", "ux", "interface", "layout", "style",
        "color", "font", "typography", "brand", "logo", "icon", "image",
        "graphic", "canvas", "art", "creative", "aesthetic", "css",
        "tailwind", "figma", "sketch", "prototype", "wireframe",
    ],
    "Writing": [
        "write", "writing", "content", "blog", "article", "copy", "copywriting",
        "documentation", "docs", "readme", "text", "edit", "editing", "grammar",
        "proofread", "translate", "translation", "summary", "summarize",
    ],
    "Productivity": [
        "productivity", "automation", "automate", "workflow", "task", "todo",
        "schedule", "calendar", "reminder", "organize", "manage", "project",
        "time", "efficiency", "template", "generate", "generator",
    ],
    "Data & Analytics": [
        "data", "database", "sql", "csv", "json", "excel", "spreadsheet",
        "analysis", "analytics", "chart", "graph", "visualization", "report",
        "metrics", "statistics", "etl", "pipeline", "transform",
    ],
    "Documents": [
        "document", "pdf", "docx", "word", "powerpoint", "ppt", "slide",
        "presentation", "spreadsheet", "excel", "file", "export", "import",
        "convert", "merge", "split", "form", "table",
    ],
    "Integration": [
        "connect", "integration", "api", "webhook", "slack", "discord",
        "gmail", "email", "github", "notion", "jira", "trello", "zapier",
        "service", "external", "third-party", "oauth", "sync",
    ],
    "Marketing": [
        "marketing", "seo", "ads", "advertising", "campaign", "social",
        "facebook", "twitter", "linkedin", "instagram", "analytics",
        "conversion", "funnel", "lead", "growth", "engagement", "audience",
    ],
    "Research": [
        "research", "search", "find", "discover", "explore", "investigate",
        "analyze", "study", "learn", "knowledge", "information", "source",
        "citation", "reference", "web", "scrape", "crawl",
    ],
    "AI & ML": [
        "ai", "machine learning", "ml", "llm", "gpt", "claude", "prompt",
        "embedding", "vector", "rag", "agent", "assistant", "chatbot",
        "natural language", "nlp", "model", "inference",
    ],
}


@dataclass
class ParsedSkill:
    """Metadata extracted from one SKILL.md file."""

    name: str | None = None
    description: str | None = None
    version: str | None = None
    tags: list[str] = field(default_factory=list)
    author: str | None = None
    body: str = ""
    is_valid: bool = False
    invalid_reason: str = ""


def categorize_skill(name: str | None, description: str | None) -> list[str]:
    """Labels whose keyword lists match at least twice in name + description."""
    text = f"{name or ''} {description or ''}".lower()
    categories = [
        label for label, keywords in CATEGORY_KEYWORDS.items() if sum(1 for k in keywords if k in text) >= 2
    ]
    return categories or ["Other"]


def normalized_body_length(body: str | None) -> int:
    if not body:
        return 0
    return len(re.sub(r"\s+", " ", body).strip())


def validate_skill_quality(name: str | None, description: str | None, body: str | None) -> tuple[bool, str]:
    """Returns (is_valid, reason). The reason is empty for valid skills."""
    if not name:
        return False, "Missing or invalid name in frontmatter"
    if not NAME_RE.match(name):
        return False, "Name must be lowercase with hyphens"
    if not description or len(description) < MIN_DESCRIPTION_LENGTH:
        return False, f"Missing or too short description (min {MIN_DESCRIPTION_LENGTH} chars)"
    body_length = normalized_body_length(body)
    if body_length < MIN_BODY_LENGTH:
        return (
            False,
            f"Body content is too short (min {MIN_BODY_LENGTH} chars), current length: {body_length}",
        )
    return True, ""


def _split_front_matter(content: str) -> tuple[str, str] | None:
    """(front matter text, body) when content opens with a --- block."""
    if not content.startswith("---"):
        return None
    end = content.find("\n---", 3)
    if end == -1:
        return None
    return content[3:end].strip("\n"), content[end + 4 :].lstrip("-").strip("\n")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _manual_front_matter(text: str) -> dict:
    """Line-by-line `key: value` extraction for front matter YAML rejects."""
    data: dict = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or ":" not in stripped:
            continue
        key, _, value = stripped.partition(":")
        key = key.strip().lower()
        value = _unquote(value.strip())
        if key in ("name", "description", "version"):
            data[key] = value
        elif key == "tags" and value.startswith("[") and value.endswith("]"):
            try:
                data["tags"] = json.loads(value.replace("'", '"'))
            except ValueError:
                data["tags"] = []
    return data


def _from_markdown(content: str) -> dict:
    """Name from the first H1, description from the first paragraph under a heading."""
    data: dict = {}
    lines = [line.strip() for line in content.splitlines()]
    for line in lines:
        if line.startswith("# "):
            name = re.sub(r"[^a-z0-9\s-]", "", line[2:].strip().lower())
            name = re.sub(r"-+", "-", re.sub(r"\s+", "-", name)).strip("-")
            if len(name) >= 2:
                data["name"] = name
            break
    seen_heading = False
    for line in lines:
        if line.startswith("#"):
            seen_heading = True
            continue
        if seen_heading and len(line) > MIN_DESCRIPTION_LENGTH and not line.startswith(("-", "*")):
            data["description"] = line[:MAX_FALLBACK_DESCRIPTION]
            break
    return data


def _as_str(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    return str(value)


def parse_skill_content(content: str) -> ParsedSkill:
    """Extract and validate metadata from raw SKILL.md text."""
    content = content.lstrip("\ufeff")
    front: dict = {}
    body = content

    split = _split_front_matter(content)
    if split is not None:
        raw, body = split
        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError:
            loaded = None
        front = loaded if isinstance(loaded, dict) else _manual_front_matter(raw)
    else:
        front = _from_markdown(content)

    name = _as_str(front.get("name"))
    description = _as_str(front.get("description"))
    version = _as_str(front.get("version"))
    tags = front.get("tags")
    tags = [str(t) for t in tags] if isinstance(tags, list) else []
    author = front.get("author")
    if isinstance(author, dict):
        author = author.get("name")

    if not description and body:
        for line in body.splitlines():
            line = line.strip()
            if line and not line.startswith("#") and len(line) > MIN_DESCRIPTION_LENGTH:
                description = line[:MAX_FALLBACK_DESCRIPTION]
                break

    is_valid, reason = validate_skill_quality(name, description, body)
    return ParsedSkill(
        name=name,
        description=description,
        version=version,
        tags=tags,
        author=_as_str(author),
        body=body,
        is_valid=is_valid,
        invalid_reason=reason,
    )


def build_manifest(
    repo: RepoInfo,
    skill_path: str,
    parsed: ParsedSkill,
    files: list[str],
    commit_hash: str,
    source: SkillSource,
    max_files: int = 20,
) -> Manifest:
    """Manifest for a validated skill found at `skill_path` inside `repo`."""
    name = parsed.name or posixpath.basename(skill_path) or repo.name
    description = parsed.description or f"Skill from {repo.full_name}"
    return Manifest(
        id=generate_skill_id(repo.owner, repo.name, skill_path),
        name=name,
        description=description,
        categories=categorize_skill(name, description),
        author=parsed.author if source == SkillSource.LOCAL and parsed.author else repo.owner,
        repo=repo,
        path=skill_path,
        files=list(files[:max_files]),
        version=parsed.version or DEFAULT_VERSION,
        commit_hash=commit_hash,
        tags=list(parsed.tags),
        compatibility={"minAgentVersion": MIN_AGENT_VERSION} if parsed.version else None,
        source=source,
    )
