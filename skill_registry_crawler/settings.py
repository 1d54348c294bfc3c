"""Crawler settings loaded from environment variables and .env file."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TOPICS = [
    "cursor-skill",
    "cursor-skills",
    "cursor-rules",
    "claude-skill",
    "claude-skills",
    "codex-skills",
    "agent-skills",
    "agentic-skills",
    "mcp-server",
    "mcp-tools",
]

MAX_EXTRA_TOKENS = 5


class Settings(BaseSettings):
    """Settings for the skill registry crawler."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Credentials: one primary token plus up to five extra accounts
    github_token: str | None = None
    extra_token_1: str | None = None
    extra_token_2: str | None = None
    extra_token_3: str | None = None
    extra_token_4: str | None = None
    extra_token_5: str | None = None

    # Discovery
    search_topics: list[str] = DEFAULT_TOPICS
    skill_filename: str = "SKILL.md"
    per_page: int = 50
    max_pages: int = 2
    min_fork_stars: int = 10
    global_discovery: bool = True

    # Paths
    output_path: Path = Path("market/skills.json")
    local_skills_path: Path = Path("skills")
    repositories_path: Path = Path("repositories.yml")
    cache_path: Path = Path(".crawler-cache.json")
    cache_migration: str = "migrate"

    # The registry's own repository (hosts local skills, never crawled remotely)
    this_repo_owner: str = "coolzwc"
    this_repo_name: str = "open-skill-market"
    api_version: str = "1.1"

    # Execution budget, in seconds
    max_execution_time: float = 5 * 60 * 60
    save_buffer: float = 2 * 60

    # Task queue
    concurrency: int = 5
    interval_cap: int = 10
    interval: float = 1.0

    # Rate limiting
    max_retries: int = 3
    wait_after_search: float = 2.0
    wait_after_topic_search: float = 1.0
    request_timeout: float = 30.0

    # File limits
    max_files_per_skill: int = 20

    # Zip packages and R2 upload
    generate_zips: bool = True
    zip_output_dir: Path = Path("market/zips")
    zip_base_url: str = "https://raw.githubusercontent.com/coolzwc/open-skill-market/main/market/zips"
    r2_endpoint: str | None = None
    r2_access_key_id: str | None = None
    r2_secret_access_key: str | None = None
    r2_bucket: str = "skill-market"
    r2_prefix: str = "zips/"

    # Output
    compact_output: bool = True
    chunk_size: int = 500

    # Test mode: only scan the listed repos
    test_mode: bool = False
    test_repos: str = "vuejs-ai/skills"

    @property
    def tokens(self) -> list[tuple[str, str]]:
        """Configured tokens as (label, token) pairs, primary first.

        Extra tokens are read in order and collection stops at the first empty slot.
        """
        tokens = []
        if self.github_token:
            tokens.append(("GITHUB_TOKEN", self.github_token))
        for i in range(1, MAX_EXTRA_TOKENS + 1):
            token = getattr(self, f"extra_token_{i}")
            if not token:
                break
            tokens.append((f"EXTRA_TOKEN_{i}", token))
        return tokens

    @property
    def this_repo_full_name(self) -> str:
        return f"{self.this_repo_owner}/{self.this_repo_name}"

    @property
    def test_repo_list(self) -> list[str]:
        return [r.strip() for r in self.test_repos.split(",") if r.strip()]

    @property
    def r2_configured(self) -> bool:
        return bool(self.r2_endpoint and self.r2_access_key_id and self.r2_secret_access_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
