"""Phase 2: explicitly configured priority repositories."""

import logging
from functools import partial
from pathlib import Path

import yaml

from ..context import CrawlContext
from ..github_api import ApiError, DeadlineReached, NotFoundError, RateLimitExhausted, get_repository
from ..models import BucketClass, Manifest, SkillSource
from .repo_scan import scan_repository

logger = logging.getLogger(__name__)


def load_priority_repos(path: Path) -> list[str]:
    """`owner/repo` entries from the `priority:` list of repositories.yml."""
    path = Path(path)
    if not path.exists():
        logger.info("No %s found, skipping priority repositories", path)
        return []
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    entries = data.get("priority") if isinstance(data, dict) else data
    repos = []
    for entry in entries or []:
        if isinstance(entry, str) and "/" in entry:
            repos.append(entry.strip().strip("/"))
    return repos


async def crawl_priority_repo(ctx: CrawlContext, full_name: str) -> list[Manifest]:
    if not await ctx.pool.wait_for_available(BucketClass.CORE, ctx.should_stop):
        return []
    if ctx.should_stop():
        return []

    owner, _, name = full_name.partition("/")
    if not owner or not name:
        logger.info("Invalid repository format: %s", full_name)
        return []
    if full_name == ctx.settings.this_repo_full_name:
        logger.info("Skipping %s: this is our own repository", full_name)
        return []

    logger.info("Repository: %s", full_name)
    max_retries = ctx.settings.max_retries
    try:
        repo = await get_repository(ctx.pool, owner, name, ctx.should_stop, max_attempts=max_retries)
    except NotFoundError:
        logger.info("Repository %s not found", full_name)
        return []
    except RateLimitExhausted:
        logger.warning("Failed to fetch %s after %d attempts", full_name, max_retries)
        ctx.incomplete_repos.add(full_name)
        return []
    except ApiError as e:
        logger.error("Error fetching %s: %s", full_name, e)
        return []
    except DeadlineReached:
        return []

    ctx.processed_repos.add(full_name)
    try:
        return await scan_repository(ctx, repo, SkillSource.PRIORITY)
    except Exception as e:
        logger.error("Error processing %s: %s", full_name, e)
        return []


async def crawl_priority_repos(ctx: CrawlContext, repos: list[str]) -> list[Manifest]:
    if not repos:
        logger.info("No priority repositories configured.")
        return []
    logger.info("Crawling %d priority repositories...", len(repos))
    results = await ctx.queue.add_all(partial(crawl_priority_repo, ctx, full_name) for full_name in repos)
    return [manifest for skills in results for manifest in skills]
