"""Phase 3: repositories tagged with one of the discovery topics."""

import logging

from ..context import CrawlContext
from ..github_api import ApiError, DeadlineReached, NotFoundError, RateLimitExhausted, search_repositories
from ..models import Manifest, RepoInfo, SkillSource
from .repo_scan import process_repos_in_parallel

logger = logging.getLogger(__name__)


async def search_repositories_by_topic(ctx: CrawlContext, topic: str) -> list[dict]:
    """Up to `max_pages` pages of `topic:<topic>` results, most starred first."""
    settings = ctx.settings
    repos: list[dict] = []
    for page in range(1, settings.max_pages + 1):
        if ctx.should_stop():
            break
        try:
            body = await search_repositories(
                ctx.pool, f"topic:{topic}", page=page, per_page=settings.per_page, should_stop=ctx.should_stop
            )
        except DeadlineReached:
            break
        except RateLimitExhausted as e:
            logger.warning("Search quota exhausted for topic %s: %s", topic, e)
            break
        except (ApiError, NotFoundError) as e:
            logger.error("Error searching topic %s: %s", topic, e)
            break

        items = body.get("items") or []
        repos.extend(items)
        logger.info("  Page %d: found %d repos (total: %d)", page, len(items), len(repos))
        if len(items) < settings.per_page:
            break
        await ctx.pool.sleep(settings.wait_after_search)
    return repos


async def search_skill_repositories(ctx: CrawlContext) -> dict[str, RepoInfo]:
    """Unique repositories across every discovery topic, in discovery order."""
    topics = ctx.settings.search_topics
    logger.info("Searching for skill repositories by topic...")
    found: dict[str, RepoInfo] = {}
    for i, topic in enumerate(topics, 1):
        if ctx.should_stop():
            logger.info("Stopping search due to execution timeout.")
            break
        logger.info('Topic %d/%d: "%s"', i, len(topics), topic)
        new = 0
        for item in await search_repositories_by_topic(ctx, topic):
            repo = RepoInfo.from_api(item)
            if repo.full_name not in found:
                found[repo.full_name] = repo
                new += 1
        if new:
            logger.info("  Added %d new unique repos", new)
        await ctx.pool.sleep(ctx.settings.wait_after_topic_search)
    logger.info("Total unique repositories found: %d", len(found))
    return found


def select_topic_repos(ctx: CrawlContext, found: dict[str, RepoInfo]) -> list[RepoInfo]:
    """Drop repositories already handled and forks below the star floor."""
    selected = []
    for full_name, repo in found.items():
        if full_name in ctx.processed_repos or full_name == ctx.settings.this_repo_full_name:
            continue
        if repo.fork and repo.stars < ctx.settings.min_fork_stars:
            continue
        selected.append(repo)
    return selected


async def crawl_topic_repos(ctx: CrawlContext) -> list[Manifest]:
    found = await search_skill_repositories(ctx)
    if ctx.should_stop():
        return []
    repos = select_topic_repos(ctx, found)
    if not repos:
        logger.info("No new repositories found via topic search.")
        return []
    logger.info("Scanning %d repositories for skill files...", len(repos))
    return await process_repos_in_parallel(ctx, repos, SkillSource.GITHUB)
