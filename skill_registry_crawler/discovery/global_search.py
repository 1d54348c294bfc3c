"""Phase 4: a global filename code search for repositories the topic list missed."""

import logging

from ..context import CrawlContext
from ..github_api import ApiError, DeadlineReached, NotFoundError, RateLimitExhausted, search_code
from ..models import CODE_SEARCH_PER_PAGE, GITHUB_SEARCH_RESULT_LIMIT, Manifest, RepoInfo, SkillSource
from .repo_scan import process_repos_in_parallel

logger = logging.getLogger(__name__)


async def discover_skill_repos_globally(ctx: CrawlContext, exclude: set[str]) -> dict[str, RepoInfo]:
    """Repositories holding a skill file, minus `exclude`, with metadata still unknown."""
    query = f"filename:{ctx.settings.skill_filename}"
    discovered: dict[str, RepoInfo] = {}
    fetched = 0
    page = 1
    logger.info("Searching globally for %s files...", ctx.settings.skill_filename)

    while fetched < GITHUB_SEARCH_RESULT_LIMIT:
        if ctx.should_stop():
            logger.info("Stopping global search due to timeout.")
            break
        try:
            body = await search_code(
                ctx.pool, query, page=page, per_page=CODE_SEARCH_PER_PAGE, should_stop=ctx.should_stop
            )
        except DeadlineReached:
            break
        except RateLimitExhausted:
            logger.info("All code search clients limited, stopping global search.")
            break
        except (ApiError, NotFoundError) as e:
            logger.error("Global search error: %s", e)
            break

        items = body.get("items") or []
        fetched += len(items)
        for item in items:
            repository = item.get("repository") or {}
            full_name = repository.get("full_name")
            if not full_name or full_name in exclude or full_name == ctx.settings.this_repo_full_name:
                continue
            if full_name not in discovered:
                owner, _, name = full_name.partition("/")
                discovered[full_name] = RepoInfo(owner=owner, name=name)
        logger.info("  Page %d: %d results, %d new repos discovered", page, len(items), len(discovered))

        if len(items) < CODE_SEARCH_PER_PAGE:
            break
        page += 1
        await ctx.pool.sleep(ctx.settings.wait_after_search)

    logger.info("Global discovery complete: %d new repos found (%d total results)", len(discovered), fetched)
    return discovered


async def crawl_global_repos(ctx: CrawlContext) -> list[Manifest]:
    discovered = await discover_skill_repos_globally(ctx, set(ctx.processed_repos))
    if not discovered or ctx.should_stop():
        return []
    logger.info("Scanning %d globally discovered repositories...", len(discovered))
    return await process_repos_in_parallel(ctx, list(discovered.values()), SkillSource.GITHUB, fetch_details=True)
