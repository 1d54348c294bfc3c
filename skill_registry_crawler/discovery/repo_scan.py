"""Cache-aware scan of one repository, shared by the remote discovery phases."""

import logging
import posixpath
from functools import partial

import httpx

from ..client_pool import ClientPool
from ..context import CrawlContext
from ..github_api import (
    ApiError,
    DeadlineReached,
    NotFoundError,
    RateLimitedError,
    RateLimitExhausted,
    decode_content,
    get_contents,
    get_latest_commit,
    get_path_commit,
    get_repository,
    request_once,
)
from ..models import CODE_SEARCH_PER_PAGE, GITHUB_SEARCH_RESULT_LIMIT, BucketClass, Manifest, RepoInfo, SkillSource
from ..skill_parser import build_manifest, parse_skill_content
from ..utils import determine_skill_path, generate_skill_id

logger = logging.getLogger(__name__)

# Build output, dependency trees and tool caches never hold skills.
# Custom hidden directories such as .claude or .cursor are still scanned.
SKIP_DIRS = frozenset(
    {
        "node_modules", "dist", "build", "coverage", "__pycache__", ".pnp",
        ".git", ".github", ".vscode", ".idea", ".vs", ".svn", ".hg", ".cache",
        ".npm", ".yarn", ".pnpm", ".next", ".nuxt", ".output", ".turbo",
        ".vercel", ".netlify", ".parcel-cache", ".pytest_cache", ".mypy_cache",
        ".tox", ".nox", ".eggs", ".venv", ".env", ".direnv",
    }
)

# Errors that interrupt a repository scan without being the repository's fault
INTERRUPTS = (DeadlineReached, RateLimitExhausted)


async def _code_search_page(pool: ClientPool, query: str, page: int) -> dict | None:
    """One code search page without waiting. None when every client is code-search limited."""
    for _ in range(len(pool.clients)):
        if pool.all_limited(BucketClass.CODE_SEARCH):
            return None
        client = pool.select_client(BucketClass.CODE_SEARCH)
        try:
            resp = await request_once(
                pool,
                client,
                BucketClass.CODE_SEARCH,
                "/search/code",
                {"q": query, "per_page": CODE_SEARCH_PER_PAGE, "page": page},
            )
        except RateLimitedError:
            continue
        return resp.body
    return None


async def find_skill_files_with_code_search(ctx: CrawlContext, owner: str, repo: str) -> list[str] | None:
    """Paths of skill files via repository-scoped code search.

    Returns None when code search is unusable (every client limited, or an
    API error), in which case the caller falls back to directory traversal.
    """
    filename = ctx.settings.skill_filename
    query = f"filename:{filename} repo:{owner}/{repo}"
    paths: list[str] = []
    page = 1
    fetched = 0
    while True:
        if ctx.should_stop():
            raise DeadlineReached(query)
        try:
            body = await _code_search_page(ctx.pool, query, page)
        except (ApiError, NotFoundError, httpx.TransportError) as e:
            logger.info("Code search error for %s/%s: %s", owner, repo, e)
            return None
        if body is None:
            return None
        items = body.get("items") or []
        fetched += len(items)
        paths.extend(item["path"] for item in items if posixpath.basename(item["path"]) == filename)
        total = body.get("total_count") or 0
        if len(items) < CODE_SEARCH_PER_PAGE or fetched >= total or fetched >= GITHUB_SEARCH_RESULT_LIMIT:
            break
        page += 1
    logger.info("Code search found %d %s file(s) in %s/%s", len(paths), filename, owner, repo)
    return sorted(set(paths))


async def find_skill_files_recursive(
    ctx: CrawlContext,
    owner: str,
    repo: str,
    tree_path: str = "",
    failed: list[str] | None = None,
) -> list[str]:
    """Walk the contents API depth first.

    Directories that fail to list are skipped and their paths appended to `failed`.
    """
    if ctx.should_stop():
        raise DeadlineReached(f"{owner}/{repo}/{tree_path}")
    try:
        listing = await get_contents(ctx.pool, owner, repo, tree_path, should_stop=ctx.should_stop)
    except NotFoundError as e:
        logger.debug("Could not list %s/%s/%s: %s", owner, repo, tree_path, e)
        return []
    except ApiError as e:
        logger.warning("Could not list %s/%s/%s: %s", owner, repo, tree_path, e)
        if failed is not None:
            failed.append(tree_path)
        return []
    if not isinstance(listing, list):
        return []

    found = []
    for item in listing:
        if item.get("type") == "file" and item.get("name") == ctx.settings.skill_filename:
            found.append(item["path"])
        elif item.get("type") == "dir" and item.get("name") not in SKIP_DIRS:
            found.extend(await find_skill_files_recursive(ctx, owner, repo, item["path"], failed))
    return found


async def find_skill_files(ctx: CrawlContext, owner: str, repo: str, failed: list[str] | None = None) -> list[str]:
    """Code search first; recursive traversal only when code search is exhausted."""
    paths = await find_skill_files_with_code_search(ctx, owner, repo)
    if paths is not None:
        return paths
    logger.info("Code search unavailable, falling back to recursive scan for %s/%s", owner, repo)
    return await find_skill_files_recursive(ctx, owner, repo, failed=failed)


async def list_skill_files(ctx: CrawlContext, owner: str, repo: str, skill_path: str, file_path: str) -> list[str]:
    """Entries of the skill directory (files and subdirectories)."""
    if not skill_path:
        return [file_path]
    try:
        listing = await get_contents(ctx.pool, owner, repo, skill_path, should_stop=ctx.should_stop)
    except (NotFoundError, ApiError) as e:
        logger.debug("Could not list directory %s: %s", skill_path, e)
        return [file_path]
    if not isinstance(listing, list):
        return [file_path]
    return [item["path"] for item in listing if item.get("type") in ("file", "dir")]


async def process_skill_file(
    ctx: CrawlContext,
    repo: RepoInfo,
    file_path: str,
    repo_commit: str,
    source: SkillSource,
) -> Manifest | None:
    """Manifest for one skill file, reusing the cache when its directory is unchanged.

    Fetch and validation failures return None. Deadline and quota exhaustion propagate.
    """
    settings = ctx.settings
    if posixpath.basename(file_path) != settings.skill_filename:
        return None

    skill_path = determine_skill_path(file_path)
    key = generate_skill_id(repo.owner, repo.name, skill_path)
    # A root-level skill spans the whole repository
    if skill_path:
        dir_commit = await get_path_commit(ctx.pool, repo.owner, repo.name, skill_path, ctx.should_stop)
    else:
        dir_commit = repo_commit

    cached = ctx.cache.get_skill(key, repo, source)
    if cached is not None and dir_commit and cached.commit_hash == dir_commit:
        logger.debug("Skill cache hit for %s", key)
        return cached.manifest

    try:
        body = await get_contents(ctx.pool, repo.owner, repo.name, file_path, should_stop=ctx.should_stop)
    except (NotFoundError, ApiError) as e:
        logger.info("Could not fetch %s: %s", key, e)
        return None
    content = decode_content(body)
    if content is None:
        logger.info("Skipped %s: empty file", key)
        return None

    parsed = parse_skill_content(content)
    if not parsed.is_valid:
        logger.info("Skipped %s: %s", key, parsed.invalid_reason)
        return None

    files = await list_skill_files(ctx, repo.owner, repo.name, skill_path, file_path)
    manifest = build_manifest(repo, skill_path, parsed, files, dir_commit, source, settings.max_files_per_skill)
    if dir_commit:
        ctx.cache.set_skill(key, manifest, dir_commit)
    return manifest


async def scan_repository(ctx: CrawlContext, repo: RepoInfo, source: SkillSource) -> list[Manifest]:
    """All valid skills in `repo`, from the cache when its latest commit is unchanged.

    The repository cache entry is only written when every candidate file was
    processed, so an interrupted scan is repeated in full on the next run.
    """
    full_name = repo.full_name
    try:
        latest = await get_latest_commit(ctx.pool, repo.owner, repo.name, ctx.should_stop)
    except INTERRUPTS as e:
        logger.info("Skipping %s: %s", full_name, e)
        ctx.incomplete_repos.add(full_name)
        return []
    if latest is None:
        logger.info("Could not get latest commit for %s", full_name)
        return []
    if repo.last_updated is None:
        repo.last_updated = latest["date"]

    cached = ctx.cache.get_repo(repo.owner, repo.name, repo, source)
    if cached is not None and cached.commit_hash == latest["commitHash"]:
        if cached.skills:
            logger.info("Using cached %d skill(s) for %s (no changes)", len(cached.skills), full_name)
        return cached.skills

    logger.info("Scanning %s for %s files...", full_name, ctx.settings.skill_filename)
    skills: list[Manifest] = []
    candidates: list[str] = []
    failed_listings: list[str] = []
    interrupted = False
    try:
        candidates = await find_skill_files(ctx, repo.owner, repo.name, failed_listings)
        if candidates:
            logger.info("Found %d %s file(s) in %s", len(candidates), ctx.settings.skill_filename, full_name)
        for file_path in candidates:
            if ctx.should_stop():
                interrupted = True
                break
            manifest = await process_skill_file(ctx, repo, file_path, latest["commitHash"], source)
            if manifest is not None:
                skills.append(manifest)
    except INTERRUPTS as e:
        logger.info("Scan of %s interrupted: %s", full_name, e)
        interrupted = True

    if interrupted:
        ctx.incomplete_repos.add(full_name)
        logger.warning(
            "Stopped during %s: processed %d skill(s) of %d candidate(s), repo cache NOT updated (will re-scan next run)",
            full_name,
            len(skills),
            len(candidates),
        )
    elif failed_listings:
        ctx.incomplete_repos.add(full_name)
        logger.warning(
            "Could not list %d director(ies) of %s, repo cache NOT updated (will re-scan next run)",
            len(failed_listings),
            full_name,
        )
    else:
        ctx.cache.set_repo(repo, latest["commitHash"], [m.id for m in skills])
    return skills


async def fetch_repo_details(ctx: CrawlContext, repo: RepoInfo) -> RepoInfo:
    """Back-fill metadata for a repository known only by name."""
    try:
        return await get_repository(ctx.pool, repo.owner, repo.name, ctx.should_stop)
    except (ApiError, RateLimitExhausted) as e:
        logger.info("Could not fetch details for %s: %s", repo.full_name, e)
    return ctx.cache.cached_repo_info(repo.full_name) or repo


async def process_repos_in_parallel(
    ctx: CrawlContext,
    repos: list[RepoInfo],
    source: SkillSource,
    fetch_details: bool = False,
) -> list[Manifest]:
    """Scan many repositories through the task queue, flattening their skills."""
    done = 0
    found = 0

    async def task(repo: RepoInfo) -> list[Manifest]:
        nonlocal done, found
        if not await ctx.pool.wait_for_available(BucketClass.CORE, ctx.should_stop):
            return []
        if ctx.should_stop():
            return []
        ctx.processed_repos.add(repo.full_name)
        try:
            if fetch_details:
                repo = await fetch_repo_details(ctx, repo)
            skills = await scan_repository(ctx, repo, source)
        except DeadlineReached:
            return []
        except NotFoundError:
            logger.info("Repository %s not found", repo.full_name)
            return []
        except Exception as e:
            logger.error("Error processing %s: %s", repo.full_name, e)
            return []

        done += 1
        found += len(skills)
        if done % 10 == 0:
            logger.info(
                "Progress: %d/%d repos, %d skills found, %d/%d clients active",
                done,
                len(repos),
                found,
                ctx.pool.active_client_count(),
                len(ctx.pool.clients),
            )
        return skills

    results = await ctx.queue.add_all(partial(task, repo) for repo in repos)
    return [manifest for skills in results for manifest in skills]
