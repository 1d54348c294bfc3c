"""Top-level crawl orchestration: resume mode, the four discovery phases, finalization."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .cache import CrawlerCache
from .client_pool import ClientPool
from .context import CrawlContext
from .deadline import ExecutionDeadline
from .discovery import (
    crawl_global_repos,
    crawl_priority_repos,
    crawl_topic_repos,
    load_priority_repos,
    scan_local_skills,
)
from .finalizer import dedupe_skills, finalize
from .models import BucketClass, Manifest
from .postprocess import PostProcessStats, R2Uploader, resume_pending, run_post_processing
from .postprocess.runner import UPLOAD_ERRORS
from .settings import Settings
from .task_queue import TaskQueue

logger = logging.getLogger(__name__)


@dataclass
class CrawlResult:
    mode: str
    skills: list[Manifest] = field(default_factory=list)
    meta: dict | None = None
    written: list[Path] = field(default_factory=list)
    post: PostProcessStats | None = None


class Crawler:
    """One crawler run. Collaborators default from settings and can be injected."""

    def __init__(
        self,
        settings: Settings,
        pool: ClientPool | None = None,
        cache: CrawlerCache | None = None,
        deadline: ExecutionDeadline | None = None,
        queue: TaskQueue | None = None,
        uploader: R2Uploader | None = None,
    ):
        self.settings = settings
        self.pool = pool or ClientPool.from_settings(settings)
        self.cache = cache or CrawlerCache(settings.cache_path, settings.cache_migration)
        self.deadline = deadline or ExecutionDeadline(settings.max_execution_time, settings.save_buffer)
        self.queue = queue or TaskQueue.from_settings(settings)
        self.uploader = uploader if uploader is not None else R2Uploader.from_settings(settings)
        self.ctx = CrawlContext(settings, self.pool, self.cache, self.deadline, self.queue)

    async def run(self, resume_only: bool = False) -> CrawlResult:
        """Drain pending work if any, otherwise crawl. The cache is saved even on failure."""
        self.deadline.start()
        self.cache.load()
        try:
            if self.cache.has_pending() or resume_only:
                result = await self.resume()
            else:
                result = await self.crawl()
        except BaseException:
            self._emergency_save()
            raise
        finally:
            await self.pool.aclose()
        self.cache.save()
        return result

    def _emergency_save(self) -> None:
        try:
            self.cache.save(force=True)
            logger.info("Saved partial cache after failure")
        except OSError as e:
            logger.error("Failed to save cache after failure: %s", e)

    async def resume(self) -> CrawlResult:
        if not self.cache.has_pending():
            logger.info("No pending work to resume.")
            return CrawlResult(mode="resume")
        logger.info("Pending work found, running in resume-only mode (no discovery)")
        stats = await resume_pending(self.ctx, self.uploader)
        return CrawlResult(mode="resume", post=stats)

    async def crawl(self) -> CrawlResult:
        settings = self.settings
        ctx = self.ctx

        await self.pool.calibrate()
        if self.pool.all_limited(BucketClass.CORE):
            logger.warning("All clients are rate limited, waiting for quota...")
            await self.pool.wait_for_available(BucketClass.CORE, ctx.should_stop)

        skills: list[Manifest] = []

        logger.info("--- Phase 1: Local Skills ---")
        skills.extend(scan_local_skills(settings, ctx.should_stop))

        if settings.test_mode:
            priority_repos = settings.test_repo_list
            logger.info("Test mode: only scanning %s", ", ".join(priority_repos))
        else:
            priority_repos = load_priority_repos(settings.repositories_path)

        if ctx.should_stop():
            logger.info("--- Phase 2: Priority Repositories (SKIPPED - timeout) ---")
        else:
            logger.info("--- Phase 2: Priority Repositories (%ds left) ---", self.deadline.remaining())
            skills.extend(await crawl_priority_repos(ctx, priority_repos))
        ctx.processed_repos.update(priority_repos)
        ctx.processed_repos.add(settings.this_repo_full_name)

        if settings.test_mode:
            logger.info("Test mode: skipping topic search and global discovery")
        else:
            if ctx.should_stop():
                logger.info("--- Phase 3: Topic Search (SKIPPED - timeout) ---")
            else:
                logger.info("--- Phase 3: Topic Search (%ds left) ---", self.deadline.remaining())
                skills.extend(await crawl_topic_repos(ctx))

            if not settings.global_discovery:
                logger.info("--- Phase 4: Global Discovery (disabled) ---")
            elif ctx.should_stop():
                logger.info("--- Phase 4: Global Discovery (SKIPPED - timeout) ---")
            else:
                logger.info("--- Phase 4: Global Discovery (%ds left) ---", self.deadline.remaining())
                skills.extend(await crawl_global_repos(ctx))

        skills = dedupe_skills(skills)

        post = None
        if settings.generate_zips:
            post = await run_post_processing(ctx, skills, self.uploader)

        meta, written = finalize(
            skills,
            settings.output_path,
            api_version=settings.api_version,
            rate_limited=self.pool.is_rate_limited(),
            timed_out=self.deadline.timed_out,
            execution_time_ms=int(self.deadline.elapsed * 1000),
            compact=settings.compact_output,
            chunk_size=settings.chunk_size,
        )
        await self._upload_registry(written)
        return CrawlResult(mode="crawl", skills=skills, meta=meta["meta"], written=written, post=post)

    async def _upload_registry(self, paths: list[Path]) -> None:
        if self.uploader is None:
            return
        for path in paths:
            try:
                await self.uploader.upload(path, path.name)
            except UPLOAD_ERRORS as e:
                logger.warning("Failed to upload %s: %s", path.name, e)
