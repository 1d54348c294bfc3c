"""Deadline-aware zip generation and upload, and the resume-only drain of deferred work."""

import logging
from dataclasses import dataclass
from pathlib import Path

from botocore.exceptions import BotoCoreError, ClientError

from ..cache import PendingItem
from ..context import CrawlContext
from ..github_api import CrawlerError, DeadlineReached, RateLimitExhausted
from ..models import Manifest, RepoInfo, SkillSource
from .r2 import R2Uploader
from .zips import generate_skill_zip, zip_file_name, zip_url

logger = logging.getLogger(__name__)

ZIPS = "zips"
UPLOADS = "uploads"

UPLOAD_ERRORS = (BotoCoreError, ClientError, OSError)


@dataclass
class PostProcessStats:
    generated: int = 0
    reused: int = 0
    uploaded: int = 0
    deferred_zips: int = 0
    deferred_uploads: int = 0
    errors: int = 0


def _defer(ctx: CrawlContext, queue: str, items: list[PendingItem], stats: PostProcessStats) -> None:
    for item in items:
        ctx.cache.add_pending(queue, item)
    if queue == ZIPS:
        stats.deferred_zips += len(items)
    else:
        stats.deferred_uploads += len(items)
    if items:
        logger.warning("Deferred %d %s to the next run", len(items), "zip(s)" if queue == ZIPS else "upload(s)")


async def _upload_all(
    ctx: CrawlContext,
    uploader: R2Uploader,
    items: list[PendingItem],
    stats: PostProcessStats,
) -> None:
    for i, item in enumerate(items):
        if ctx.should_stop():
            _defer(ctx, UPLOADS, items[i:], stats)
            return
        owner, _, repo = item.repo.partition("/")
        try:
            await uploader.upload(Path(item.zip_path), uploader.skill_key(owner, repo, item.name))
        except UPLOAD_ERRORS as e:
            logger.warning("Upload failed for %s: %s", item.key, e)
            _defer(ctx, UPLOADS, [item], stats)
            continue
        stats.uploaded += 1


async def run_post_processing(
    ctx: CrawlContext,
    skills: list[Manifest],
    uploader: R2Uploader | None = None,
) -> PostProcessStats:
    """Build missing or outdated zips, then upload them.

    Work left when the deadline trips goes onto the pending queues.
    """
    settings = ctx.settings
    stats = PostProcessStats()
    uploads: list[PendingItem] = []
    deferred: list[PendingItem] = []
    output_dir = Path(settings.zip_output_dir)

    for manifest in skills:
        owner, repo = manifest.repo.owner, manifest.repo.name
        url = zip_url(settings.zip_base_url, owner, repo, manifest.name)
        existing = output_dir / zip_file_name(owner, repo, manifest.name)
        if not ctx.cache.needs_regeneration(manifest.id, manifest.commit_hash) and existing.exists():
            manifest.skill_zip_url = url
            stats.reused += 1
            continue
        if ctx.should_stop():
            deferred.append(PendingItem.from_manifest(manifest))
            continue

        try:
            result = await generate_skill_zip(ctx, manifest)
        except (DeadlineReached, RateLimitExhausted):
            deferred.append(PendingItem.from_manifest(manifest))
            continue
        except (CrawlerError, OSError) as e:
            logger.warning("Failed to generate zip for %s: %s", manifest.id, e)
            stats.errors += 1
            continue

        manifest.skill_zip_url = url
        ctx.cache.set_zip(manifest.id, result.zip_path, result.zip_hash, url)
        stats.generated += 1
        uploads.append(PendingItem.from_manifest(manifest, result.zip_path))

    _defer(ctx, ZIPS, deferred, stats)
    if uploader is not None:
        await _upload_all(ctx, uploader, uploads, stats)

    logger.info(
        "Zips: %d generated, %d reused, %d deferred, %d errors; %d uploaded",
        stats.generated,
        stats.reused,
        stats.deferred_zips,
        stats.errors,
        stats.uploaded,
    )
    return stats


def pending_manifest(ctx: CrawlContext, item: PendingItem) -> Manifest:
    """Manifest for a queued item, from the skill cache or rebuilt from the queue entry."""
    cached = ctx.cache.get_skill(item.key)
    if cached is not None:
        manifest = cached.manifest
    else:
        owner, _, name = item.repo.partition("/")
        repo = ctx.cache.cached_repo_info(item.repo) or RepoInfo(owner=owner, name=name)
        manifest = Manifest(
            id=item.key,
            name=item.name,
            description="",
            categories=[],
            author=owner,
            repo=repo,
            path=item.path,
            files=[item.path],
            commit_hash=item.commit_hash,
        )
    if manifest.repo.full_name == ctx.settings.this_repo_full_name:
        manifest.source = SkillSource.LOCAL
    return manifest


async def resume_pending(ctx: CrawlContext, uploader: R2Uploader | None = None) -> PostProcessStats:
    """Drain the pending queues left by a previous run's deadline. No discovery happens here."""
    stats = PostProcessStats()
    zips = ctx.cache.pending(ZIPS)
    uploads = ctx.cache.pending(UPLOADS)
    logger.info("Resuming deferred work: %d zip(s), %d upload(s)", len(zips), len(uploads))

    for item in zips:
        if ctx.should_stop():
            break
        manifest = pending_manifest(ctx, item)
        try:
            result = await generate_skill_zip(ctx, manifest)
        except (DeadlineReached, RateLimitExhausted) as e:
            logger.warning("Stopped resuming zips: %s", e)
            break
        except (CrawlerError, OSError) as e:
            logger.warning("Dropping pending zip %s: %s", item.key, e)
            ctx.cache.remove_pending(ZIPS, item.key)
            stats.errors += 1
            continue
        url = zip_url(ctx.settings.zip_base_url, manifest.repo.owner, manifest.repo.name, manifest.name)
        ctx.cache.set_zip(item.key, result.zip_path, result.zip_hash, url)
        ctx.cache.remove_pending(ZIPS, item.key)
        stats.generated += 1
        if uploader is not None:
            ctx.cache.add_pending(UPLOADS, PendingItem.from_manifest(manifest, result.zip_path))

    if uploader is None:
        if ctx.cache.pending(UPLOADS):
            logger.warning("R2 is not configured, discarding %d pending upload(s)", len(ctx.cache.pending(UPLOADS)))
            ctx.cache.clear_pending(UPLOADS)
    else:
        for item in ctx.cache.pending(UPLOADS):
            if ctx.should_stop():
                break
            zip_path = Path(item.zip_path) if item.zip_path else None
            if zip_path is None or not zip_path.exists():
                # The local file is gone (fresh checkout), rebuild it first
                try:
                    result = await generate_skill_zip(ctx, pending_manifest(ctx, item))
                except (DeadlineReached, RateLimitExhausted) as e:
                    logger.warning("Stopped resuming uploads: %s", e)
                    break
                except (CrawlerError, OSError) as e:
                    logger.warning("Dropping pending upload %s: %s", item.key, e)
                    ctx.cache.remove_pending(UPLOADS, item.key)
                    stats.errors += 1
                    continue
                zip_path = Path(result.zip_path)
                stats.generated += 1
            owner, _, repo = item.repo.partition("/")
            try:
                await uploader.upload(zip_path, uploader.skill_key(owner, repo, item.name))
            except UPLOAD_ERRORS as e:
                logger.warning("Dropping pending upload %s: %s", item.key, e)
                stats.errors += 1
            else:
                stats.uploaded += 1
            ctx.cache.remove_pending(UPLOADS, item.key)

    stats.deferred_zips = len(ctx.cache.pending_zips)
    stats.deferred_uploads = len(ctx.cache.pending_uploads)
    logger.info(
        "Resume finished: %d zip(s) generated, %d uploaded, %d error(s), %d still pending",
        stats.generated,
        stats.uploaded,
        stats.errors,
        stats.deferred_zips + stats.deferred_uploads,
    )
    return stats
