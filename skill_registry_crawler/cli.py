"""CLI commands for the skill registry crawler."""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from github import Auth, Github, GithubException

from .settings import get_settings

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for noisy in ("httpx", "httpcore", "botocore", "boto3", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _resource(rate_limit, name: str):
    resources = getattr(rate_limit, "resources", None)
    if resources is not None:
        return getattr(resources, name, None)
    return getattr(rate_limit, name, None)


def show_rate_limits(settings) -> int:
    """Print remaining quota per token and bucket class."""
    tokens = settings.tokens
    if not tokens:
        print("No tokens configured (set GITHUB_TOKEN).")
        return 1
    for label, token in tokens:
        gh = Github(auth=Auth.Token(token))
        try:
            rate_limit = gh.get_rate_limit()
        except GithubException as e:
            print(f"{label}: failed to read rate limit ({e.status})")
            continue
        finally:
            gh.close()
        print(f"{label}:")
        for name in ("core", "search", "code_search"):
            resource = _resource(rate_limit, name)
            if resource is None:
                continue
            reset = resource.reset
            if reset.tzinfo is None:
                reset = reset.replace(tzinfo=timezone.utc)
            wait = max(0, int((reset - datetime.now(timezone.utc)).total_seconds()))
            print(f"  {name:<12} {resource.remaining:>5}/{resource.limit:<5} resets in {wait}s")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Crawl GitHub for agent skills and publish a registry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # crawl subcommand
    crawl_parser = subparsers.add_parser(
        "crawl",
        help="Run a full crawl (or resume deferred work if any is pending)",
    )
    crawl_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Registry output file (default: market/skills.json)",
    )
    crawl_parser.add_argument(
        "--cache",
        type=Path,
        default=None,
        help="Crawler cache file (default: .crawler-cache.json)",
    )
    crawl_parser.add_argument(
        "--no-global",
        action="store_true",
        help="Skip global code search discovery",
    )
    crawl_parser.add_argument(
        "--no-zips",
        action="store_true",
        help="Skip zip generation and upload",
    )
    crawl_parser.add_argument(
        "--test-repos",
        default=None,
        metavar="OWNER/REPO[,OWNER/REPO]",
        help="Test mode: only scan these repositories",
    )
    crawl_parser.add_argument(
        "--max-time",
        type=float,
        default=None,
        help="Execution budget in seconds (default: 5 hours)",
    )

    # resume subcommand
    resume_parser = subparsers.add_parser(
        "resume",
        help="Drain pending zips and uploads left by a previous run",
    )
    resume_parser.add_argument(
        "--cache",
        type=Path,
        default=None,
        help="Crawler cache file (default: .crawler-cache.json)",
    )

    # rate-limit subcommand
    subparsers.add_parser(
        "rate-limit",
        help="Show remaining API quota for every configured token",
    )

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    settings = get_settings()
    command = args.command or "crawl"

    if command == "rate-limit":
        return show_rate_limits(settings)

    from .crawler import Crawler

    overrides = {}
    if getattr(args, "cache", None):
        overrides["cache_path"] = args.cache
    if command == "crawl" and args.command is not None:
        if args.output:
            overrides["output_path"] = args.output
        if args.no_global:
            overrides["global_discovery"] = False
        if args.no_zips:
            overrides["generate_zips"] = False
        if args.test_repos:
            overrides["test_mode"] = True
            overrides["test_repos"] = args.test_repos
        if args.max_time is not None:
            overrides["max_execution_time"] = args.max_time
    if overrides:
        settings = settings.model_copy(update=overrides)

    if not settings.tokens:
        logger.warning("No GITHUB_TOKEN set, unauthenticated requests are heavily rate limited")

    crawler = Crawler(settings)
    try:
        result = asyncio.run(crawler.run(resume_only=command == "resume"))
    except KeyboardInterrupt:
        print("\nInterrupted, cache saved.")
        return 130
    except Exception:
        logger.exception("Crawl failed")
        return 1

    if result.mode == "resume":
        stats = result.post
        if stats is None:
            print("\nDone: nothing pending")
        else:
            print(
                f"\nDone: {stats.generated} zips, {stats.uploaded} uploaded, {stats.errors} errors, "
                f"{stats.deferred_zips + stats.deferred_uploads} still pending"
            )
        return 0

    print(format_result(result))
    return 0


def format_result(result) -> str:
    from .finalizer import format_summary

    lines = [format_summary(result.meta)]
    files = ", ".join(p.name for p in result.written)
    lines.append(f"\nDone: {result.meta['totalSkills']} skills written to {files}")
    if result.post is not None:
        lines.append(
            f"Zips: {result.post.generated} generated, {result.post.reused} reused, "
            f"{result.post.deferred_zips} deferred"
        )
    return "\n".join(lines)


if __name__ == "__main__":
    sys.exit(main())
