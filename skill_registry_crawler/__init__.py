"""Crawl GitHub for agent skills and publish a versioned skill registry.

Discovery runs in four phases (local, priority, topic search, global code
search) over a pool of rate-limited tokens, with a two-level commit cache so
unchanged repositories cost one API call per run.
"""

from .cli import main
from .crawler import Crawler, CrawlResult
from .models import Manifest, RepoInfo
from .settings import Settings, get_settings

__all__ = ["main", "Crawler", "CrawlResult", "Manifest", "RepoInfo", "Settings", "get_settings"]

if __name__ == "__main__":
    main()
