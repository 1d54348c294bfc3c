"""Discovery phases, in priority order: local, priority repos, topic search, global search."""

from .global_search import crawl_global_repos
from .local_scan import scan_local_skills
from .priority import crawl_priority_repos, load_priority_repos
from .repo_scan import scan_repository
from .topic_search import crawl_topic_repos

__all__ = [
    "crawl_global_repos",
    "crawl_priority_repos",
    "crawl_topic_repos",
    "load_priority_repos",
    "scan_local_skills",
    "scan_repository",
]
