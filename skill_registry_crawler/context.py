"""Explicitly passed run state shared by every crawl phase."""

from dataclasses import dataclass, field

from .cache import CrawlerCache
from .client_pool import ClientPool
from .deadline import ExecutionDeadline
from .settings import Settings
from .task_queue import TaskQueue


@dataclass
class CrawlContext:
    settings: Settings
    pool: ClientPool
    cache: CrawlerCache
    deadline: ExecutionDeadline
    queue: TaskQueue
    processed_repos: set[str] = field(default_factory=set)
    incomplete_repos: set[str] = field(default_factory=set)

    def should_stop(self) -> bool:
        return self.deadline.should_stop()
