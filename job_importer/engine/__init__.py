"""Engine components: fetch → parse → upsert → log, and the workers driving them."""

from .fetcher import FetchRequest, FetchResponse, Fetcher
from .import_run import ImportRun, ImportRunResult, RunCounters, RunState, derive_status
from .parser import CandidateJob, FeedParser, ParsedFeed, RejectedEntry
from .upsert import BatchResult, Upserter
from .worker_pool import WorkerPool

__all__ = [
    "BatchResult",
    "CandidateJob",
    "FeedParser",
    "FetchRequest",
    "FetchResponse",
    "Fetcher",
    "ImportRun",
    "ImportRunResult",
    "ParsedFeed",
    "RejectedEntry",
    "RunCounters",
    "RunState",
    "Upserter",
    "WorkerPool",
    "derive_status",
]
