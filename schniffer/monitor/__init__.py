"""
Availability monitoring engine
"""
from .adhoc import AdhocScraper
from .diff import DiffEngine, classify, diff_cells, match_subscriptions
from .locks import PairLocks
from .manager import AvailabilityManager, PollResult, PairResult
from .sync import CatalogSync

__all__ = [
    "AdhocScraper",
    "DiffEngine",
    "classify",
    "diff_cells",
    "match_subscriptions",
    "PairLocks",
    "AvailabilityManager",
    "PollResult",
    "PairResult",
    "CatalogSync",
]
