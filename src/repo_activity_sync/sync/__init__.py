from .engine import IncrementalSyncEngine
from .fetcher import DeltaFetcher, FetchLimits
from .filters import FilteredActivity, filter_activity, select_new_items
from .locks import KeyedLocks
from .watermarks import MongoWatermarkStore

__all__ = [
    "IncrementalSyncEngine",
    "DeltaFetcher",
    "FetchLimits",
    "FilteredActivity",
    "filter_activity",
    "select_new_items",
    "KeyedLocks",
    "MongoWatermarkStore",
]
