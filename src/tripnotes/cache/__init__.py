"""Cache layer for TripNotes.

Caches each trip at two granularities:
- Component cache: metadata, days and activities under their own keys and TTLs
- Structure index: the trip's id graph, used to assemble trips from fragments
- Whole-trip fast path guarded by a per-trip freshness epoch
- In-process change signal published after every save
"""

from tripnotes.cache.assembler import Assembler
from tripnotes.cache.components import ComponentCache, FragmentKind
from tripnotes.cache.invalidation import (
    ChangeNotifier,
    ChangeType,
    DocumentChanged,
)
from tripnotes.cache.keys import CacheKeys
from tripnotes.cache.metrics import CacheMetrics, CacheStats
from tripnotes.cache.staleness import (
    CachedTrip,
    Freshness,
    StalenessController,
    WholeDocumentCache,
)
from tripnotes.cache.structure import StructureIndex
from tripnotes.cache.transport import (
    BridgeKvTransport,
    KvTransport,
    RedisKvTransport,
    close_kv_transport,
    create_kv_transport,
    get_kv_transport,
)
from tripnotes.cache.ttl import TtlPolicy

__all__ = [
    # Transport
    "KvTransport",
    "BridgeKvTransport",
    "RedisKvTransport",
    "create_kv_transport",
    "get_kv_transport",
    "close_kv_transport",
    # Fragments and shape
    "CacheKeys",
    "TtlPolicy",
    "ComponentCache",
    "FragmentKind",
    "StructureIndex",
    "Assembler",
    # Fast path
    "StalenessController",
    "WholeDocumentCache",
    "CachedTrip",
    "Freshness",
    # Metrics
    "CacheMetrics",
    "CacheStats",
    # Change signal
    "ChangeNotifier",
    "ChangeType",
    "DocumentChanged",
]
