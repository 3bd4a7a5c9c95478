from .devices import LoadCategory, classify, is_device_key, load_type
from .downstream import ConsumptionClient, DownstreamError, ForwardResult, NetworkError, RemoteError
from .stats import AggregateStats, StatsSnapshot
from .sync_gate import SyncDecision, SyncGate, SyncRecord
from .version import __version__

__all__ = [
    "AggregateStats",
    "ConsumptionClient",
    "DownstreamError",
    "ForwardResult",
    "LoadCategory",
    "NetworkError",
    "RemoteError",
    "StatsSnapshot",
    "SyncDecision",
    "SyncGate",
    "SyncRecord",
    "__version__",
    "classify",
    "is_device_key",
    "load_type",
]
