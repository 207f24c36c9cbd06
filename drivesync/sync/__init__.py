from .diff import diff_listing
from .models import DiffResult, RemoteFile, SyncRecord, SyncStats
from .reconciler import Reconciler
from .state_store import SyncStateStore

__all__ = [
    "DiffResult",
    "Reconciler",
    "RemoteFile",
    "SyncRecord",
    "SyncStateStore",
    "SyncStats",
    "diff_listing",
]
