from clients.tillsync_terminal.config import ConfigError, TerminalConfig, load_config
from clients.tillsync_terminal.errors import (
    DuplicateAccepted,
    DuplicateRecord,
    NetworkUnavailable,
    ServerRejected,
    ServerTransient,
    StorageFull,
    SyncError,
    Unauthorized,
)
from clients.tillsync_terminal.models import QueueHealth, SyncState, TransactionRecord, new_transaction_record
from clients.tillsync_terminal.queue_store import LocalQueueStore
from clients.tillsync_terminal.runtime import TerminalRuntime
from clients.tillsync_terminal.sync_client import SyncBusy, SyncClient, SyncCycleResult, SyncWorker
from clients.tillsync_terminal.worker_lifecycle import AssetVersion, AssetWorkerLifecycle, InstallState

__all__ = [
    "TerminalConfig",
    "ConfigError",
    "load_config",
    "SyncError",
    "NetworkUnavailable",
    "ServerTransient",
    "ServerRejected",
    "DuplicateAccepted",
    "Unauthorized",
    "StorageFull",
    "DuplicateRecord",
    "SyncState",
    "TransactionRecord",
    "QueueHealth",
    "new_transaction_record",
    "LocalQueueStore",
    "SyncClient",
    "SyncWorker",
    "SyncCycleResult",
    "SyncBusy",
    "AssetWorkerLifecycle",
    "AssetVersion",
    "InstallState",
    "TerminalRuntime",
]
