"""Background catalog synchronization."""

from .catalog import CatalogDiscovery, refresh_catalog
from .orchestrator import BackgroundSyncOrchestrator, SyncOutcome
from .status import ERROR, SYNCED, SYNCING, UNKNOWN, describe_sync_status
from .trigger import ALARM_NAME, PeriodicSyncTrigger

__all__ = [
    "ALARM_NAME",
    "BackgroundSyncOrchestrator",
    "CatalogDiscovery",
    "ERROR",
    "PeriodicSyncTrigger",
    "SYNCED",
    "SYNCING",
    "SyncOutcome",
    "UNKNOWN",
    "describe_sync_status",
    "refresh_catalog",
]
