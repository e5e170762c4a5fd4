"""Human-readable background sync status from orchestrator state and catalog age."""

from __future__ import annotations

from datetime import datetime

from thread_relay.models import SyncState, SyncStatus

SYNCED = "synced"
SYNCING = "syncing"
ERROR = "error"
UNKNOWN = "unknown"


def describe_sync_status(
    state: SyncState,
    catalog_updated: datetime | None,
    now: datetime,
) -> SyncStatus:
    """Bucket the last attempt (or, before any attempt, the catalog timestamp) by age."""
    if state.is_syncing:
        return SyncStatus(SYNCING, "Background sync in progress...")
    if state.last_error is not None:
        return SyncStatus(ERROR, "Last sync failed")

    if state.last_sync_time is not None:
        minutes = int((now - state.last_sync_time).total_seconds() // 60)
        hours = minutes // 60
        if minutes < 5:
            return SyncStatus(SYNCED, "Sync just completed")
        if minutes < 60:
            return SyncStatus(SYNCED, f"Synced {minutes} minutes ago")
        if hours < 24:
            return SyncStatus(SYNCED, f"Synced {hours} hours ago")
        return SyncStatus(UNKNOWN, "Sync needed")

    if catalog_updated is None:
        return SyncStatus(ERROR, "Not synced yet")
    hours = int((now - catalog_updated).total_seconds() // 3600)
    if hours < 1:
        return SyncStatus(SYNCED, "Models synced (< 1 hour ago)")
    if hours < 24:
        return SyncStatus(SYNCED, f"Models synced ({hours} hours ago)")
    return SyncStatus(UNKNOWN, "Models need refresh")
