"""Workflow services built on the stores, gateway and content pipeline."""

from miniflux_offline.services.batch_service import BatchDownloader, prefetch_entries
from miniflux_offline.services.download_service import EntryDownloader
from miniflux_offline.services.entry_service import EntryService
from miniflux_offline.services.navigation_service import NavigationCursor
from miniflux_offline.services.storage_service import purge_entries_older_than, recover_images
from miniflux_offline.services.sync_service import SyncReconciler

__all__ = [
    "BatchDownloader",
    "EntryDownloader",
    "EntryService",
    "NavigationCursor",
    "SyncReconciler",
    "prefetch_entries",
    "purge_entries_older_than",
    "recover_images",
]
