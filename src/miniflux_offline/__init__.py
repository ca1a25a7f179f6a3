"""Offline sync and content acquisition for Miniflux feed readers."""

from miniflux_offline.cache import EntryInfoCache
from miniflux_offline.entry_store import LocalEntryStore
from miniflux_offline.gateway import GatewayError, MinifluxGateway
from miniflux_offline.models import Entry, LocalEntryRecord, UserConfig
from miniflux_offline.queue_store import MutationQueueStore

__version__ = "0.1.0"

__all__ = [
    "Entry",
    "EntryInfoCache",
    "GatewayError",
    "LocalEntryRecord",
    "LocalEntryStore",
    "MinifluxGateway",
    "MutationQueueStore",
    "UserConfig",
    "__version__",
]
