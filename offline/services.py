"""
Wiring of the device-side components.

Everything is constructed once, in dependency order, and handed to whoever
runs the device loop. The storage adapter is chosen here and nowhere else.
"""

from dataclasses import dataclass
from typing import Optional

from .adapters import StorageAdapter, select_storage_adapter
from .backend_client import ConnectivityProbe, TourBackendClient
from .cache_store import TourOfflineCache
from .sync import SyncOrchestrator


@dataclass
class OfflineServices:
    adapter: StorageAdapter
    client: TourBackendClient
    probe: ConnectivityProbe
    cache: TourOfflineCache
    orchestrator: SyncOrchestrator


def build_offline_services(
    adapter: Optional[StorageAdapter] = None,
    client: Optional[TourBackendClient] = None,
) -> OfflineServices:
    adapter = adapter or select_storage_adapter()
    client = client or TourBackendClient()
    probe = ConnectivityProbe(client)
    return OfflineServices(
        adapter=adapter,
        client=client,
        probe=probe,
        cache=TourOfflineCache(adapter, client),
        orchestrator=SyncOrchestrator(client, probe),
    )
