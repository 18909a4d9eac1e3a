# =============================================================================
# tracker_core/offline/__init__.py
# Offline-Capable Sync Core for the Sales Tracker
# =============================================================================
"""
Offline-Capable Sync Core

The sales tracker works the same whether the remote document store is
reachable or not. A session starts connected when credentials are present
and the first load succeeds; any remote failure degrades it to local-only
persistence for the rest of the session.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                      SALES TRACKER SYNC CORE                     │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                 UnifiedDataService                        │  │
│   │         (Single API - Apps use this only)                 │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                             │                     │
│              ▼                             ▼                     │
│   ┌──────────────────┐          ┌─────────────────────┐         │
│   │ RemoteSyncEngine │─────────►│  LocalReplicaStore  │         │
│   │ (Connected/      │  apply   │  (Snapshot, pending,│         │
│   │  Degraded)       │          │   ChangeNotifier)   │         │
│   └──────────────────┘          └─────────────────────┘         │
│      │          │                          │                     │
│      ▼          ▼                          ▼                     │
│ ┌────────┐ ┌─────────┐              ┌──────────┐                 │
│ │Supabase│ │ Storage │              │  SQLite  │                 │
│ │ tables │ │ bucket  │              │ (Device) │                 │
│ └────────┘ └─────────┘              └──────────┘                 │
│                                            ▲                     │
│   ┌────────────────────────────────────────┴───────┐             │
│   │ EmailTransportChannel (encrypted relay, Gmail) │             │
│   └────────────────────────────────────────────────┘             │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from tracker_core.offline import UnifiedDataService, get_data_service

# Get the singleton service
service = get_data_service()

# Use it - automatically handles connected/degraded
result = service.add_customer(customer, acting_user=user)

# Check status
print(service.is_online)  # True/False
print(service.pending_sync_count)  # Records not yet confirmed remotely
"""

from tracker_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    SyncMode,
)

from tracker_core.offline.local_database import (
    LocalDatabase,
    get_local_database,
)

from tracker_core.offline.notifier import (
    ChangeEvent,
    ChangeNotifier,
    Subscription,
)

from tracker_core.offline.replica_store import (
    LocalReplicaStore,
    Mutation,
    Snapshot,
)

from tracker_core.offline.sync_engine import (
    RemoteSyncEngine,
    WriteResult,
)

from tracker_core.offline.unified_data_service import (
    UnifiedDataService,
    get_data_service,
)

__all__ = [
    # Connection Management
    "ConnectionManager",
    "ConnectionState",
    "SyncMode",
    # Local Database
    "LocalDatabase",
    "get_local_database",
    # Change Notification
    "ChangeEvent",
    "ChangeNotifier",
    "Subscription",
    # Replica Store
    "LocalReplicaStore",
    "Mutation",
    "Snapshot",
    # Sync Engine
    "RemoteSyncEngine",
    "WriteResult",
    # Unified Service (Main API)
    "UnifiedDataService",
    "get_data_service",
]
