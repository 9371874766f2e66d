"""Persistence layer: SQLite database lifecycle and the typed read/write gateway."""

from ledbridge.storage.database import BridgeDatabase
from ledbridge.storage.store import PersistenceGateway, StorageDomain

__all__ = ["BridgeDatabase", "PersistenceGateway", "StorageDomain"]
