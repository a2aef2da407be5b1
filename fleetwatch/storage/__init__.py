"""Storage layer for the alert store of record."""

from fleetwatch.storage.database import Database

__all__ = ["Database"]
