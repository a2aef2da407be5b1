"""
Dependency injection for FastAPI endpoints.
"""

import redis.asyncio as redis

from fleetwatch.config.settings import get_settings
from fleetwatch.monitoring.service import MonitoringService, create_service
from fleetwatch.storage.database import Database

# Global instances (initialized on first request)
_monitoring_service: MonitoringService | None = None
_redis_client: redis.Redis | None = None
_database: Database | None = None


async def get_monitoring_service() -> MonitoringService:
    """
    Get the monitoring service instance.

    Creates a singleton service backed by the Postgres alert store, with
    Redis used for notification dead letters.
    """
    global _monitoring_service, _redis_client, _database

    if _monitoring_service is None:
        settings = get_settings()

        if _database is None:
            _database = Database()
            await _database.connect()

        if _redis_client is None:
            _redis_client = redis.from_url(
                str(settings.redis_url),
                encoding="utf-8",
                decode_responses=True,
            )

        service = create_service(settings, _database, redis_client=_redis_client)
        await service.start()
        _monitoring_service = service

    return _monitoring_service


async def cleanup_dependencies() -> None:
    """Clean up global dependencies on shutdown."""
    global _monitoring_service, _redis_client, _database

    if _monitoring_service is not None:
        await _monitoring_service.close()
        _monitoring_service = None

    if _database is not None:
        await _database.close()
        _database = None

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
