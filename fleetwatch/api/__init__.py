"""
FastAPI monitoring service.

Provides REST API for alert operations:
- GET /alerts - Open alerts, optionally per entity
- GET /alerts/summary - Counts and response times
- POST /alerts/{id}/acknowledge | resolve | false-positive - Lifecycle
- POST|DELETE /entities/{id}/monitoring - Monitoring sessions
- POST /entities/{id}/snapshots - Real-time ingestion
- GET /health - Service health check
"""

from fleetwatch.api.app import create_app

__all__ = ["create_app"]
