"""
Command-line interface for fleetwatch.

Provides commands to run the monitoring service and API, initialize the
alert store schema, validate monitoring configuration and run
diagnostic checks.

Usage:
    fleetwatch run -e E1 -e E2        # Monitor entities from Redis metrics
    fleetwatch serve                  # Run the HTTP API
    fleetwatch init-db                # Create the alert tables
    fleetwatch check-config cfg.json  # Validate thresholds and rules
    fleetwatch health                 # Check service health
"""

import asyncio
import json
import signal
import sys

import click

from fleetwatch.config.settings import get_settings
from fleetwatch.observability.logging import setup_logging
from fleetwatch.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Fleetwatch - Real-time entity monitoring and alerting."""
    setup_logging("DEBUG" if debug else None)


@main.command()
@click.option("--entity", "-e", "entities", multiple=True, required=True,
              help="Entity to monitor (can repeat)")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def run(entities: tuple[str, ...], metrics: bool, metrics_port: int | None) -> None:
    """Run the monitoring service, polling metrics from Redis."""
    import redis.asyncio as redis

    from fleetwatch.monitoring.scheduler import MonitoringScheduler
    from fleetwatch.monitoring.service import create_service
    from fleetwatch.monitoring.sources import RedisMetricSource
    from fleetwatch.storage.database import Database

    async def run_service():
        settings = get_settings()

        if metrics:
            get_metrics().start_server(port=metrics_port)

        db = Database()
        await db.connect()
        source = RedisMetricSource(str(settings.redis_url), prefix=settings.redis_metrics_prefix)
        await source.connect()
        redis_client = redis.from_url(
            str(settings.redis_url), encoding="utf-8", decode_responses=True,
        )

        service = create_service(settings, db, redis_client=redis_client, metric_source=source)
        scheduler = MonitoringScheduler(service)

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

        try:
            await service.start()
            for entity_id in entities:
                await service.start_monitoring(entity_id)
            scheduler.start()
            click.echo(f"Monitoring {len(entities)} entities: {', '.join(entities)}")

            await stop_event.wait()
        finally:
            await scheduler.stop()
            await service.close()
            await source.close()
            await redis_client.aclose()
            await db.close()

    asyncio.run(run_service())


@main.command("init-db")
def init_db() -> None:
    """Initialize the alert store schema."""
    from fleetwatch.monitoring.repository import AlertRepository
    from fleetwatch.storage.database import Database

    async def run_init():
        db = Database()
        await db.connect()
        try:
            await AlertRepository(db).ensure_schema()
            click.echo("Database initialized successfully")
        finally:
            await db.close()

    asyncio.run(run_init())


@main.command("check-config")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def check_config(path: str) -> None:
    """Validate a monitoring configuration file."""
    from fleetwatch.monitoring.errors import ConfigurationError
    from fleetwatch.monitoring.schemas import AlertRule, Threshold

    with open(path) as f:
        data = json.load(f)

    errors: list[str] = []
    thresholds = data.get("thresholds", [])
    rules = data.get("rules", [])

    for raw in thresholds:
        try:
            Threshold.from_dict(raw)
        except (ConfigurationError, KeyError, TypeError) as e:
            errors.append(f"threshold {raw.get('threshold_id', '?')}: {e}")

    for raw in rules:
        try:
            AlertRule.from_dict(raw)
        except (ConfigurationError, KeyError, TypeError) as e:
            errors.append(f"rule {raw.get('rule_id', '?')}: {e}")

    click.echo(f"Thresholds: {len(thresholds)}  Rules: {len(rules)}")
    if errors:
        for error in errors:
            click.echo(click.style(f"  ✗ {error}", fg="red"))
        click.echo(click.style(f"{len(errors)} invalid entries", fg="red"))
        sys.exit(1)
    click.echo(click.style("Configuration valid", fg="green"))


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        settings = get_settings()
        results: dict[str, bool] = {}

        try:
            import redis.asyncio as redis
            client = redis.from_url(str(settings.redis_url), decode_responses=True)
            results["redis"] = bool(await client.ping())
            await client.aclose()
        except Exception as e:
            results["redis"] = False
            logger.error("Redis health check failed", error=str(e))

        try:
            from fleetwatch.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        results["monitoring_config"] = settings.monitoring_config_path is not None
        results["risk_scorer_configured"] = settings.risk_scorer_url is not None
        results["slack_configured"] = settings.slack_configured

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "postgres") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def serve(host: str | None, port: int | None, reload: bool, metrics_port: int | None) -> None:
    """Start the monitoring API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    metrics_port = metrics_port or settings.metrics_port

    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "fleetwatch.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
