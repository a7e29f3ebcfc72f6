"""
Command-line interface for queue-retry.

Provides commands to publish messages, sample queue depth, run the
periodic depth monitor and check Redis health.

Usage:
    queue-retry enqueue emails '{"to": "a@example.com"}'
    queue-retry depth emails webhooks
    queue-retry monitor --interval 60
    queue-retry health
"""

import asyncio
import signal
import sys

import click

from src.config.settings import get_settings
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Queue Retry - failure handling for at-least-once queue consumers."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()

    settings = get_settings()
    if settings.tracing_enabled:
        from src.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command()
@click.argument("queue_name")
@click.argument("text")
@click.option("--delay", default=0, type=int, help="Seconds before the message becomes visible")
def enqueue(queue_name: str, text: str, delay: int) -> None:
    """Publish a message to a queue."""
    from src.queues.redis_queue import RedisVisibilityQueue

    async def run():
        async with RedisVisibilityQueue() as queue:
            return await queue.enqueue(queue_name, text, visibility_delay_seconds=delay)

    message_id = asyncio.run(run())
    click.echo(f"Enqueued message {message_id} on {queue_name}")


@main.command()
@click.argument("queue_names", nargs=-1)
def depth(queue_names: tuple[str, ...]) -> None:
    """Print the approximate length of each queue."""
    from src.queues.monitor import QueueDepthReporter
    from src.queues.redis_queue import RedisVisibilityQueue

    names = list(queue_names) or get_settings().monitored_queue_names
    if not names:
        click.echo("No queues given and MONITORED_QUEUES is empty", err=True)
        sys.exit(1)

    async def run():
        async with RedisVisibilityQueue() as queue:
            return await QueueDepthReporter(queue, names).report()

    depths = asyncio.run(run())

    click.echo("\nQueue Depth:")
    click.echo("-" * 40)
    for name in names:
        if name in depths:
            click.echo(f"  {name}: {depths[name]}")
        else:
            click.echo(click.style(f"  {name}: unavailable", fg="red"))
    click.echo("-" * 40)


@main.command()
@click.option("--interval", default=None, type=float, help="Seconds between samples")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
def monitor(interval: float | None, metrics: bool) -> None:
    """Sample monitored queue depths on a timer."""
    from src.queues.monitor import QueueDepthReporter
    from src.queues.redis_queue import RedisVisibilityQueue

    settings = get_settings()
    names = settings.monitored_queue_names
    if not names:
        click.echo("MONITORED_QUEUES is empty, nothing to monitor", err=True)
        sys.exit(1)

    async def run():
        if metrics:
            get_metrics().start_server()

        async with RedisVisibilityQueue() as queue:
            reporter = QueueDepthReporter(queue, names)

            # Handle shutdown signals
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, reporter.stop)

            await reporter.run(interval or settings.monitor_interval_seconds)

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of the Redis connection."""
    import structlog
    logger = structlog.get_logger()

    async def check() -> bool:
        from src.queues.redis_queue import RedisVisibilityQueue

        try:
            async with RedisVisibilityQueue() as queue:
                return await queue.health_check()
        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
            return False

    healthy = asyncio.run(check())

    click.echo("\nHealth Check Results:")
    click.echo("-" * 40)
    icon = "✓" if healthy else "✗"
    color = "green" if healthy else "red"
    click.echo(click.style(f"  {icon} redis: {healthy}", fg=color))
    click.echo("-" * 40)

    if not healthy:
        sys.exit(1)


if __name__ == "__main__":
    main()
