"""Main entry point for the resilink diagnostics CLI.

Sets up the Typer CLI application, performs dependency injection
(Composition Root) and defines commands that inspect and maintain the
persisted resilience state, or run a single call through the layer.
"""

import asyncio
import logging
import time
from typing import Annotated, Any, Dict, Optional

import httpx
import typer

from resilink.core.resilience_service import ResilienceService
from resilink.infrastructure.cli.display import ConsoleDisplay
from resilink.infrastructure.config.settings import (
    build_rate_limit_policy,
    build_retry_config,
    get_config,
    get_state_dir,
    load_configuration,
)
from resilink.infrastructure.connectivity.monitors import DEFAULT_PROBE_URL, HttpProbeConnectivityMonitor
from resilink.infrastructure.monitoring.logger_setup import setup_logging
from resilink.infrastructure.persistence.disk_store import DiskStateStore
from resilink.infrastructure.resilience.errors import AdmissionDeniedError, classify_error

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_SECONDS = 10.0
QUEUE_POLL_SECONDS = 0.5

# --- Dependency Injection Container (Manual) ---

_dependencies: Dict[str, Any] = {}


def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up the objects shared by all commands.

    This acts as the Composition Root.
    """
    load_configuration()
    setup_logging(
        log_level=get_config('logging.level', 'WARNING'),
        log_format=get_config('logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
        log_file=get_config('logging.file'),
    )

    dependencies: Dict[str, Any] = {}
    dependencies['ui'] = ConsoleDisplay()
    dependencies['store'] = DiskStateStore(get_state_dir())
    dependencies['policy'] = build_rate_limit_policy()
    dependencies['retry_config'] = build_retry_config()
    logger.info("All dependencies initialized successfully.")
    return dependencies


def get_dependencies() -> Dict[str, Any]:
    if not _dependencies:
        _dependencies.update(create_dependencies())
    return _dependencies


def close_dependencies() -> None:
    """Releases resources held by the shared dependencies."""
    store = _dependencies.get('store')
    if store is not None:
        store.close()
    _dependencies.clear()


def build_service(deps: Dict[str, Any], monitor: Any = None) -> ResilienceService:
    """Creates a ResilienceService holding the persisted state."""
    service = ResilienceService(policy=deps['policy'], retry_config=deps['retry_config'], monitor=monitor)
    snapshot = deps['store'].load()
    if snapshot:
        service.restore(snapshot)
    return service


def effective_intervals(service: ResilienceService) -> Dict[str, float]:
    keys = set(service.admission.keys()) | set(service.cache.keys())
    return {key: service.admission.effective_interval(key) for key in keys}


# --- Typer App Definition ---
app = typer.Typer(
    name="resilink",
    help="resilink: inspect and exercise the adaptive network resilience layer.",
    add_completion=False,
)


@app.command()
def stats():
    """Show per-operation admission, error and cache state."""
    deps = get_dependencies()
    service = build_service(deps)
    deps['ui'].display_state(service.snapshot(), effective_intervals(service), time.time())
    deps['ui'].display_queue_stats(service.get_queue_stats())


async def _fetch_url(url: str, timeout: float) -> Dict[str, Any]:
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(url)
        response.raise_for_status()
        return {"status": response.status_code, "length": len(response.content), "fetched_at": time.time()}


async def _wait_for_queue(service: ResilienceService, timeout: float) -> None:
    """Keeps the process alive while queued retries are pending, up to timeout."""
    deadline = time.monotonic() + timeout
    queue = service.retry_queue
    while (len(queue) or queue.is_draining) and time.monotonic() < deadline:
        await asyncio.sleep(QUEUE_POLL_SECONDS)
    await queue.join()


async def _run_fetch(deps: Dict[str, Any], url: str, key: str, timeout: float, wait: float) -> int:
    ui = deps['ui']
    monitor = HttpProbeConnectivityMonitor(
        probe_url=get_config('connectivity.probe_url', DEFAULT_PROBE_URL)
    ) if wait > 0 else None
    service = build_service(deps, monitor=monitor)
    exit_code = 0

    async with service:
        if monitor:
            monitor.start()
        try:
            result = await service.execute(key, _fetch_url, url, timeout)
            ui.display_info(f"{key}: HTTP {result['status']} ({result['length']} bytes)")
        except AdmissionDeniedError as e:
            ui.display_warning(str(e))
            exit_code = 2
        except httpx.HTTPError as e:
            ui.display_error(f"{key}: {classify_error(e).value} failure: {e}")
            exit_code = 1

        if len(service.retry_queue) and wait > 0:
            ui.display_info(f"Waiting up to {wait:.0f}s for connectivity to replay queued calls...")
            await _wait_for_queue(service, wait)
            ui.display_queue_stats(service.get_queue_stats())
        elif len(service.retry_queue):
            ui.display_warning("Call queued for retry, but --wait is 0; the retry is discarded on exit.")

        if monitor:
            await monitor.stop()

    deps['store'].save(service.snapshot())
    return exit_code


@app.command()
def fetch(
    url: Annotated[str, typer.Argument(help="URL to GET through the resilience layer.")],
    key: Annotated[Optional[str], typer.Option("--key", "-k", help="Operation key (defaults to the URL).")] = None,
    timeout: Annotated[float, typer.Option(help="Request timeout in seconds.")] = DEFAULT_FETCH_TIMEOUT_SECONDS,
    wait: Annotated[float, typer.Option(help="Seconds to wait for connectivity to replay a queued call.")] = 0.0,
):
    """Fetch a URL with admission control, caching and connectivity retry."""
    deps = get_dependencies()
    exit_code = asyncio.run(_run_fetch(deps, url, key or url, timeout, wait))
    if exit_code:
        raise typer.Exit(code=exit_code)


@app.command(name="reset-rate-limits")
def reset_rate_limits_command():
    """Drop intervals escalated by sustained errors."""
    deps = get_dependencies()
    service = build_service(deps)
    service.reset_rate_limits()
    deps['store'].save(service.snapshot())
    deps['ui'].display_info("Rate limits reset to configured values.")


@app.command(name="sweep-cache")
def sweep_cache_command():
    """Remove cached responses older than the configured maximum age."""
    deps = get_dependencies()
    service = build_service(deps)
    removed = service.sweep_expired_cache()
    deps['store'].save(service.snapshot())
    deps['ui'].display_info(f"Removed {removed} expired cache entries.")


@app.command(name="clear-state")
def clear_state_command(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
):
    """Delete all persisted resilience state."""
    deps = get_dependencies()
    if not yes and not typer.confirm("Delete all saved resilience state?"):
        raise typer.Abort()
    deps['store'].clear()
    deps['ui'].display_info("Saved resilience state cleared.")


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    try:
        app()
    finally:
        close_dependencies()


if __name__ == "__main__":
    cli_entry_point()
