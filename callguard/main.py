"""Main entry point for the callguard command line.

Performs dependency injection (Composition Root) for the rate gate, result
cache and call monitor, and exposes diagnostic commands that push simulated
traffic through a fully wired guard.
"""

import asyncio
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from typing_extensions import Annotated

from callguard.core.services.guard_service import CallGuardService
from callguard.domain.models.errors import RateLimitedError
from callguard.infrastructure.cache.result_cache import ResultCache
from callguard.infrastructure.cli.display import ConsoleDisplay
from callguard.infrastructure.config.settings import (
    DEFAULT_CONFIG_FILE, get_cache_config, get_config, get_monitor_config,
    get_rate_gate_config, load_configuration,
)
from callguard.infrastructure.monitoring.call_monitor import CallMonitor
from callguard.infrastructure.monitoring.logger_setup import setup_logging
from callguard.infrastructure.resilience.rate_gate import RateGate

logger = logging.getLogger(__name__)

SIMULATED_ENDPOINT = "simulated.list"


def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up the guard components from the loaded configuration.

    This acts as the Composition Root.
    """
    dependencies: Dict[str, Any] = {}
    dependencies['ui'] = ConsoleDisplay()
    dependencies['rate_gate'] = RateGate(**asdict(get_rate_gate_config()))
    dependencies['cache'] = ResultCache(**asdict(get_cache_config()))
    dependencies['monitor'] = CallMonitor(
        rate_gate=dependencies['rate_gate'],
        cache=dependencies['cache'],
        **asdict(get_monitor_config()),
    )
    dependencies['guard'] = CallGuardService(
        rate_gate=dependencies['rate_gate'],
        cache=dependencies['cache'],
        monitor=dependencies['monitor'],
    )
    logger.debug("All dependencies initialized successfully.")
    return dependencies


class SimulatedApi:
    """Stand-in remote API: answers after a delay, failing as instructed first."""

    def __init__(self, latency_ms: float = 50, rate_limited: int = 0, failures: int = 0):
        self.latency_ms = latency_ms
        self.rate_limited_remaining = rate_limited
        self.failures_remaining = failures
        self.dispatches = 0

    async def fetch(self, item: int) -> Dict[str, Any]:
        self.dispatches += 1
        await asyncio.sleep(self.latency_ms / 1000)
        if self.rate_limited_remaining > 0:
            self.rate_limited_remaining -= 1
            raise RateLimitedError("Rate Limit Exceeded: quota for this window is used up")
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise RuntimeError("Backend unavailable")
        return {"item": item, "success": True}


async def run_simulation(
    guard: CallGuardService,
    api: SimulatedApi,
    requests: int,
    distinct_keys: int,
    timeout: Optional[float] = None,
) -> int:
    """Issues ``requests`` cached reads over ``distinct_keys`` keys; returns the failure count."""
    failed = 0
    for i in range(requests):
        item = i % max(1, distinct_keys)
        cache_key = ResultCache.generate_key("simulated", item)
        try:
            await guard.call(
                SIMULATED_ENDPOINT, "GET", lambda item=item: api.fetch(item),
                cache_key=cache_key, timeout=timeout,
            )
        except Exception as e:
            failed += 1
            logger.info(f"Simulated request {i + 1} failed: {e}")
    return failed


app = typer.Typer(
    name="callguard",
    help="callguard: rate gating, result caching and call monitoring for quota-limited APIs.",
    add_completion=False,
)

RequestsOption = Annotated[int, typer.Option("--requests", "-n", min=1, help="Number of simulated reads.")]
LatencyOption = Annotated[float, typer.Option("--latency-ms", min=0, help="Simulated remote latency.")]
RateLimitedOption = Annotated[int, typer.Option("--rate-limited", min=0, help="Leading dispatches answered with a rate-limit error.")]
FailuresOption = Annotated[int, typer.Option("--failures", min=0, help="Dispatches answered with a generic error.")]
KeysOption = Annotated[int, typer.Option("--distinct-keys", min=1, help="Distinct cache keys the reads cycle over.")]


@app.callback()
def main_callback(
    config: Annotated[Path, typer.Option("--config", help="YAML configuration file.")] = DEFAULT_CONFIG_FILE,
    log_level: Annotated[Optional[str], typer.Option("--log-level", help="Logging level (e.g. DEBUG).")] = None,
):
    """Loads configuration and sets up logging before any command runs."""
    load_configuration(config_file=config)
    setup_logging(
        log_level=log_level or get_config('logging.level'),
        log_file=get_config('logging.file'),
    )


@app.command()
def simulate(
    requests: RequestsOption = 5,
    latency_ms: LatencyOption = 50,
    rate_limited: RateLimitedOption = 0,
    failures: FailuresOption = 0,
    distinct_keys: KeysOption = 3,
):
    """Push simulated reads through the guard and print its status and health."""
    deps = create_dependencies()
    ui: ConsoleDisplay = deps['ui']
    api = SimulatedApi(latency_ms=latency_ms, rate_limited=rate_limited, failures=failures)
    failed = asyncio.run(run_simulation(deps['guard'], api, requests, distinct_keys))
    ui.display_info(f"{requests} reads issued, {api.dispatches} dispatched, {failed} failed.")
    if failed:
        ui.display_warning(f"{failed} of {requests} reads failed after the guard gave up; see the error summary.")
    ui.display_status(deps['monitor'].status())
    ui.display_health_report(deps['monitor'].health_report())


@app.command()
def health(
    requests: RequestsOption = 5,
    latency_ms: LatencyOption = 50,
    rate_limited: RateLimitedOption = 0,
    failures: FailuresOption = 0,
    distinct_keys: KeysOption = 3,
):
    """Run the simulation quietly and print only the health report (exit 1 when unhealthy)."""
    deps = create_dependencies()
    api = SimulatedApi(latency_ms=latency_ms, rate_limited=rate_limited, failures=failures)
    asyncio.run(run_simulation(deps['guard'], api, requests, distinct_keys))
    report = deps['monitor'].health_report()
    deps['ui'].display_health_report(report)
    if not report.healthy:
        deps['ui'].display_error(f"Guarded calls need attention: {', '.join(report.issues)}")
        raise typer.Exit(code=1)


@app.command(name="show-config")
def show_config():
    """Print the effective rate gate, cache and monitor configuration."""
    ui = ConsoleDisplay()
    for title, section in (
        ("Rate Gate", get_rate_gate_config()),
        ("Cache", get_cache_config()),
        ("Monitor", get_monitor_config()),
    ):
        ui.console.print(ui.build_table(title, asdict(section).items()))


def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
