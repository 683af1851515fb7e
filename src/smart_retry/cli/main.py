"""Main CLI entry point for Smart Retry."""

import logging
import sys

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from smart_retry.config.parser import YAMLParser, dump_settings
from smart_retry.config.schema import PolicyType
from smart_retry.resilience import CircuitOpenError, RetryExecutor

console = Console()


class SimulatedFailure(Exception):
    """Error raised by the simulated flaky operation."""


class FlakyOperation:
    """Callable that fails its first ``failures`` invocations."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise SimulatedFailure(f"simulated failure #{self.calls}")
        return f"ok after {self.calls} calls"


@click.group()
@click.version_option(package_name="smart-retry")
@click.option("--log-level", default="WARNING",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Logging level for the retry library")
def cli(log_level: str):
    """Smart Retry CLI.

    Validate retry configurations, inspect delay schedules and simulate
    retried executions against a flaky operation.
    """
    load_dotenv()
    logging.basicConfig(level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s")


@cli.command()
@click.argument("config_path", type=click.Path(exists=True))
@click.option("--verbose", "-v", is_flag=True, help="Show detailed validation output")
def validate(config_path: str, verbose: bool):
    """Validate a YAML retry configuration.

    CONFIG_PATH: Path to the retry configuration file
    """
    try:
        console.print(f"[blue]Validating {config_path}...[/blue]")

        settings = YAMLParser().parse_file(config_path)
        settings.build_policy()

        console.print("[green]✓ Configuration is valid![/green]")

        if verbose:
            console.print("\n[bold]Retry Configuration:[/bold]")
            console.print(f"  Name: {settings.name}")
            console.print(f"  Description: {settings.description or 'N/A'}")
            console.print(f"  Policy: {settings.policy.type.value}")
            console.print(f"  Max Attempts: {settings.policy.max_attempts}")
            console.print(f"  Timeout: {settings.timeout if settings.timeout else 'none'}")
            if settings.circuit_breaker:
                console.print(f"  Circuit Breaker: threshold={settings.circuit_breaker.failure_threshold}, "
                              f"reset_timeout={settings.circuit_breaker.reset_timeout}s")
            else:
                console.print("  Circuit Breaker: none")

            console.print("\n[bold]Normalized:[/bold]")
            console.print(Syntax(dump_settings(settings), "yaml", theme="monokai"))

    except Exception as e:
        console.print(f"[red]✗ Validation failed: {escape(str(e))}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument("config_path", type=click.Path(exists=True))
def schedule(config_path: str):
    """Show the delay before each retry of a failing sequence.

    CONFIG_PATH: Path to the retry configuration file
    """
    try:
        settings = YAMLParser().parse_file(config_path)
        policy = settings.build_policy()
    except Exception as e:
        console.print(f"[red]✗ Failed to load configuration: {escape(str(e))}[/red]")
        sys.exit(1)

    table = Table(title=f"Retry schedule: {settings.name}")
    table.add_column("Attempt", justify="right")
    table.add_column("Delay (s)", justify="right")
    table.add_column("Max with jitter (s)", justify="right")

    jitter = policy.use_jitter and settings.policy.type != PolicyType.CUSTOM
    for attempt, delay in enumerate(policy.delay_schedule(), start=1):
        upper = delay * 1.1 if jitter else delay
        table.add_row(str(attempt), f"{delay:.3f}", f"{upper:.3f}")

    console.print(table)
    console.print(f"Total attempts: {policy.max_attempts}")


@cli.command()
@click.argument("config_path", type=click.Path(exists=True))
@click.option("--failures", "-f", default=2, help="Invocations that fail before the operation succeeds")
@click.option("--calls", "-c", default=1, help="Number of executions sharing one circuit breaker")
@click.option("--no-wait", is_flag=True, help="Skip the delays between attempts")
def simulate(config_path: str, failures: int, calls: int, no_wait: bool):
    """Run a flaky operation through the retry loop.

    CONFIG_PATH: Path to the retry configuration file
    """
    try:
        settings = YAMLParser().parse_file(config_path)
        breaker = settings.build_circuit_breaker()
        configuration = settings.to_configuration(
            circuit_breaker=breaker,
            on_retry=lambda attempt, delay: console.print(
                f"  [yellow]Retry attempt {attempt} after {delay:.3f}s[/yellow]"
            ),
            on_success=lambda: console.print("  [green]✓ Success[/green]"),
        )
    except Exception as e:
        console.print(f"[red]✗ Failed to load configuration: {escape(str(e))}[/red]")
        sys.exit(1)

    executor = RetryExecutor(sleep=(lambda _: None) if no_wait else None)
    operation = FlakyOperation(failures)
    failed = 0

    for call_number in range(1, calls + 1):
        console.print(f"[bold]Call {call_number}[/bold]")
        try:
            result = executor.execute_sync(operation, configuration)
            console.print(f"  Result: {result}")
        except CircuitOpenError as e:
            failed += 1
            console.print(f"  [red]✗ Rejected: {escape(str(e))}[/red]")
        except Exception as e:
            failed += 1
            console.print(f"  [red]✗ Failed: {escape(str(e))}[/red]")

        if breaker is not None:
            console.print(f"  Circuit state: {breaker.state.value} "
                          f"(failures: {breaker.failure_count})")

    console.print(f"\nOperation invoked {operation.calls} times, {failed}/{calls} calls failed")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    cli()
