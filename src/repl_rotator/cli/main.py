"""CLI entry point for repl-rotator.

Invoked as::

    repl-rotator [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m repl_rotator.cli.main

Commands
--------
discover   List replication agreements on the supplier
rotate     Rotate agreement credentials (execute or preview)
commands   Print manual ldapmodify commands
policy     Describe the password generation policy
monitor    Watch server logs for err=49 and optionally rotate
version    Show version information
"""
from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from repl_rotator import __version__
from repl_rotator.audit import RotationAuditLogger
from repl_rotator.catalog import AgreementCatalog, ReplicationAgreement
from repl_rotator.config import LoggingConfig, RotatorConfig, load_config
from repl_rotator.directory.base import Connector, DirectorySession
from repl_rotator.directory.memory import InMemoryDirectory, sample_directory
from repl_rotator.errors import (
    ConfigError,
    DirectoryConnectionError,
    PolicyUnsatisfiableError,
    QueryError,
)
from repl_rotator.monitor import AuthFailureEvent, FailureMonitor
from repl_rotator.orchestrator import AgreementStatus, CycleReport, RotationOrchestrator
from repl_rotator.passwords import CredentialResolver, PasswordGenerator, password_strength
from repl_rotator.updater import DualSidedUpdater, ExecutionMode

console = Console()

EXIT_FAILURE = 1
EXIT_NOTHING_TO_ROTATE = 3

_STATUS_STYLE = {
    AgreementStatus.SUCCEEDED: "green",
    AgreementStatus.PARTIAL: "bold red",
    AgreementStatus.FAILED: "red",
    AgreementStatus.UNRESOLVED: "yellow",
}


@dataclass
class CliState:
    """Per-invocation settings shared by all commands.

    ``directory`` replaces the real servers with simulated ones; it is
    filled in by ``--simulate`` or supplied by callers embedding the CLI.
    """

    config_path: str = "config.yaml"
    verbose: bool = False
    simulate: bool = False
    directory: Optional[InMemoryDirectory] = None
    _config: Optional[RotatorConfig] = None

    @property
    def config(self) -> RotatorConfig:
        if self._config is None:
            try:
                self._config = load_config(self.config_path)
            except ConfigError as exc:
                console.print(f"[red]Error:[/red] {escape(str(exc))}")
                sys.exit(EXIT_FAILURE)
            _configure_logging(self._config.logging, self.verbose)
        return self._config


def _configure_logging(config: LoggingConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.level.upper())
    fmt = "%(levelname)s %(name)s: %(message)s"
    if config.timestamps:
        fmt = "%(asctime)s " + fmt
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file, encoding="utf-8"))
    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@contextmanager
def _directory(state: CliState) -> Iterator[tuple[DirectorySession, Connector]]:
    """Open the supplier session and consumer connector; always closes the session."""
    directory_config = state.config.directory
    if state.directory is None and state.simulate:
        state.directory = sample_directory(directory_config.host, directory_config.base_dn)

    try:
        if state.directory is not None:
            session: DirectorySession = state.directory.connect(directory_config.host)
            connector: Connector = state.directory
        else:
            from repl_rotator.directory.ldap_session import LdapConnector, connect_from_config

            session = connect_from_config(directory_config)
            connector = LdapConnector(directory_config)
    except DirectoryConnectionError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        sys.exit(EXIT_FAILURE)

    try:
        yield session, connector
    finally:
        session.close()


def _build(state: CliState, session: DirectorySession, connector: Connector) -> RotationOrchestrator:
    config = state.config
    audit = None
    if config.logging.audit_file:
        audit = RotationAuditLogger(Path(config.logging.audit_file))
    return RotationOrchestrator(
        AgreementCatalog(session, config.directory.base_dn),
        CredentialResolver(config.password),
        _updater(state, session, connector),
        audit=audit,
    )


def _updater(state: CliState, session: DirectorySession, connector: Connector) -> DualSidedUpdater:
    directory_config = state.config.directory
    return DualSidedUpdater(
        session,
        connector,
        manager_dn=directory_config.replication_manager_dn,
        bind_dn=directory_config.bind_dn,
        default_port=directory_config.port,
    )


def _discover(
    state: CliState,
    session: DirectorySession,
    only: Optional[str] = None,
) -> list[ReplicationAgreement]:
    try:
        agreements = AgreementCatalog(session, state.config.directory.base_dn).discover()
    except (DirectoryConnectionError, QueryError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        sys.exit(EXIT_FAILURE)
    if only is not None:
        agreements = [a for a in agreements if a.name == only]
    return agreements


# ------------------------------------------------------------------
# Root group
# ------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="repl-rotator")
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    default="config.yaml",
    show_default=True,
    help="Path to the YAML configuration file.",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.option(
    "--simulate",
    is_flag=True,
    default=False,
    help="Use simulated directory servers with sample agreements.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str, verbose: bool, simulate: bool) -> None:
    """Rotate 389 Directory Server replication agreement credentials."""
    state = ctx.ensure_object(CliState)
    state.config_path = config_path
    state.verbose = verbose
    state.simulate = simulate or state.simulate


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    console.print(f"[bold]repl-rotator[/bold] v{__version__}")


# ------------------------------------------------------------------
# discover
# ------------------------------------------------------------------


@cli.command(name="discover")
@click.pass_obj
def discover_command(state: CliState) -> None:
    """List replication agreements on the supplier."""
    with _directory(state) as (session, _connector):
        agreements = _discover(state, session)

    if not agreements:
        console.print("[yellow]No replication agreements found.[/yellow]")
        sys.exit(EXIT_NOTHING_TO_ROTATE)

    table = Table(title=f"Replication agreements on {state.config.directory.host}")
    table.add_column("Agreement", style="cyan")
    table.add_column("Supplier")
    table.add_column("Consumer")
    table.add_column("Bind DN")
    table.add_column("Enabled", justify="center")
    for agreement in agreements:
        table.add_row(
            agreement.name,
            agreement.supplier_address,
            agreement.consumer_address,
            agreement.bind_identity,
            "yes" if agreement.enabled else "no",
        )
    console.print(table)
    console.print(f"\nFound {len(agreements)} replication agreement(s)")


# ------------------------------------------------------------------
# rotate
# ------------------------------------------------------------------


def _print_report(report: CycleReport) -> None:
    table = Table(title=f"Rotation results ({report.mode.value})")
    table.add_column("Agreement", style="cyan")
    table.add_column("Status")
    table.add_column("Supplier")
    table.add_column("Consumer")
    table.add_column("Detail")
    for result in report.results:
        style = _STATUS_STYLE[result.status]
        sides = {o.side.value: o.status.value for o in result.outcomes}
        table.add_row(
            result.name,
            f"[{style}]{result.status.value}[/{style}]",
            sides.get("supplier", "-"),
            sides.get("consumer", "-"),
            escape(result.error),
        )
    console.print(table)

    counts = report.counts()
    console.print(
        f"\n  Succeeded: {counts['succeeded']}  Partial: {counts['partial']}  "
        f"Failed: {counts['failed']}  Unresolved: {counts['unresolved']}"
    )

    for result in report.by_status(AgreementStatus.PARTIAL):
        console.print(
            f"\n[bold red]INCONSISTENT:[/bold red] {result.name}: supplier holds the new "
            "credential but the consumer does not. Apply manually:"
        )
        for command in result.remediation:
            console.print(command, markup=False, highlight=False)


@cli.command(name="rotate")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in ExecutionMode]),
    default=ExecutionMode.PREVIEW.value,
    show_default=True,
    help="'preview' shows the writes without making them.",
)
@click.option("--agreement", "-a", default=None, help="Rotate only this agreement.")
@click.option("--yes", "-y", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.option(
    "--show-commands",
    is_flag=True,
    default=False,
    help="Print the manual ldapmodify commands (they contain the new credentials).",
)
@click.pass_obj
def rotate_command(
    state: CliState,
    mode: str,
    agreement: Optional[str],
    yes: bool,
    show_commands: bool,
) -> None:
    """Rotate replication credentials on suppliers and consumers."""
    execution_mode = ExecutionMode(mode)
    config = state.config

    with _directory(state) as (session, connector):
        agreements = _discover(state, session, agreement)
        orchestrator = _build(state, session, connector)

        if not agreements:
            report = orchestrator.run_cycle([], mode=execution_mode, only=agreement)
            console.print(f"[yellow]Nothing to rotate:[/yellow] {report.note}")
            sys.exit(EXIT_NOTHING_TO_ROTATE)

        assignment = CredentialResolver(config.password).resolve(agreements)
        updater = _updater(state, session, connector)

        console.print(f"[bold]Planned changes ({execution_mode.value}):[/bold]")
        for item in agreements:
            resolved = assignment[item.name]
            console.print(f"\n  Agreement: [cyan]{item.name}[/cyan]")
            console.print(f"    Supplier: {item.supplier_address}")
            console.print(f"    Consumer: {item.consumer_address}")
            if not item.enabled:
                console.print("    [yellow]Agreement is disabled[/yellow]")
            if resolved.value is None:
                console.print(f"    [yellow]Unresolved:[/yellow] {resolved.reason}")
                continue
            console.print(f"    Credential source: {resolved.source.value}")
            if show_commands:
                for command in updater.commands(item, resolved.value):
                    console.print(command, markup=False, highlight=False)

        if execution_mode is ExecutionMode.EXECUTE and not yes:
            if not click.confirm("\nApply these changes?", default=False):
                console.print("Operation cancelled.")
                return

        report = orchestrator.run_cycle(agreements, mode=execution_mode, assignment=assignment)

    console.print()
    _print_report(report)
    if execution_mode is ExecutionMode.PREVIEW:
        console.print("\nPreview only: no changes were made.")
    if not report.ok:
        sys.exit(EXIT_FAILURE)


# ------------------------------------------------------------------
# commands
# ------------------------------------------------------------------


@cli.command(name="commands")
@click.option("--agreement", "-a", default=None, help="Only this agreement.")
@click.pass_obj
def commands_command(state: CliState, agreement: Optional[str]) -> None:
    """Print ldapmodify commands to rotate credentials by hand."""
    with _directory(state) as (session, connector):
        agreements = _discover(state, session, agreement)
        updater = _updater(state, session, connector)

    if not agreements:
        console.print("[yellow]No replication agreements found.[/yellow]")
        sys.exit(EXIT_NOTHING_TO_ROTATE)

    assignment = CredentialResolver(state.config.password).resolve(agreements)
    failed = False
    for item in agreements:
        resolved = assignment[item.name]
        console.print(f"# {item.name}: {item.supplier_address} -> {item.consumer_address}", markup=False)
        if resolved.value is None:
            console.print(f"# unresolved: {resolved.reason}", markup=False)
            failed = True
            continue
        for command in updater.commands(item, resolved.value):
            console.print(command, markup=False, highlight=False)
        console.print()
    if failed:
        sys.exit(EXIT_FAILURE)


# ------------------------------------------------------------------
# policy
# ------------------------------------------------------------------


@cli.command(name="policy")
@click.option("--sample", is_flag=True, default=False, help="Generate and rate a sample value.")
@click.pass_obj
def policy_command(state: CliState, sample: bool) -> None:
    """Describe the password policy."""
    policy = state.config.password
    generator = PasswordGenerator(policy)
    console.print(generator.describe(), markup=False)
    if policy.predefined:
        console.print(f"- Predefined values for: {', '.join(sorted(policy.predefined))}", markup=False)
    console.print(f"- Default value configured: {'yes' if policy.default else 'no'}")
    if sample:
        try:
            value = generator.generate()
        except PolicyUnsatisfiableError as exc:
            console.print(f"[red]Policy cannot be satisfied:[/red] {exc.reason}")
            sys.exit(EXIT_FAILURE)
        console.print(f"\nSample: {value}", markup=False, highlight=False)
        console.print(f"Strength: {password_strength(value)}")


# ------------------------------------------------------------------
# monitor
# ------------------------------------------------------------------


@cli.command(name="monitor")
@click.option(
    "--log-path",
    "log_paths",
    multiple=True,
    type=click.Path(),
    help="Log file to watch (repeatable). Defaults to the configured paths.",
)
@click.option(
    "--rotate/--no-rotate",
    default=False,
    show_default=True,
    help="Rotate the failing agreement when an err=49 is detected.",
)
@click.option(
    "--mode",
    type=click.Choice([m.value for m in ExecutionMode]),
    default=ExecutionMode.PREVIEW.value,
    show_default=True,
    help="Mode of triggered rotations.",
)
@click.option("--once", is_flag=True, default=False, help="Scan once and exit.")
@click.option("--from-end", is_flag=True, default=False, help="Ignore content already in the logs.")
@click.pass_obj
def monitor_command(
    state: CliState,
    log_paths: tuple[str, ...],
    rotate: bool,
    mode: str,
    once: bool,
    from_end: bool,
) -> None:
    """Watch directory server logs for replication authentication failures."""
    config = state.config
    if not log_paths and not config.monitor.enabled:
        console.print(
            "[yellow]Monitoring is disabled in the configuration.[/yellow] "
            "Set monitor.enabled or pass --log-path."
        )
        sys.exit(EXIT_FAILURE)
    paths = list(log_paths) or list(config.monitor.log_paths)
    execution_mode = ExecutionMode(mode)

    with _directory(state) if rotate else _no_directory() as opened:
        orchestrator = _build(state, *opened) if opened is not None else None

        def on_event(event: AuthFailureEvent) -> None:
            console.print(
                f"[red]err=49[/red] agreement [bold]{event.agreement_name}[/bold] "
                f"at {event.timestamp.isoformat()} ({event.log_source})"
            )
            if orchestrator is not None:
                _print_report(orchestrator.handle_event(event, mode=execution_mode))

        monitor = FailureMonitor(
            paths,
            on_event,
            poll_interval=config.monitor.poll_interval,
            encoding=config.monitor.encoding,
            start_at_end=from_end and not once,
        )

        if once:
            events = monitor.scan_once()
            console.print(f"{len(events)} authentication failure(s) found")
            return

        monitor.start()
        console.print(f"Watching {len(paths)} log source(s); press Ctrl+C to stop.")
        try:
            while not monitor.wait(1.0):
                pass
        except KeyboardInterrupt:
            console.print("\nStopping monitor...")
        finally:
            monitor.stop(timeout=config.monitor.poll_interval + 1)


@contextmanager
def _no_directory() -> Iterator[None]:
    yield None


if __name__ == "__main__":
    cli()
