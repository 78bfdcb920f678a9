"""
Provisioner — CLI entrypoint.

Usage:
    provisioner --help
    provisioner provision debian12-rag
    provisioner provision ./my-stack.yml --dry-run
    provisioner status
    provisioner check debian12-rag
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from provisioner import __version__
from provisioner.core.observability.logging_config import resolve_level, setup_logging

if TYPE_CHECKING:
    from provisioner.core.engine.reporter import RunReport

_STATUS_STYLE = {
    "healthy": ("✓", "green"),
    "failed": ("✗", "red"),
    "skipped": ("⊘", "yellow"),
    "pending": ("•", "white"),
}

_OUTCOME_STYLE = {
    "success": ("✅", "green"),
    "partial_success": ("⚠️ ", "yellow"),
    "failure": ("❌", "red"),
}

_HEALTH_STYLE = {
    "healthy": ("💚", "green"),
    "degraded": ("🟡", "yellow"),
    "unhealthy": ("🔴", "red"),
    "unknown": ("❔", "white"),
}

_state_dir_option = click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Engine state directory (default: $PROV_STATE_DIR or /var/lib/provisioner).",
)
_json_option = click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")


@click.group()
@click.version_option(version=__version__, prog_name="provisioner")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """Provision services onto a host and verify they come up healthy."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = None

    setup_logging(level=resolve_level(level))


# ── provision ───────────────────────────────────────────────────────


@cli.command()
@click.argument("source")
@click.option("--dry-run", is_flag=True, help="Validate and plan only; change nothing.")
@click.option(
    "--timeout-scale",
    type=click.FloatRange(min=0, min_open=True),
    default=1.0,
    show_default=True,
    help="Multiply every health-check attempt budget.",
)
@click.option("--mock", is_flag=True, help="Use the in-memory backend (no real changes).")
@click.option("--skip-probe", is_flag=True, help="Skip the target pre-flight checks.")
@_state_dir_option
@_json_option
@click.pass_context
def provision(
    ctx: click.Context,
    source: str,
    dry_run: bool,
    timeout_scale: float,
    mock: bool,
    skip_probe: bool,
    state_dir: Path | None,
    as_json: bool,
) -> None:
    """Install and verify every service of SOURCE.

    SOURCE is a descriptor file or a built-in profile name.

    Examples:

        provisioner provision debian12-rag

        provisioner provision nixos-rag --timeout-scale 2

        provisioner provision ./stack.yml --dry-run
    """
    from provisioner.core.use_cases.provision import provision as run_provision

    result = run_provision(
        source,
        dry_run=dry_run,
        timeout_scale=timeout_scale,
        mock=mock,
        state_dir=state_dir,
        skip_probe=skip_probe,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        label = "Pre-flight check failed" if result.error_kind == "preflight" else "Error"
        click.secho(f"❌ {label}: {result.error}", fg="red")
        for failure in result.failures[1:]:
            click.echo(
                f"   • {failure.get('name')}: observed {failure.get('observed')}, "
                f"required {failure.get('required')}"
            )
        sys.exit(result.exit_code)

    run = result.run
    report = result.report
    assert run is not None and report is not None
    quiet = ctx.obj.get("quiet", False)

    mode_label = "[dry-run] " if dry_run else "[mock] " if mock else ""
    if not quiet:
        click.secho(f"\n🚀 {mode_label}{run.descriptor_set} ({run.backend})", fg="cyan", bold=True)
        click.echo(f"   Run: {run.run_id}")
        for warning in report.warnings:
            click.secho(f"   ⚠️  {warning}", fg="yellow")
        click.echo()

    if dry_run:
        click.secho("   Plan:", fg="white", bold=True)
        for position, sid in enumerate(run.plan, start=1):
            descriptor = result.descriptor_set.services[sid] if result.descriptor_set else None
            deps = f"  (after {', '.join(descriptor.depends_on)})" if descriptor and descriptor.depends_on else ""
            budget = result.health_budgets.get(sid)
            health = (
                f"  [health: {budget['attempts']} attempt(s), up to {budget['max_wait_seconds']:g}s]"
                if budget else ""
            )
            click.echo(f"     {position}. {sid}{deps}{health}")
        click.echo()
        sys.exit(report.exit_code)

    for sid in run.plan:
        service = run.results[sid]
        icon, color = _STATUS_STYLE.get(service.status.value, ("•", "white"))
        click.secho(f"   {icon} {sid}", fg=color, nl=False)
        if service.status.value == "healthy":
            note = "" if service.installed else "  (already current)"
            click.echo(note)
        else:
            click.echo(f"  {service.reason}" if service.reason else "")

    _render_outcome(report)

    if report.endpoints and not quiet:
        click.secho("   Access:", fg="white", bold=True)
        for sid, endpoint in report.endpoints.items():
            click.echo(f"     {sid:<16} {endpoint}")
        click.echo()

    if result.report_path and ctx.obj.get("verbose"):
        click.secho(f"   💾 Report saved to {result.report_path}", fg="cyan")
        click.echo()

    sys.exit(report.exit_code)


def _render_outcome(report: RunReport) -> None:
    icon, color = _OUTCOME_STYLE.get(report.outcome, ("•", "white"))
    click.echo()
    click.secho(
        f"{icon} {report.outcome.replace('_', ' ').title()}: "
        f"{len(report.healthy)}/{report.total} healthy, "
        f"{len(report.failed)} failed, {len(report.skipped)} skipped",
        fg=color,
        bold=True,
    )
    click.echo()


# ── status ──────────────────────────────────────────────────────────


@cli.command()
@_state_dir_option
@_json_option
@click.pass_context
def status(ctx: click.Context, state_dir: Path | None, as_json: bool) -> None:
    """Show the last provisioning run."""
    from provisioner.core.use_cases.status import get_status

    result = get_status(state_dir)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(1 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    run = result.run
    assert run is not None
    outcome = result.summary.get("outcome", "unknown")
    icon, color = _OUTCOME_STYLE.get(outcome, ("❔", "white"))

    click.secho(f"\n📋 {run.descriptor_set} ({run.backend})", fg="cyan", bold=True)
    click.echo(f"   Run: {run.run_id}")
    click.echo(f"   Started: {run.started_at}")
    if run.ended_at:
        click.echo(f"   Ended:   {run.ended_at}")
    click.echo("   Outcome: ", nl=False)
    click.secho(f"{icon} {outcome}", fg=color)
    click.echo()

    for sid in run.plan:
        service = run.results[sid]
        s_icon, s_color = _STATUS_STYLE.get(service.status.value, ("•", "white"))
        click.secho(f"   {s_icon} {sid}", fg=s_color, nl=False)
        click.echo(f"  {service.reason}" if service.reason and service.status.value != "healthy" else "")

    if result.history and ctx.obj.get("verbose"):
        click.echo()
        click.secho("   Recent runs:", fg="white", bold=True)
        for entry in reversed(result.history):
            click.echo(f"     {entry['timestamp']}  {entry['descriptor_set']}  {entry['outcome']}")

    click.echo()


# ── check / probe ───────────────────────────────────────────────────


@cli.command()
@click.argument("source")
@click.option("--mock", is_flag=True, help="Ask the in-memory backend for process state.")
@_json_option
@click.pass_context
def check(ctx: click.Context, source: str, mock: bool, as_json: bool) -> None:
    """Probe every service of SOURCE once, without changing anything."""
    from provisioner.core.use_cases.check import check_services

    result = check_services(source, mock=mock)
    health = result.health
    exit_code = 2 if result.error else 0 if health and health.status == "healthy" else 1

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(exit_code)

    assert health is not None
    icon, color = _HEALTH_STYLE.get(health.status, ("❔", "white"))
    click.echo()
    click.secho(f"{icon} {result.descriptor_set}: {health.status.upper()}", fg=color, bold=True)
    click.echo(f"   {health.timestamp}")
    click.echo()

    for component in health.components:
        c_icon, c_color = _HEALTH_STYLE.get(component.status, ("❔", "white"))
        click.secho(f"   {c_icon} {component.name}", fg=c_color, bold=True)
        click.echo(f"      {component.message}")
        if ctx.obj.get("verbose"):
            for key, val in component.details.items():
                click.echo(f"      {key}: {val}")

    click.echo()
    sys.exit(exit_code)


@cli.command("probe")
@click.argument("source")
@_json_option
def probe_cmd(source: str, as_json: bool) -> None:
    """Run only the target pre-flight checks for SOURCE."""
    from provisioner.core.use_cases.check import check_target

    result = check_target(source)
    exit_code = 0 if result.ok else 3 if result.failures else 2

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(exit_code)

    click.secho(f"\n🔍 Pre-flight: {result.descriptor_set or source}", fg="cyan", bold=True)
    click.echo()

    checks = result.target.checks if result.target else []
    if result.failures:
        for failure in result.failures:
            click.secho(f"   ✗ {failure.get('name')}", fg="red", nl=False)
            click.echo(f"  observed {failure.get('observed')}, required {failure.get('required')}")
    for c in checks:
        if c.ok:
            click.secho(f"   ✓ {c.name}", fg="green", nl=False)
        else:
            click.secho(f"   ⚠ {c.name}", fg="yellow", nl=False)
        click.echo(f"  {c.message}")
    for warning in result.target.warnings if result.target else []:
        click.secho(f"   ⚠️  {warning}", fg="yellow")

    click.echo()
    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
    else:
        click.secho("✅ Host meets all hard requirements", fg="green", bold=True)
    click.echo()
    sys.exit(exit_code)


# ── profiles ────────────────────────────────────────────────────────


@cli.command()
@_json_option
def profiles(as_json: bool) -> None:
    """List built-in descriptor sets."""
    from provisioner.core.config.loader import list_profiles, load_descriptor_set
    from provisioner.core.errors import ConfigError

    rows = []
    for name in list_profiles():
        try:
            ds = load_descriptor_set(name)
        except ConfigError as e:
            rows.append({"name": name, "error": str(e)})
            continue
        rows.append({
            "name": name,
            "description": ds.description,
            "backend": ds.backend.name,
            "services": list(ds.services),
        })

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    click.secho("\n📦 Built-in profiles", fg="cyan", bold=True)
    click.echo()
    for row in rows:
        if "error" in row:
            click.secho(f"   ✗ {row['name']}", fg="red", nl=False)
            click.echo(f"  {row['error']}")
            continue
        click.secho(f"   • {row['name']}", fg="white", bold=True, nl=False)
        click.echo(f"  [{row['backend']}]  {row['description']}")
        click.echo(f"       {', '.join(row['services'])}")
    click.echo()


if __name__ == "__main__":
    cli()
