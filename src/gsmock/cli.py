import logging
import os
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from gsmock.mock.backend import create_mock_backend
from gsmock.mock.errors import MockBackendError
from gsmock.mock.store import DEFAULT_STATE_FILE

console = Console()


class HelpfulCommand(click.Command):
    """Show full help text when a command is invoked incorrectly."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            click.echo(ctx.get_help())
            click.echo()
            console.print(f"[bold red]Error:[/] {e.format_message()}")
            ctx.exit(2)


class HelpfulGroup(click.Group):
    command_class = HelpfulCommand


def _control(ctx):
    return ctx.obj["backend"].control


def _fail(e):
    console.print(f"[bold red]Error:[/] {e}")
    raise SystemExit(1)


@click.group(cls=HelpfulGroup)
@click.version_option(version="0.1.0", prog_name="gsmock")
@click.option("--debug", is_flag=True, help="Log every mock backend call")
@click.option(
    "--state-file", type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_STATE_FILE, show_default=True, help="Shared mock state file",
)
@click.pass_context
def cli(ctx, debug, state_file):
    """Game Server Mock - inspect and steer the simulated backend."""
    if debug:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["backend"] = create_mock_backend(state_file=state_file)


@cli.command()
@click.pass_context
def scenarios(ctx):
    """List available scenarios."""
    control = _control(ctx)
    current = control.get_current_scenario()
    available = control.list_scenarios()

    table = Table(title="Scenarios")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Active", style="green")
    for s in available:
        table.add_row(s["name"], s["description"], "*" if s["name"] == current else "")

    console.print(table)
    if current not in {s["name"] for s in available}:
        console.print(f"Current scenario: [yellow]{current}[/]")


@cli.command()
@click.argument("name")
@click.pass_context
def scenario(ctx, name):
    """Apply a named scenario."""
    try:
        _control(ctx).apply_scenario(name)
    except MockBackendError as e:
        _fail(e)
    console.print(f"[green]Scenario {name} applied.[/]")


@cli.command()
@click.pass_context
def reset(ctx):
    """Reset the mock state to the default scenario."""
    _control(ctx).reset()
    console.print("[green]Mock state reset to default scenario.[/]")


@cli.command()
@click.pass_context
def state(ctx):
    """Show the current mock state."""
    data = _control(ctx).get_state()
    instance = data["instance"]

    console.print(f"[bold]Scenario: {data['scenario']}[/]")
    if instance is None:
        console.print("  Instance:        none")
    else:
        console.print(f"  Instance ID:     {instance['instance_id']}")
        console.print(f"  State:           {instance['state']}")
        console.print(f"  Public IP:       {instance['public_ip'] or '-'}")
        console.print(f"  Has Volume:      {instance['has_volume']}")
        if instance["transition_target"]:
            console.print(f"  Settles To:      {instance['transition_target']}")
    stack = data["stack"]
    console.print(f"  Stack:           {stack['stack_name']} ({stack['status'] if stack['exists'] else 'missing'})")
    console.print(f"  Backups:         {len(data['backups'])}")
    console.print(f"  Commands Run:    {len(data['commands'])}")

    if data["parameters"]:
        console.print("  Parameters:")
        for name, value in sorted(data["parameters"].items()):
            console.print(f"    {name} = {value}")

    if data["costs"]:
        console.print("  Costs:")
        for period, snapshot in data["costs"].items():
            console.print(f"    {period}: {snapshot['total_cost']} {snapshot['currency']}")

    _print_faults(data["faults"])


def _print_faults(faults):
    if faults["global_latency_ms"]:
        console.print(f"  Global Latency:  {faults['global_latency_ms']}ms")
    failures = faults["operation_failures"]
    if not failures:
        return
    table = Table(title="Faults")
    table.add_column("Operation", style="cyan")
    table.add_column("Mode", style="red")
    table.add_column("Latency (ms)", style="yellow")
    table.add_column("Error")
    for operation, policy in sorted(failures.items()):
        error = ": ".join(p for p in (policy["error_code"], policy["error_message"]) if p)
        table.add_row(
            operation, policy["mode"] or "-",
            str(policy["latency_ms"]) if policy["latency_ms"] else "-", error,
        )
    console.print(table)


@cli.command()
@click.argument("operation")
@click.option("--fail-next", is_flag=True, help="Fail the next call only")
@click.option("--always-fail", is_flag=True, help="Fail every call until cleared")
@click.option("--code", "error_code", default=None, help="Error code to raise")
@click.option("--message", "error_message", default=None, help="Error message to raise")
@click.option("--latency", type=int, default=None, help="Delay each call by this many ms")
@click.pass_context
def fault(ctx, operation, fail_next, always_fail, error_code, error_message, latency):
    """Inject a fault for an operation."""
    body = {
        "operation": operation, "fail_next": fail_next, "always_fail": always_fail,
        "error_code": error_code, "error_message": error_message, "latency": latency,
    }
    try:
        policy = _control(ctx).inject_fault(body)
    except (MockBackendError, ValidationError) as e:
        _fail(e)
    console.print(f"[green]Fault injected for {operation}[/] ({policy['mode'] or 'latency only'})")


@cli.command("clear-fault")
@click.argument("operation", required=False, default=None)
@click.pass_context
def clear_fault(ctx, operation):
    """Clear the fault for OPERATION, or all faults."""
    try:
        _control(ctx).clear_fault(operation)
    except MockBackendError as e:
        _fail(e)
    if operation is not None:
        console.print(f"[green]Fault cleared for {operation}.[/]")
    else:
        console.print("[green]All faults cleared.[/]")


@cli.command()
@click.argument("latency_ms", type=int)
@click.pass_context
def latency(ctx, latency_ms):
    """Delay every operation by LATENCY_MS (0 disables)."""
    try:
        _control(ctx).set_global_latency(latency_ms)
    except MockBackendError as e:
        _fail(e)
    if latency_ms:
        console.print(f"[green]Global latency set to {latency_ms}ms.[/]")
    else:
        console.print("[green]Global latency disabled.[/]")


@cli.command()
@click.pass_context
def settle(ctx):
    """Finish a pending or stopping transition now."""
    try:
        new_state = _control(ctx).settle_instance()
    except MockBackendError as e:
        _fail(e)
    console.print(f"Instance state: [bold]{new_state}[/]")


@cli.command()
@click.option("--port", "-p", default=8080, help="API port")
@click.option("--host", default="127.0.0.1", help="API host")
@click.pass_context
def api(ctx, port, host):
    """Serve the mock control endpoints over HTTP."""
    from gsmock.api import BACKEND_MODE_ENV, create_app
    import uvicorn

    os.environ.setdefault(BACKEND_MODE_ENV, "mock")
    app = create_app(ctx.obj["backend"])
    console.print(f"[green]Starting mock control API on {host}:{port}[/]")
    uvicorn.run(app, host=host, port=port)
