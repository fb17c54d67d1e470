"""autobiz CLI."""

import asyncio
import json
import sys

import click

from autobiz.app import AutobizApp
from autobiz.db.base import to_json_value


def config_options(f):
    """Options shared by every command that builds the service container."""
    f = click.option("--broker", type=click.Choice(["sim", "http"]), help="Override broker mode")(f)
    f = click.option(
        "--store", type=click.Choice(["memory", "supabase"]), help="Override store backend"
    )(f)
    f = click.option("--live", is_flag=True, help="Disable dry run (real collaborators)")(f)
    f = click.option("--dry-run", is_flag=True, help="Force dry run mode")(f)
    f = click.option(
        "--config",
        type=click.Path(exists=True),
        default="config/config.yaml",
        help="Path to configuration file",
    )(f)
    return f


def _build(config, dry_run, live, store, broker) -> AutobizApp:
    override = True if dry_run else (False if live else None)
    return AutobizApp.from_config_path(
        config, dry_run=override, store_backend=store, broker_mode=broker
    )


def _execute(app: AutobizApp, make_coro):
    """Run one coroutine against the container, then release it."""

    async def runner():
        try:
            return await make_coro(app)
        finally:
            await app.aclose()

    return asyncio.run(runner())


def _echo(result) -> None:
    click.echo(json.dumps(to_json_value(result), indent=2, default=str))


def _run_command(opts: dict, make_coro) -> None:
    try:
        app = _build(**opts)
        _echo(_execute(app, make_coro))
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
def cli():
    """autobiz Command Line Interface."""
    pass


@cli.command()
@config_options
@click.option("--host", help="Bind address (defaults to server.host)")
@click.option("--port", type=int, help="Port (defaults to server.port)")
def serve(config, dry_run, live, store, broker, host, port):
    """Serve the function endpoints over HTTP."""
    import uvicorn

    from autobiz.api import create_app

    app = _build(config, dry_run, live, store, broker)
    uvicorn.run(
        create_app(app),
        host=host or app.config.server.host,
        port=port or app.config.server.port,
        log_config=None,
    )


@cli.command()
@config_options
def tick(**opts):
    """Run one autonomous trading tick and print the report."""
    _run_command(opts, lambda app: app.loop.tick())


@cli.command("run-loop")
@config_options
@click.option("--interval", type=float, help="Seconds between ticks (defaults to config)")
@click.option("--iterations", type=int, help="Stop after N ticks")
def run_loop(interval, iterations, **opts):
    """Run the autonomous trading loop on a fixed cadence."""
    try:
        app = _build(**opts)
        _execute(app, lambda a: a.loop.run(interval=interval, iterations=iterations))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        click.echo(f"Fatal error: {e}", err=True)
        sys.exit(1)


@cli.command()
@config_options
def smoke_test(config, dry_run, live, store, broker):
    """Run a smoke test (initialize components, run one tick, and exit)."""
    try:
        app = AutobizApp.from_config_path(
            config, dry_run=True, store_backend=store or "memory", broker_mode=broker or "sim"
        )
        _execute(app, lambda a: a.loop.tick())
        click.echo("Smoke test passed: Components initialized successfully.")
    except Exception as e:
        click.echo(f"Smoke test failed: {e}", err=True)
        sys.exit(1)


@cli.group()
def phase():
    """Drive a project's phase progression."""
    pass


@phase.command()
@config_options
@click.argument("project_id")
@click.option("--number", "phase_number", type=int, required=True, help="Phase number")
@click.option("--user", "user_id", help="User to notify")
def activate(project_id, phase_number, user_id, **opts):
    """Activate a phase and create its deliverables."""
    _run_command(
        opts, lambda app: app.worker.activate_phase(project_id, phase_number, user_id=user_id)
    )


@phase.command()
@config_options
@click.argument("project_id")
@click.option("--number", "phase_number", type=int, required=True, help="Phase number")
@click.option("--user", "user_id", help="User to notify")
def start(project_id, phase_number, user_id, **opts):
    """Dispatch a phase's open deliverables to its agent."""
    _run_command(opts, lambda app: app.worker.start_phase(project_id, phase_number, user_id=user_id))


@phase.command()
@config_options
@click.argument("phase_id")
def status(phase_id, **opts):
    """Show completion progress of a phase."""
    _run_command(opts, lambda app: app.worker.check_phase_completion(phase_id))


@phase.command()
@config_options
@click.argument("project_id")
@click.option("--current", "current_phase", type=int, required=True, help="Current phase number")
@click.option("--user", "user_id", help="User to notify")
@click.option("--force", is_flag=True, help="Advance even if the phase is not fully approved")
def advance(project_id, current_phase, user_id, force, **opts):
    """Close the current phase and open the next one."""
    _run_command(
        opts,
        lambda app: app.worker.advance_to_next_phase(
            project_id, current_phase, user_id, force=force
        ),
    )


@phase.command()
@config_options
@click.argument("project_id")
def progress(project_id, **opts):
    """Show progress across all phases of a project."""
    _run_command(opts, lambda app: app.worker.monitor_progress(project_id))


@cli.group()
def risk():
    """Inspect and reset trading risk controls."""
    pass


@risk.command("show")
@config_options
@click.argument("project_id")
def show_controls(project_id, **opts):
    """Show a project's risk controls."""
    _run_command(opts, lambda app: app.risk.get_controls(project_id))


@risk.command("clear-kill-switch")
@config_options
@click.argument("project_id")
@click.option("--user", "user_id", help="User performing the reset")
def clear_kill_switch(project_id, user_id, **opts):
    """Manually clear a tripped kill switch."""
    _run_command(opts, lambda app: app.risk.clear_kill_switch(project_id, user_id))


if __name__ == "__main__":
    cli()

# Alias for __main__.py
main = cli
