"""Command-line interface for sitetasks.

This module defines the CLI using the Click framework. Every task is a
subcommand; running ``sitetasks`` without one runs the default pipeline.

Commands:
- compile-styles (css), render-templates (html), lint, test, minify (uglify)
- watch: Re-run tasks on change.
- dev-server (sync): Serve the output with live reload.
- default: lint, then styles/templates/minify in parallel, then test.
- tasks: List the available tasks.
"""

from __future__ import annotations

from pathlib import Path

import click

from . import __version__
from .config import load_config
from .errors import ConfigError
from .logging_setup import setup_logging
from .runner import Task, TaskContext, run_task
from .tasks import ALIASES, TASKS


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="sitetasks")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (defaults to sitetasks.yaml in the current directory)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(click_ctx: click.Context, config_path: Path | None, verbose: bool):
    """Run front-end build tasks. Without a command, runs the default pipeline."""
    setup_logging(verbose)
    project_root = Path.cwd()
    try:
        config = load_config(project_root, config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    click_ctx.obj = TaskContext(project_root, config)
    if click_ctx.invoked_subcommand is None:
        _run(click_ctx.obj, TASKS["default"])


def _run(ctx: TaskContext, task: Task) -> None:
    """Run a task and map failure to exit code 1."""
    result = run_task(task, ctx)
    if not result.ok:
        click.echo(click.style("Task failed:", fg="red", bold=True), err=True)
        error: BaseException | None = result.error
        while error is not None:
            click.echo(click.style(f"  {error}", fg="yellow"), err=True)
            error = error.__cause__
        raise SystemExit(1)


def _task_command(task: Task) -> click.Command:
    @click.pass_obj
    def command(ctx: TaskContext):
        _run(ctx, task)

    return click.Command(
        task.name,
        callback=command,
        help=task.description,
        short_help=task.description,
    )


for _name, _task in TASKS.items():
    if _name != "dev-server":
        cli.add_command(_task_command(_task))


@cli.command("dev-server")
@click.option("--port", type=int, required=False, help="HTTP port (overrides sitetasks.yaml)")
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (overrides sitetasks.yaml)",
)
@click.pass_obj
def dev_server(ctx: TaskContext, port: int | None, ws_port: int | None):
    """Serve the output with live reload."""
    settings = ctx.config["server"]
    if port is not None:
        settings["port"] = port
        # An overridden HTTP port moves the default WebSocket port with it.
        settings["ws_port"] = ws_port
    elif ws_port is not None:
        settings["ws_port"] = ws_port
    _run(ctx, TASKS["dev-server"])


for _alias, _target in ALIASES.items():
    cli.add_command(cli.commands[_target], name=_alias)


@cli.command("tasks")
def list_tasks():
    """List the available tasks."""
    aliases: dict[str, list[str]] = {}
    for alias, target in ALIASES.items():
        aliases.setdefault(target, []).append(alias)
    width = max(len(name) for name in TASKS)
    for name, task in TASKS.items():
        extra = f" (alias: {', '.join(aliases[name])})" if name in aliases else ""
        click.echo(f"{name.ljust(width)}  {task.description}{extra}")


def main():
    """Entry point for the CLI application."""
    cli()
