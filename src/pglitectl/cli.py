"""Typer-powered command line for ``pglitectl``.

Running ``pglitectl`` without a subcommand creates the instance if needed and
opens a client session (``setup`` followed by ``connect``). The remaining
subcommands map one-to-one onto :class:`~pglitectl.instance.Instance`
operations; ``start``/``stop``/``status`` and ``connect`` pass any extra
arguments straight through to the underlying binaries. Tokens that name no
subcommand are forwarded to the client shell opened by the default action.
Every subcommand accepts ``-p/--personality``.
"""
from __future__ import annotations

import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import click
import typer
import yaml
from rich.console import Console
from rich.markup import escape
from typer.core import TyperGroup

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .instance import Instance, InstancePaths
from .logging import OperationScope, StructuredLogger
from .personality import PERSONALITIES, PersonalityError, select
from .providers import ControlError

console = Console()
err_console = Console(stderr=True)

_PERSONALITY_CHOICES = "|".join(sorted(PERSONALITIES))

PERSONALITY_OPTION = typer.Option(
    None,
    "--personality",
    "-p",
    metavar="NAME",
    help=f"Database engine personality ({_PERSONALITY_CHOICES}).",
)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to pglitectl's YAML config file.",
)

ROOT_OPTION = typer.Option(
    None,
    "--root",
    file_okay=False,
    help="Instance directory (defaults to ./var).",
)

PASSTHROUGH_SETTINGS = {"allow_extra_args": True, "ignore_unknown_options": True}

DEFAULT_ACTION = "default"


class PassthroughGroup(TyperGroup):
    """Send tokens that name no subcommand to the default action."""

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[str | None, click.Command | None, list[str]]:
        """Resolve *args* to a subcommand, defaulting to setup then connect."""
        if args and self.get_command(ctx, args[0]) is None:
            return DEFAULT_ACTION, self.get_command(ctx, DEFAULT_ACTION), args
        return super().resolve_command(ctx, args)


app = typer.Typer(
    cls=PassthroughGroup,
    context_settings=PASSTHROUGH_SETTINGS,
    add_completion=False,
    help=textwrap.dedent(
        """
        Manage a throwaway PostgreSQL instance living in ./var.

        Without a subcommand the instance is created on first use, started if
        needed and a client session is opened against its UNIX socket.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    personality_flag: str | None = None
    instance: Instance | None = None


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    root: Path | None,
    personality: str | None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if root is not None:
        overrides["root_dir"] = str(root)

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        err_console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        personality_flag=personality,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None, None)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    err_console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _control_error(op: OperationScope, exc: ControlError) -> NoReturn:
    _command_error(op, str(exc), rc=exc.returncode)


def _target(runtime: RuntimeContext) -> dict[str, object]:
    return {"kind": "instance", "root": str(runtime.config.root_dir)}


def _resolve_instance(
    runtime: RuntimeContext,
    op: OperationScope,
    personality: str | None = None,
) -> Instance:
    """Resolve the personality once and bind the instance controller."""
    if runtime.instance is not None:
        return runtime.instance
    requested = personality if personality is not None else runtime.personality_flag
    paths = InstancePaths.from_root(runtime.config.root_dir)
    try:
        selected = select(requested, paths, runtime.config.personality)
    except PersonalityError as exc:
        _command_error(op, str(exc), rc=ExitCode.VALIDATION)
    op.add_step("personality.resolve", detail=selected.name)
    runtime.instance = Instance(runtime.config, selected)
    return runtime.instance


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the pglitectl version and exit.",
    ),
    personality: str | None = PERSONALITY_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    root: Path | None = ROOT_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"pglitectl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    runtime = _ensure_runtime(ctx, config_file, root, personality)

    if ctx.invoked_subcommand is None:
        _run_default(runtime, [])


def _run_default(runtime: RuntimeContext, extra: Sequence[str]) -> None:
    _run_setup(runtime)
    _run_connect(runtime, extra)


def _run_setup(runtime: RuntimeContext, personality: str | None = None) -> None:
    root = runtime.config.root_dir
    with runtime.logger.operation(
        "setup",
        args={"personality": personality or runtime.personality_flag},
        target=_target(runtime),
    ) as op:
        instance = _resolve_instance(runtime, op, personality)
        try:
            created = instance.setup()
        except ControlError as exc:
            _control_error(op, exc)
        except OSError as exc:
            _command_error(op, f"Failed to initialise {root}: {exc}", rc=ExitCode.ENVIRONMENT)

        if not created:
            op.add_step("instance.initialize", status="skipped", detail="already present")
            console.print(f"Instance already exists at {escape(str(root))}.")
            op.success("Instance already present.", changed=0)
            return

        op.add_step("instance.initialize", detail=instance.personality.name)
        console.print(
            f"[green]Instance created at {escape(str(root))} "
            f"({instance.personality.name}).[/green]"
        )
        op.success(
            "Instance created.",
            changed=1,
            context={"personality": instance.personality.name},
        )


def _run_connect(
    runtime: RuntimeContext,
    extra: Sequence[str],
    personality: str | None = None,
) -> None:
    with runtime.logger.operation(
        "connect",
        args={"extra": list(extra), "personality": personality},
        target=_target(runtime),
    ) as op:
        instance = _resolve_instance(runtime, op, personality)

        def _handoff(argv: list[str]) -> None:
            op.add_step("shell.exec", detail=" ".join(argv))
            op.success("Handing off to the client shell.", changed=0)
            op.flush()

        try:
            instance.connect(extra, before_exec=_handoff)
        except ControlError as exc:
            _control_error(op, exc)


def _run_control(
    ctx: typer.Context,
    verb: str,
    extra: Sequence[str],
    personality: str | None,
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        verb,
        args={"extra": list(extra), "personality": personality},
        target=_target(runtime),
    ) as op:
        instance = _resolve_instance(runtime, op, personality)
        try:
            rc = instance.control_action(verb, extra)
        except ControlError as exc:
            _control_error(op, exc)
        op.add_step(f"control.{verb}", status="success" if rc == 0 else "error", detail=f"rc={rc}")
        if rc != 0:
            op.error(f"{instance.personality.control_command} {verb} exited with {rc}.", rc=rc)
            raise typer.Exit(code=rc)
        op.success(f"{verb} completed.", changed=1 if verb in {"start", "stop"} else 0)


@app.command()
def setup(
    ctx: typer.Context,
    personality: str | None = PERSONALITY_OPTION,
) -> None:
    """Create the instance directory unless it already exists."""
    _run_setup(_get_runtime(ctx), personality)


@app.command()
def url(
    ctx: typer.Context,
    personality: str | None = PERSONALITY_OPTION,
) -> None:
    """Print the connection URL for the instance socket."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("url", target=_target(runtime)) as op:
        instance = _resolve_instance(runtime, op, personality)
        typer.echo(instance.url())
        op.success("Reported connection URL.", changed=0)


@app.command(context_settings=PASSTHROUGH_SETTINGS)
def start(
    ctx: typer.Context,
    personality: str | None = PERSONALITY_OPTION,
    args: list[str] | None = typer.Argument(None, help="Extra arguments for the control utility."),
) -> None:
    """Start the server."""
    _run_control(ctx, "start", args or [], personality)


@app.command(context_settings=PASSTHROUGH_SETTINGS)
def stop(
    ctx: typer.Context,
    personality: str | None = PERSONALITY_OPTION,
    args: list[str] | None = typer.Argument(None, help="Extra arguments for the control utility."),
) -> None:
    """Stop the server."""
    _run_control(ctx, "stop", args or [], personality)


@app.command(context_settings=PASSTHROUGH_SETTINGS)
def status(
    ctx: typer.Context,
    personality: str | None = PERSONALITY_OPTION,
    args: list[str] | None = typer.Argument(None, help="Extra arguments for the control utility."),
) -> None:
    """Report whether the server is running."""
    _run_control(ctx, "status", args or [], personality)


@app.command(context_settings=PASSTHROUGH_SETTINGS)
def connect(
    ctx: typer.Context,
    personality: str | None = PERSONALITY_OPTION,
    args: list[str] | None = typer.Argument(None, help="Extra arguments for the client shell."),
) -> None:
    """Start the server if needed and open a client session."""
    _run_connect(_get_runtime(ctx), args or [], personality)


@app.command(DEFAULT_ACTION, hidden=True, context_settings=PASSTHROUGH_SETTINGS)
def default_action(
    ctx: typer.Context,
    args: list[str] | None = typer.Argument(None, help="Extra arguments for the client shell."),
) -> None:
    """Run ``setup`` then ``connect``, forwarding arguments to the client shell."""
    _run_default(_get_runtime(ctx), args or [])


@app.command("rm")
def remove(
    ctx: typer.Context,
    personality: str | None = PERSONALITY_OPTION,
) -> None:
    """Delete the instance directory and everything in it."""
    runtime = _get_runtime(ctx)
    root = runtime.config.root_dir
    with runtime.logger.operation("rm", target=_target(runtime)) as op:
        instance = _resolve_instance(runtime, op, personality)
        console.print(f"Removing instance at {escape(str(root))}.")
        try:
            removed = instance.clean()
        except OSError as exc:
            _command_error(op, f"Failed to remove {root}: {exc}", rc=ExitCode.ENVIRONMENT)
        op.add_step("instance.remove", status="success" if removed else "skipped")
        op.success("Instance removed." if removed else "No instance present.", changed=int(removed))


@app.command("config")
def config_show(
    ctx: typer.Context,
    personality: str | None = PERSONALITY_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Emit JSON instead of YAML."),
) -> None:
    """Show the resolved configuration, personality and instance paths."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config", "path": str(runtime.config.config_file)},
    ) as op:
        instance = _resolve_instance(runtime, op, personality)
        payload = runtime.config.to_dict()
        payload["resolved_personality"] = instance.personality.name
        payload["paths"] = {
            "root": str(instance.paths.root),
            "db": str(instance.paths.db),
            "log": str(instance.paths.log),
            "personality": str(instance.paths.personality_file),
            "config": str(instance.paths.config_file(instance.personality)),
        }
        if json_output:
            console.print_json(data=payload)
        else:
            typer.echo(yaml.safe_dump(payload, sort_keys=False).rstrip())
        op.success("Displayed configuration.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()
