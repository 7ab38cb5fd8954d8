"""Process commands: ao-forge process start|stop|list|schedule."""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from aoforge.cli.context import ForgeContext, run_async
from aoforge.config import settings
from aoforge.exceptions import ForgeError
from aoforge.processes.scheduler import TickScheduler
from aoforge.project.config import AOConfig, load_config, project_exists
from aoforge.types import LaunchMode, ProcessOptions, ScheduleConfig

app = typer.Typer(help="Manage AO processes")
console = Console()


def _fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    raise typer.Exit(code=1)


def _load_project(project_path: Path) -> AOConfig:
    if not project_exists(project_path):
        _fail(
            f"No AO project found in {project_path} "
            f"(expected package.json or {settings.config_file_name})"
        )
    try:
        return load_config(project_path)
    except ForgeError as e:
        _fail(str(e))


def _validation_message(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'options'}: {err['msg']}"
        for err in e.errors()
    )


def _manual_hints(name: str, config: AOConfig) -> None:
    console.print("\nYou can also start AO processes manually:")
    console.print(f"  [bold]{settings.aos_binary} {name}[/bold]")
    if config.lua_files:
        console.print(f"  [bold]{settings.aos_binary} {name} --load {config.lua_files[0]}[/bold]")


@app.command("start")
def start(
    name: str = typer.Option("", "--name", "-n", help="Process name"),
    wallet: str = typer.Option("", "--wallet", help="Path to wallet file"),
    data: str = typer.Option("", "--data", help="Process data"),
    tag_name: str = typer.Option("", "--tag-name", help="Tag name (needs --tag-value)"),
    tag_value: str = typer.Option("", "--tag-value", help="Tag value (needs --tag-name)"),
    module: str = typer.Option("", "--module", help="Process module (transaction id)"),
    cron: str = typer.Option("", "--cron", help="Cron interval, e.g. 10-minutes"),
    monitor: bool = typer.Option(False, "--monitor", help="Monitor cron messages"),
    sqlite: bool = typer.Option(False, "--sqlite", help="Use the sqlite module"),
    gateway_url: str = typer.Option("", "--gateway-url", help="Gateway URL override"),
    cu_url: str = typer.Option("", "--cu-url", help="Compute unit URL override"),
    mu_url: str = typer.Option("", "--mu-url", help="Messenger unit URL override"),
    background: bool = typer.Option(False, "--background", "-b", help="Run detached from this terminal"),
):
    """Start an AO process for the project in the current directory."""
    project_path = Path.cwd()
    config = _load_project(project_path)

    try:
        options = ProcessOptions(
            name=name or config.process_name,
            wallet=wallet or None,
            data=data or None,
            tag_name=tag_name or None,
            tag_value=tag_value or None,
            module=module or None,
            cron=cron or None,
            monitor=monitor,
            sqlite=sqlite,
            gateway_url=gateway_url or None,
            cu_url=cu_url or None,
            mu_url=mu_url or None,
            mode=LaunchMode.BACKGROUND if background else LaunchMode.FOREGROUND,
        )
    except ValidationError as e:
        _fail(_validation_message(e))

    ctx = ForgeContext.get()
    supervisor = ctx.supervisor

    async def _start() -> int | None:
        if not await supervisor.check_installation():
            # check_installation() already printed the install guidance
            _manual_hints(options.name, config)
            raise typer.Exit(code=1)

        lua_files = supervisor.find_lua_files(project_path)
        if lua_files:
            config.lua_files = lua_files
            console.print(f"[dim]Found {len(lua_files)} Lua file(s): {', '.join(lua_files)}[/dim]")

        handle = await supervisor.start_process(project_path, config, options)
        if options.mode == LaunchMode.BACKGROUND:
            console.print(
                f"[green]AO process {options.name} started in background[/green] (PID: {handle.pid})"
            )
            return None

        console.print(f"[green]AO process {options.name} started[/green] (PID: {handle.pid})")
        try:
            return await handle.wait()
        finally:
            await supervisor.shutdown()

    try:
        code = run_async(_start())
    except ForgeError as e:
        console.print(f"[red]Error: {e}[/red]")
        _manual_hints(options.name, config)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("\n[dim]Session ended.[/dim]")
        return

    if code:
        console.print(f"[yellow]AO process exited with code {code}[/yellow]")


@app.command("stop")
def stop(
    name: str = typer.Argument("", help="Process name (defaults to the project's)"),
):
    """Stop a running AO process."""
    if not name:
        try:
            name = load_config(Path.cwd()).process_name
        except ForgeError as e:
            _fail(str(e))

    ctx = ForgeContext.get()
    try:
        stopped = run_async(ctx.supervisor.stop_recorded(name))
    except ForgeError as e:
        _fail(str(e))

    if not stopped:
        console.print(f"[yellow]No recorded process named {name}[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]AO process {name} stopped[/green]")


@app.command("list")
def list_processes():
    """List recorded AO processes."""
    ctx = ForgeContext.get()
    records = ctx.supervisor.list_processes()

    if not records:
        console.print("[dim]No processes found.[/dim]")
        return

    table = Table(title="AO Processes")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("PID", justify="right", style="yellow")
    table.add_column("Started", style="dim")
    table.add_column("Lua files", style="white")

    for record in sorted(records, key=lambda r: r.start_time, reverse=True):
        table.add_row(
            record.name,
            str(record.pid),
            record.start_time,
            ", ".join(record.config.lua_files) or "-",
        )

    console.print(table)


@app.command("schedule")
def schedule(
    name: str = typer.Option("", "--name", "-n", help="Process name"),
    interval: int = typer.Option(
        settings.schedule_interval_ms, "--interval", "-i", help="Milliseconds between ticks"
    ),
    tick: str = typer.Option("tick", "--tick", help="Action evaluated every interval"),
    max_retries: int = typer.Option(
        settings.schedule_max_retries, "--max-retries", help="Consecutive failures before giving up"
    ),
    on_error: str = typer.Option("handleError", "--on-error", help="Action evaluated after giving up"),
):
    """Start an AO process and evaluate a tick action on an interval.

    Example: ao-forge process schedule --interval 5000 --tick tick
    """
    project_path = Path.cwd()
    config = _load_project(project_path)

    try:
        options = ProcessOptions(name=name or config.process_name, mode=LaunchMode.PIPED)
        schedule_config = ScheduleConfig(
            interval_ms=interval, tick=tick, max_retries=max_retries, on_error=on_error
        )
    except ValidationError as e:
        _fail(_validation_message(e))

    ctx = ForgeContext.get()
    supervisor = ctx.supervisor

    async def _run() -> None:
        if not await supervisor.check_installation():
            raise typer.Exit(code=1)

        lua_files = supervisor.find_lua_files(project_path)
        if lua_files:
            config.lua_files = lua_files

        await supervisor.start_process(project_path, config, options)
        scheduler = TickScheduler(options.name, supervisor, schedule_config)
        await scheduler.start()
        console.print(
            f"[green]Scheduling[/green] [bold]{tick}[/bold] on {options.name} every {interval}ms"
        )
        console.print("[dim]Press Ctrl+C to stop.[/dim]")

        try:
            while scheduler.is_running and supervisor.is_process_running():
                await asyncio.sleep(0.5)
        finally:
            await scheduler.stop()
            await supervisor.shutdown()

        state = supervisor.get_process_state()
        if state is not None and state.errors:
            console.print(f"[yellow]Last process error: {state.errors[-1]}[/yellow]")

    try:
        run_async(_run())
    except ForgeError as e:
        _fail(str(e))
    except KeyboardInterrupt:
        console.print("\n[dim]Scheduler stopped.[/dim]")
