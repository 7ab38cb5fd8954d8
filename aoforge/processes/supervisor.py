"""ProcessSupervisor: owns one aos process at a time.

Spawns the aos binary with arguments derived from the project config,
records every start in a ProcessStore, and turns the child's output into
ProcessState updates.

Output handling is message passing: reader tasks and an exit watcher post
ProcessEvents into a queue, and a single owner task per attached process
applies them to that process's state and answers pending evaluations.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import signal
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from rich.console import Console

from aoforge.config import settings
from aoforge.exceptions import (
    AOSNotInstalledError,
    EvaluationError,
    EvaluationTimeoutError,
    ProcessError,
    ProcessNotRunningError,
)
from aoforge.processes.command import build_aos_args, resolve_process_name
from aoforge.processes.sources import find_lua_files
from aoforge.processes.spawn import ProcessHandle, SpawnFunc, spawn_process
from aoforge.processes.store import BaseProcessStore, ProcessRecord
from aoforge.project.config import AOConfig
from aoforge.types import (
    LaunchMode,
    ProcessConfig,
    ProcessMessage,
    ProcessName,
    ProcessOptions,
    ProcessState,
    ProcessStatus,
    utcnow,
)

_logger = logging.getLogger(__name__)
console = Console(stderr=True)

INSTALL_COMMAND = "npm i -g https://get_ao.g8way.io"
INSTALL_DOCS_URL = "https://cookbook_ao.arweave.net/guides/aos/"

# Grace period between SIGTERM and SIGKILL in stop_process()
STOP_TIMEOUT_SECONDS = 5.0

READ_CHUNK_BYTES = 64 * 1024

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def print_install_guidance() -> None:
    console.print("[red]AOS command not found.[/red] Install it with:")
    console.print(f"  [bold]{INSTALL_COMMAND}[/bold]")
    console.print(f"Or visit: {INSTALL_DOCS_URL}")


def to_lua(input: str) -> str:
    """A bare action name like ``tick`` becomes a call, ``tick()``."""
    text = input.strip()
    if _IDENTIFIER_RE.match(text):
        return f"{text}()"
    return text


class EventKind(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    EXIT = "exit"
    READER_FAILED = "reader_failed"


@dataclass
class ProcessEvent:
    kind: EventKind
    data: Any = None


@dataclass
class _Channel:
    """I/O plumbing for one attached process."""

    handle: ProcessHandle
    state: ProcessState
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    waiters: deque = field(default_factory=deque)  # futures awaiting the next stdout line
    tasks: list[asyncio.Task] = field(default_factory=list)


class ProcessSupervisor:
    """Spawns, tracks, evaluates and stops a single aos process."""

    def __init__(
        self,
        store: BaseProcessStore,
        spawn: SpawnFunc | None = None,
        binary: str | None = None,
    ) -> None:
        self._store = store
        self._spawn = spawn or spawn_process
        self._binary = binary or settings.aos_binary
        self._handle: ProcessHandle | None = None
        self._name: ProcessName | None = None
        self._state: ProcessState | None = None
        self._channel: _Channel | None = None
        self._tasks: list[asyncio.Task] = []

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start_process(
        self,
        working_directory: str | Path,
        config: AOConfig | None = None,
        options: ProcessOptions | None = None,
    ) -> ProcessHandle:
        """Spawn aos in working_directory and start tracking it.

        A process that is still tracked is stopped first. Raises
        AOSNotInstalledError when the binary is missing and ProcessError for
        other spawn failures; the state is left in status "error" either way.
        """
        config = config or AOConfig()
        options = options or ProcessOptions()

        if self._handle is not None:
            _logger.warning("Process %s is still tracked, stopping it first", self._name)
            await self.stop_process()

        name = resolve_process_name(config, options)
        command = [self._binary, *build_aos_args(name, config, options)]
        cwd = str(working_directory)

        self._name = name
        state = ProcessState(
            id=name,
            features=config.features(),
            config=ProcessConfig(
                name=name,
                wallet=options.wallet,
                module=options.module,
                cron=options.cron,
                monitor=options.monitor,
                sqlite=options.sqlite,
                tags={**config.tags, **options.tag},
                lua_files=list(config.lua_files),
            ),
        )
        self._state = state

        _logger.info("Starting AO process %s (%s)", name, options.mode.value)
        _logger.debug("Command: %s", " ".join(command))

        try:
            process = await self._spawn(command, cwd=cwd, mode=options.mode)
        except FileNotFoundError as e:
            state.status = ProcessStatus.ERROR
            state.errors.append(str(e))
            if e.filename is not None and Path(e.filename) == Path(cwd):
                _logger.error("Working directory does not exist: %s", cwd)
                raise ProcessError(f"Working directory does not exist: {cwd}") from e
            _logger.error("AOS command not found: %s", self._binary)
            print_install_guidance()
            raise AOSNotInstalledError(f"'{self._binary}' was not found on PATH") from e
        except OSError as e:
            state.status = ProcessStatus.ERROR
            state.errors.append(str(e))
            _logger.error("Failed to start AO process %s: %s", name, e)
            raise ProcessError(f"Failed to start AO process {name}: {e}") from e

        handle = ProcessHandle(process, options.mode)
        self._handle = handle
        state.status = ProcessStatus.RUNNING
        state.start_time = utcnow()

        if options.mode != LaunchMode.BACKGROUND:
            self._channel = self._attach(handle, state)

        self._store.save(ProcessRecord(
            name=name,
            pid=handle.pid or 0,
            start_time=state.start_time.isoformat(),
            config=config,
        ))

        _logger.info("AO process %s started (PID: %s)", name, handle.pid)
        return handle

    async def stop_process(self) -> None:
        """Terminate the tracked process. No-op with a warning if there is none."""
        handle = self._handle
        if handle is None:
            _logger.warning("No process running to stop")
            return

        _logger.info("Stopping AO process %s", self._name)
        try:
            handle.terminate()
        except OSError as e:
            # Still tracked and still running
            _logger.error("Failed to stop AO process %s: %s", self._name, e)
            raise ProcessError(f"Failed to stop AO process {self._name}: {e}") from e

        self._handle = None
        channel, self._channel = self._channel, None

        if self._state is not None:
            self._state.status = ProcessStatus.STOPPED
            self._state.end_time = utcnow()

        if channel is not None:
            _close_channel(channel, ProcessNotRunningError("The AO process was stopped"))

        try:
            await asyncio.wait_for(handle.wait(), timeout=STOP_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            _logger.warning("AO process %s ignored SIGTERM, killing it", self._name)
            handle.kill()

        _logger.info("AO process %s stopped", self._name)

    async def stop_recorded(self, name: ProcessName) -> bool:
        """Stop a process by its stored record and forget it.

        This is how a later CLI invocation stops a background process. The
        stored pid is only signalled if it still looks like an aos process.
        """
        if self._handle is not None and self._name == name:
            await self.stop_process()
            self._store.remove(name)
            return True

        record = self._store.get(name)
        if record is None:
            _logger.warning("No recorded process named %s", name)
            return False

        if record.pid > 0 and _pid_runs_binary(record.pid, self._binary):
            try:
                os.kill(record.pid, signal.SIGTERM)
                _logger.info("Sent SIGTERM to %s (PID: %d)", name, record.pid)
            except ProcessLookupError:
                _logger.info("Process %s (PID: %d) had already exited", name, record.pid)
            except PermissionError as e:
                raise ProcessError(f"Not allowed to stop {name} (PID {record.pid}): {e}") from e
        else:
            _logger.info("Process %s (PID: %d) is no longer running", name, record.pid)

        self._store.remove(name)
        return True

    async def shutdown(self) -> None:
        """Stop the process and cancel all background I/O tasks."""
        if self._handle is not None:
            await self.stop_process()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # ── Queries ──────────────────────────────────────────────────────────────

    def is_process_running(self) -> bool:
        return self._handle is not None and not self._handle.killed

    def get_process_state(self) -> ProcessState | None:
        return self._state

    def get_process_name(self) -> ProcessName | None:
        return self._name

    def list_processes(self) -> list[ProcessRecord]:
        return self._store.list_records()

    def get_process_info(self, name: ProcessName) -> ProcessRecord | None:
        return self._store.get(name)

    def find_lua_files(self, target_path: str | Path) -> list[str]:
        return find_lua_files(target_path)

    async def check_installation(self) -> bool:
        """Run ``aos --version``. Missing and broken installs both return False."""
        _logger.info("Checking AOS installation...")
        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary, "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            _logger.error("AOS is not installed")
            print_install_guidance()
            return False
        except OSError as e:
            _logger.error("AOS installation check failed: %s", e)
            return False

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=settings.check_timeout_seconds
            )
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            _logger.error(
                "AOS installation check timed out after %ss", settings.check_timeout_seconds
            )
            return False

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            _logger.error("AOS installation check failed (exit %d): %s", proc.returncode, detail)
            return False

        version = stdout.decode("utf-8", errors="replace").strip()
        _logger.info("AOS is installed%s", f" ({version})" if version else "")
        return True

    # ── Evaluation ───────────────────────────────────────────────────────────

    async def evaluate(
        self,
        input: str,
        *,
        await_response: bool = False,
        timeout: float | None = None,
    ) -> str | None:
        """Send one line of Lua to the process.

        With await_response, returns the next stdout line. A stderr line
        fails the call with EvaluationError, process exit or stop with
        ProcessNotRunningError, and an expired timeout (seconds) with
        EvaluationTimeoutError. Needs a process started in piped mode.
        """
        _logger.debug("Evaluating process with input: %s", input)
        handle, channel = self._handle, self._channel
        if handle is None:
            raise ProcessNotRunningError("No AO process is running")
        if channel is None or handle.stdin is None:
            raise EvaluationError(
                f"AO process {self._name} was not started in piped mode; evaluate needs its stdin"
            )

        line = to_lua(input)
        waiter: asyncio.Future[str] | None = None
        if await_response:
            waiter = asyncio.get_running_loop().create_future()
            channel.waiters.append(waiter)

        try:
            try:
                handle.stdin.write(f"{line}\n".encode("utf-8"))
                await handle.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise ProcessNotRunningError(f"AO process {self._name} closed its stdin") from e

            if waiter is None:
                return None

            try:
                return await asyncio.wait_for(waiter, timeout)
            except asyncio.TimeoutError as e:
                raise EvaluationTimeoutError(
                    f"No response to {line!r} within {timeout}s"
                ) from e
        finally:
            if waiter is not None:
                if waiter in channel.waiters:
                    channel.waiters.remove(waiter)
                if not waiter.done():
                    waiter.cancel()

    # ── Internals ────────────────────────────────────────────────────────────

    def _attach(self, handle: ProcessHandle, state: ProcessState) -> _Channel:
        channel = _Channel(handle=handle, state=state)
        readers = []
        if handle.stdout is not None:
            readers.append(asyncio.create_task(
                _read_stream(channel, handle.stdout, EventKind.STDOUT)
            ))
        if handle.stderr is not None:
            readers.append(asyncio.create_task(
                _read_stream(channel, handle.stderr, EventKind.STDERR)
            ))
        channel.tasks = [
            *readers,
            asyncio.create_task(_watch_exit(channel, readers)),
            asyncio.create_task(self._own_events(channel)),
        ]
        self._tasks = [t for t in self._tasks if not t.done()] + channel.tasks
        return channel

    async def _own_events(self, channel: _Channel) -> None:
        """The only place I/O events touch ProcessState."""
        state = channel.state
        while True:
            event = await channel.queue.get()

            if event.kind == EventKind.STDOUT:
                state.messages.append(ProcessMessage(data=event.data))
                _logger.debug("Process output: %s", event.data)
                _settle_next(channel, result=event.data)

            elif event.kind == EventKind.STDERR:
                state.errors.append(event.data)
                _logger.error("Process error: %s", event.data)
                _settle_next(channel, error=EvaluationError(event.data))

            elif event.kind == EventKind.READER_FAILED:
                state.errors.append(event.data)
                _close_channel(channel, EvaluationError(event.data))

            elif event.kind == EventKind.EXIT:
                if state.status == ProcessStatus.RUNNING:
                    state.status = ProcessStatus.STOPPED
                if state.end_time is None:
                    state.end_time = utcnow()
                _logger.info("AO process %s stopped with code: %s", state.id, event.data)
                _close_channel(channel, ProcessNotRunningError(
                    f"AO process {state.id} exited with code {event.data}"
                ))
                if self._channel is channel:
                    self._channel = None
                    self._handle = None
                return


def _pid_runs_binary(pid: int, binary: str) -> bool:
    """Best-effort guard against signalling a reused pid.

    Reads /proc/<pid>/cmdline where procfs exists; elsewhere we can't tell
    and assume the pid is still ours.
    """
    proc_root = Path("/proc")
    if not proc_root.is_dir():
        return True
    try:
        parts = (proc_root / str(pid) / "cmdline").read_bytes().split(b"\0")
    except (FileNotFoundError, PermissionError):
        return False
    name = Path(binary).name
    return any(Path(p.decode("utf-8", errors="replace")).name == name for p in parts if p)


async def _read_stream(channel: _Channel, stream: Any, kind: EventKind) -> None:
    """Post one event per output line.

    Reads in chunks rather than with readline(), so a line longer than the
    stream's buffer limit cannot stop the reader. Such lines are cut to
    settings.max_line_bytes and the rest of the line is dropped.
    """
    limit = settings.max_line_bytes
    pending = bytearray()
    skipping = False
    try:
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            pending += chunk
            while True:
                end = pending.find(b"\n")
                if end < 0:
                    if len(pending) > limit:
                        if not skipping:
                            await _post_line(channel, kind, bytes(pending[:limit]), truncated=True)
                            skipping = True
                        pending.clear()
                    break
                line = bytes(pending[:end])
                del pending[:end + 1]
                if skipping:
                    # tail of a line that was already posted truncated
                    skipping = False
                    continue
                await _post_line(channel, kind, line[:limit], truncated=len(line) > limit)
        if pending and not skipping:
            await _post_line(channel, kind, bytes(pending[:limit]))
    except Exception as e:
        _logger.error("Output reader for %s failed: %s", channel.state.id, e)
        await channel.queue.put(ProcessEvent(EventKind.READER_FAILED, f"{kind.value} reader failed: {e}"))


async def _post_line(channel: _Channel, kind: EventKind, line: bytes, truncated: bool = False) -> None:
    if truncated:
        _logger.warning(
            "Truncated %s line from %s to %d bytes", kind.value, channel.state.id, len(line)
        )
    text = line.decode("utf-8", errors="replace").strip()
    if text:
        await channel.queue.put(ProcessEvent(kind, text))


async def _watch_exit(channel: _Channel, readers: list[asyncio.Task]) -> None:
    """Post EXIT once output is drained and the process has exited."""
    await asyncio.gather(*readers, return_exceptions=True)
    code = await channel.handle.wait()
    await channel.queue.put(ProcessEvent(EventKind.EXIT, code))


def _settle_next(
    channel: _Channel,
    result: str | None = None,
    error: Exception | None = None,
) -> None:
    while channel.waiters:
        waiter = channel.waiters.popleft()
        if waiter.done():
            continue
        if error is not None:
            waiter.set_exception(error)
        else:
            waiter.set_result(result)
        return


def _close_channel(channel: _Channel, error: Exception) -> None:
    while channel.waiters:
        waiter = channel.waiters.popleft()
        if not waiter.done():
            waiter.set_exception(error)
