"""Spawning the aos binary and wrapping the resulting OS process."""

from __future__ import annotations

import asyncio
import subprocess
import sys
from typing import Any, Awaitable, Callable

from aoforge.types import LaunchMode

# async (command, *, cwd, mode) -> process object
SpawnFunc = Callable[..., Awaitable[Any]]


def _detach_kwargs() -> dict[str, Any]:
    """Popen kwargs that let a background child outlive this CLI."""
    if sys.platform == "win32":
        return {
            "creationflags": subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP
        }
    return {"start_new_session": True}


async def spawn_process(command: list[str], *, cwd: str, mode: LaunchMode) -> Any:
    """Default spawn function used by ProcessSupervisor.

    Background children are started with subprocess.Popen rather than
    asyncio, since an asyncio subprocess transport kills its child when the
    event loop closes.
    """
    if mode == LaunchMode.BACKGROUND:
        return subprocess.Popen(
            command,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            **_detach_kwargs(),
        )

    if mode == LaunchMode.PIPED:
        return await asyncio.create_subprocess_exec(
            *command,
            cwd=cwd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    # Foreground: inherit our stdio so the aos REPL is interactive
    return await asyncio.create_subprocess_exec(*command, cwd=cwd)


class ProcessHandle:
    """The supervisor's reference to a spawned child process."""

    def __init__(self, process: Any, mode: LaunchMode) -> None:
        self.process = process
        self.mode = mode
        self.killed = False

    @property
    def pid(self) -> int | None:
        return getattr(self.process, "pid", None)

    @property
    def returncode(self) -> int | None:
        return getattr(self.process, "returncode", None)

    @property
    def stdin(self) -> Any:
        return getattr(self.process, "stdin", None)

    @property
    def stdout(self) -> Any:
        return getattr(self.process, "stdout", None)

    @property
    def stderr(self) -> Any:
        return getattr(self.process, "stderr", None)

    def terminate(self) -> None:
        """Send SIGTERM (TerminateProcess on Windows). Exited children are fine.

        Any other OSError propagates and leaves the handle unmarked.
        """
        try:
            self.process.terminate()
        except ProcessLookupError:
            pass
        self.killed = True

    def kill(self) -> None:
        try:
            self.process.kill()
        except ProcessLookupError:
            pass
        self.killed = True

    async def wait(self) -> int:
        if isinstance(self.process, subprocess.Popen):
            return await asyncio.to_thread(self.process.wait)
        return await self.process.wait()

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid}, mode={self.mode.value}, killed={self.killed})"
