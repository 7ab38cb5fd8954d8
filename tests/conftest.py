"""Shared test fixtures: fake aos processes so no real binary is needed."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest
import pytest_asyncio

from aoforge.exceptions import EvaluationError
from aoforge.processes.store import MemoryProcessStore
from aoforge.processes.supervisor import ProcessSupervisor
from aoforge.types import LaunchMode


class FakeStream:
    """Stands in for an asyncio StreamReader.

    Each feed() is one chunk as the child wrote it; it need not end in a
    newline. fail() makes the next read raise.
    """

    def __init__(self) -> None:
        self._chunks: asyncio.Queue[bytes | Exception] = asyncio.Queue()
        self._pending = b""

    def feed(self, data: bytes) -> None:
        self._chunks.put_nowait(data)

    def fail(self, error: Exception) -> None:
        self._chunks.put_nowait(error)

    def close(self) -> None:
        self._chunks.put_nowait(b"")

    async def read(self, n: int = -1) -> bytes:
        if not self._pending:
            item = await self._chunks.get()
            if isinstance(item, Exception):
                raise item
            self._pending = item
        if n < 0:
            n = len(self._pending)
        data, self._pending = self._pending[:n], self._pending[n:]
        return data


class FakeStdin:
    """Records what the supervisor writes; optionally answers each line."""

    def __init__(self) -> None:
        self.lines: list[str] = []
        self.responder: Callable[[str], None] | None = None
        self.closed = False

    def write(self, data: bytes) -> None:
        if self.closed:
            raise BrokenPipeError("stdin closed")
        line = data.decode("utf-8").rstrip("\n")
        self.lines.append(line)
        if self.responder:
            self.responder(line)

    async def drain(self) -> None:
        return None


class FakeProcess:
    """Enough of asyncio.subprocess.Process for the supervisor."""

    def __init__(self, pid: int = 4242, piped: bool = False) -> None:
        self.pid = pid
        self.returncode: int | None = None
        self.stdin = FakeStdin() if piped else None
        self.stdout = FakeStream() if piped else None
        self.stderr = FakeStream() if piped else None
        self.terminated = False
        self.killed = False
        self._exited = asyncio.Event()

    def terminate(self) -> None:
        self.terminated = True
        self.exit(-15)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        if self.stdin is not None:
            self.stdin.closed = True
        for stream in (self.stdout, self.stderr):
            if stream is not None:
                stream.close()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    """Spawn function that hands out FakeProcesses with pids 4242, 4243, ..."""

    def __init__(self, pid: int = 4242, error: Exception | None = None) -> None:
        self.base_pid = pid
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.processes: list[FakeProcess] = []

    async def __call__(self, command: list[str], *, cwd: str, mode: LaunchMode) -> FakeProcess:
        self.calls.append({"command": command, "cwd": cwd, "mode": mode})
        if self.error is not None:
            raise self.error
        proc = FakeProcess(
            pid=self.base_pid + len(self.processes),
            piped=mode == LaunchMode.PIPED,
        )
        self.processes.append(proc)
        return proc

    @property
    def last(self) -> FakeProcess:
        return self.processes[-1]


class StubEvaluator:
    """Scheduler-side stand-in for ProcessSupervisor.evaluate().

    outcomes are consumed one per tick: an Exception is raised, anything
    else is returned. When they run out every tick succeeds, unless
    fail_forever is set.
    """

    def __init__(
        self,
        outcomes: list[Any] | None = None,
        fail_forever: bool = False,
        delay: float = 0.0,
        error_action: str = "handleError",
        error_handler_fails: bool = False,
    ) -> None:
        self.calls: list[tuple[str, bool, float | None]] = []
        self.outcomes = list(outcomes or [])
        self.fail_forever = fail_forever
        self.delay = delay
        self.error_action = error_action
        self.error_handler_fails = error_handler_fails
        self.error_handled = asyncio.Event()
        self.on_call: Callable[[], None] | None = None
        self.in_flight = 0
        self.max_in_flight = 0
        self.completed = 0

    async def evaluate(self, input: str, *, await_response: bool = False, timeout: float | None = None):
        self.calls.append((input, await_response, timeout))
        if input == self.error_action:
            self.error_handled.set()
            if self.error_handler_fails:
                raise EvaluationError("error handler exploded")
            return None

        if self.on_call:
            self.on_call()

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.outcomes:
                outcome = self.outcomes.pop(0)
            elif self.fail_forever:
                outcome = EvaluationError("tick failed")
            else:
                outcome = "ok"
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1
            self.completed += 1

    @property
    def tick_calls(self) -> list[tuple[str, bool, float | None]]:
        return [c for c in self.calls if c[0] != self.error_action]

    @property
    def error_calls(self) -> list[tuple[str, bool, float | None]]:
        return [c for c in self.calls if c[0] == self.error_action]


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def store():
    return MemoryProcessStore()


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest_asyncio.fixture
async def supervisor(store, spawner):
    sup = ProcessSupervisor(store, spawn=spawner, binary="aos")
    yield sup
    await sup.shutdown()
