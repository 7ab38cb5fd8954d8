"""CLI runtime context: bridges sync CLI to the async supervisor."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

from aoforge.config import settings
from aoforge.processes.store import BaseProcessStore, JsonProcessStore
from aoforge.processes.supervisor import ProcessSupervisor


class ForgeContext:
    """Singleton holding the store and supervisor for one CLI invocation."""

    _instance: ForgeContext | None = None

    def __init__(
        self,
        store: BaseProcessStore | None = None,
        supervisor: ProcessSupervisor | None = None,
    ) -> None:
        self.store = store or JsonProcessStore(settings.state_path)
        self.supervisor = supervisor or ProcessSupervisor(self.store)

    @classmethod
    def get(cls) -> ForgeContext:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance


def run_async(coro: Coroutine) -> Any:
    """Run an async coroutine from sync CLI code."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        # Already inside an event loop (e.g. embedded use): run on a worker thread
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    else:
        return asyncio.run(coro)
