"""Tick scheduler: periodic evaluation of a supervised process.

"Every second, run the process's tick handler."

Each interval the scheduler asks the supervisor to evaluate the tick
action. Consecutive failures are counted and reset by any success; when
the count reaches max_retries the scheduler stops itself and evaluates the
on_error action once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from aoforge.exceptions import SchedulerAlreadyRunningError
from aoforge.types import ProcessName, ScheduleConfig

if TYPE_CHECKING:
    from aoforge.processes.supervisor import ProcessSupervisor

_logger = logging.getLogger(__name__)


class TickScheduler:
    """Drives supervisor.evaluate() on a fixed interval.

    Ticks never overlap: a firing that finds the previous tick still in
    flight is skipped. stop() cancels future firings only; a tick already
    in flight runs to completion, but its outcome is ignored.
    """

    def __init__(
        self,
        process_name: ProcessName,
        supervisor: ProcessSupervisor,
        config: ScheduleConfig | None = None,
    ) -> None:
        self.process_name = process_name
        self.config = config or ScheduleConfig()
        self._supervisor = supervisor
        self._timer: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self._run_id = 0
        self._failures = 0
        self._in_flight = False
        self._skipped = 0
        self._tick_count = 0

    async def start(self) -> None:
        if self._timer is not None:
            raise SchedulerAlreadyRunningError("Scheduler already running")

        _logger.info(
            "Starting scheduler for process: %s (every %dms)",
            self.process_name, self.config.interval_ms,
        )
        self._run_id += 1
        self._timer = asyncio.create_task(self._timer_loop(self._run_id))

    async def stop(self) -> None:
        timer = self._timer
        if timer is None:
            return

        self._timer = None
        self._failures = 0
        if timer is not asyncio.current_task() and not timer.done():
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        _logger.info("Scheduler stopped for process: %s", self.process_name)

    async def _timer_loop(self, run_id: int) -> None:
        interval = self.config.interval_seconds
        while True:
            await asyncio.sleep(interval)

            if self._in_flight:
                self._skipped += 1
                _logger.debug("Tick for %s still in flight, skipping", self.process_name)
                continue

            self._in_flight = True
            self._tick_task = asyncio.create_task(self._tick(run_id))

    async def _tick(self, run_id: int) -> None:
        self._tick_count += 1
        try:
            await self._supervisor.evaluate(
                self.config.tick,
                await_response=True,
                timeout=self.config.interval_seconds,
            )
        except Exception as e:
            if not self._is_current(run_id):
                _logger.debug("Ignoring failed tick from a stopped run: %s", e)
                return

            self._failures += 1
            _logger.error(
                "Error in scheduler for %s (%d/%d): %s",
                self.process_name, self._failures, self.config.max_retries, e,
            )
            if self._failures >= self.config.max_retries:
                _logger.error(
                    "Max retries (%d) reached, stopping scheduler", self.config.max_retries
                )
                await self.stop()
                await self._escalate()
        else:
            if self._is_current(run_id):
                self._failures = 0
        finally:
            self._in_flight = False

    async def _escalate(self) -> None:
        try:
            await self._supervisor.evaluate(self.config.on_error)
        except Exception as e:
            _logger.error("Error handler %r failed for %s: %s", self.config.on_error, self.process_name, e)

    def _is_current(self, run_id: int) -> bool:
        return self._timer is not None and run_id == self._run_id

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def skipped_ticks(self) -> int:
        return self._skipped

    @property
    def tick_count(self) -> int:
        return self._tick_count
