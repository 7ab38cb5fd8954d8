"""Tests for the tick scheduler."""

import asyncio

import pytest
from pydantic import ValidationError

from aoforge.exceptions import EvaluationError, SchedulerAlreadyRunningError
from aoforge.processes.scheduler import TickScheduler
from aoforge.project.config import AOConfig
from aoforge.types import LaunchMode, ProcessOptions, ScheduleConfig
from tests.conftest import StubEvaluator, eventually

FAST = ScheduleConfig(interval_ms=20)


# ── ScheduleConfig ───────────────────────────────────────────────────────────


def test_schedule_config_defaults():
    config = ScheduleConfig()
    assert config.interval_ms == 1000
    assert config.tick == "tick"
    assert config.max_retries == 3
    assert config.on_error == "handleError"
    assert config.interval_seconds == 1.0


def test_schedule_config_is_frozen():
    config = ScheduleConfig()
    with pytest.raises(ValidationError):
        config.interval_ms = 5


@pytest.mark.parametrize("kwargs", [{"interval_ms": 0}, {"interval_ms": -10}, {"max_retries": 0}])
def test_schedule_config_rejects_bad_values(kwargs):
    with pytest.raises(ValidationError):
        ScheduleConfig(**kwargs)


# ── start / stop ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_scheduler_ticks_on_interval():
    stub = StubEvaluator()
    scheduler = TickScheduler("demo", stub, FAST)

    await scheduler.start()
    assert scheduler.is_running
    await eventually(lambda: len(stub.tick_calls) >= 3)
    await scheduler.stop()

    assert not scheduler.is_running
    assert scheduler.tick_count >= 3
    assert all(call == ("tick", True, 0.02) for call in stub.tick_calls)
    assert stub.error_calls == []


@pytest.mark.asyncio
async def test_start_twice_raises_and_keeps_timer():
    scheduler = TickScheduler("demo", StubEvaluator(), FAST)
    await scheduler.start()
    timer = scheduler._timer

    with pytest.raises(SchedulerAlreadyRunningError, match="Scheduler already running"):
        await scheduler.start()

    assert scheduler._timer is timer
    await scheduler.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent_and_restartable():
    stub = StubEvaluator()
    scheduler = TickScheduler("demo", stub, FAST)

    await scheduler.stop()  # never started

    await scheduler.start()
    await scheduler.stop()
    await scheduler.stop()
    assert not scheduler.is_running

    await scheduler.start()
    await eventually(lambda: len(stub.tick_calls) >= 1)
    await scheduler.stop()


@pytest.mark.asyncio
async def test_no_ticks_after_stop():
    stub = StubEvaluator()
    scheduler = TickScheduler("demo", stub, FAST)

    await scheduler.start()
    await eventually(lambda: len(stub.tick_calls) >= 1)
    await scheduler.stop()
    count = len(stub.calls)

    await asyncio.sleep(0.1)
    assert len(stub.calls) == count


# ── failures ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    stub = StubEvaluator(fail_forever=True)
    scheduler = TickScheduler("demo", stub, FAST)

    await scheduler.start()
    await asyncio.wait_for(stub.error_handled.wait(), timeout=2.0)
    await asyncio.sleep(0.1)

    assert len(stub.tick_calls) == 3
    assert stub.error_calls == [("handleError", False, None)]
    assert not scheduler.is_running
    assert scheduler.failure_count == 0


@pytest.mark.asyncio
async def test_success_resets_failure_count():
    boom = EvaluationError("tick failed")
    stub = StubEvaluator(outcomes=[boom, boom, "ok", boom, boom, "ok"])
    scheduler = TickScheduler("demo", stub, FAST)
    seen = []
    stub.on_call = lambda: seen.append(scheduler.failure_count)

    await scheduler.start()
    await eventually(lambda: len(stub.tick_calls) >= 7)
    await scheduler.stop()

    assert seen[:6] == [0, 1, 2, 0, 1, 2]
    assert stub.error_calls == []


@pytest.mark.asyncio
async def test_three_fresh_failures_needed_after_success():
    boom = EvaluationError("tick failed")
    stub = StubEvaluator(outcomes=[boom, boom, "ok", boom, boom, boom])
    scheduler = TickScheduler("demo", stub, FAST)

    await scheduler.start()
    await asyncio.wait_for(stub.error_handled.wait(), timeout=2.0)
    await asyncio.sleep(0.1)

    assert len(stub.tick_calls) == 6
    assert stub.error_calls == [("handleError", False, None)]
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_failing_error_handler_is_swallowed():
    stub = StubEvaluator(fail_forever=True, error_handler_fails=True)
    scheduler = TickScheduler("demo", stub, ScheduleConfig(interval_ms=20, max_retries=1))

    await scheduler.start()
    await asyncio.wait_for(stub.error_handled.wait(), timeout=2.0)
    await asyncio.sleep(0.05)

    assert len(stub.tick_calls) == 1
    assert len(stub.error_calls) == 1
    assert not scheduler.is_running
    await scheduler.stop()


@pytest.mark.asyncio
async def test_custom_action_names():
    stub = StubEvaluator(fail_forever=True, error_action="recover")
    config = ScheduleConfig(interval_ms=20, tick="heartbeat", on_error="recover", max_retries=2)
    scheduler = TickScheduler("demo", stub, config)

    await scheduler.start()
    await asyncio.wait_for(stub.error_handled.wait(), timeout=2.0)

    assert [c[0] for c in stub.calls] == ["heartbeat", "heartbeat", "recover"]


# ── overlap ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_slow_ticks_never_overlap():
    stub = StubEvaluator(delay=0.1)
    scheduler = TickScheduler("demo", stub, FAST)

    await scheduler.start()
    await asyncio.sleep(0.35)
    await scheduler.stop()
    await eventually(lambda: stub.in_flight == 0)

    assert stub.max_in_flight == 1
    assert scheduler.skipped_ticks > 0


@pytest.mark.asyncio
async def test_stop_lets_in_flight_tick_finish_and_ignores_it():
    stub = StubEvaluator(outcomes=[EvaluationError("late failure")], delay=0.1)
    scheduler = TickScheduler("demo", stub, ScheduleConfig(interval_ms=20, max_retries=1))

    await scheduler.start()
    await eventually(lambda: stub.in_flight == 1)
    await scheduler.stop()

    await eventually(lambda: stub.completed == 1)
    await asyncio.sleep(0.02)

    # The failure belonged to a stopped run: no retry accounting, no escalation
    assert scheduler.failure_count == 0
    assert stub.error_calls == []
    assert not scheduler.is_running


# ── with a supervised process ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_scheduler_drives_piped_process(supervisor, spawner):
    await supervisor.start_process(
        "/tmp/proj", AOConfig(process_name="demo"), ProcessOptions(mode=LaunchMode.PIPED)
    )
    proc = spawner.last
    proc.stdin.responder = lambda line: proc.stdout.feed(b"ok\n")

    scheduler = TickScheduler("demo", supervisor, FAST)
    await scheduler.start()
    await eventually(lambda: scheduler.tick_count >= 3)
    await scheduler.stop()

    assert set(proc.stdin.lines) == {"tick()"}
    assert scheduler.failure_count == 0
    assert supervisor.is_process_running()


@pytest.mark.asyncio
async def test_scheduler_escalates_process_errors(supervisor, spawner):
    await supervisor.start_process(
        "/tmp/proj", AOConfig(process_name="demo"), ProcessOptions(mode=LaunchMode.PIPED)
    )
    proc = spawner.last
    proc.stdin.responder = lambda line: proc.stderr.feed(b"attempt to call a nil value\n")

    scheduler = TickScheduler("demo", supervisor, FAST)
    await scheduler.start()
    await eventually(lambda: len(proc.stdin.lines) == 4)
    await asyncio.sleep(0.1)

    assert proc.stdin.lines == ["tick()", "tick()", "tick()", "handleError()"]
    assert not scheduler.is_running
    assert "attempt to call a nil value" in supervisor.get_process_state().errors
