from __future__ import annotations

import asyncio
import threading
from datetime import UTC, datetime, timedelta

from conftest import FakeThermostat, make_entry

from thermoplan.commands import ThermostatCommand
from thermoplan.database import build_session_factory
from thermoplan.events import list_recent_events
from thermoplan.schedule_executor import ScheduleExecutor
from thermoplan.schedules import SqlScheduleRepository

NOW = datetime(2025, 6, 10, 12, 0, tzinfo=UTC)


def _executor(repo, thermostat: FakeThermostat) -> ScheduleExecutor:
    return ScheduleExecutor(
        repository_factory=lambda: repo,
        adapter_factory=thermostat.context,
    )


def test_run_once_applies_due_entries(schedule_repo, thermostat):
    heat = make_entry(NOW - timedelta(minutes=5))
    stop = make_entry(NOW - timedelta(minutes=1), entry_type="stop")
    future = make_entry(NOW + timedelta(hours=1))
    schedule_repo.insert_batch([heat, stop, future])

    result = _executor(schedule_repo, thermostat).run_once(now=NOW)

    assert result.processed_count == 2
    assert [item.id for item in result.results] == [heat.id, stop.id]
    assert all(item.status == "applied" for item in result.results)
    assert thermostat.calls == [
        ThermostatCommand(
            site_id="home-1",
            room_id="nt-1",
            mode="manual",
            temp=20.0,
            expires_at=heat.end_time,
        ),
        ThermostatCommand(site_id="home-1", room_id="nt-1", mode="home"),
    ]
    assert schedule_repo.get(heat.id).status == "applied"
    assert schedule_repo.get(stop.id).status == "applied"
    assert schedule_repo.get(future.id).status == "pending"


def test_run_once_is_idempotent(schedule_repo, thermostat):
    schedule_repo.insert_batch([make_entry(NOW - timedelta(minutes=5))])
    executor = _executor(schedule_repo, thermostat)

    first = executor.run_once(now=NOW)
    second = executor.run_once(now=NOW + timedelta(seconds=30))

    assert first.processed_count == 1
    assert second.processed_count == 0
    assert second.results == []
    assert len(thermostat.calls) == 1


def test_failed_entry_does_not_block_others(schedule_repo):
    thermostat = FakeThermostat(failing_rooms={"nt-broken"})
    broken = make_entry(NOW - timedelta(minutes=10), room="nt-broken")
    healthy = make_entry(NOW - timedelta(minutes=5))
    schedule_repo.insert_batch([broken, healthy])

    result = _executor(schedule_repo, thermostat).run_once(now=NOW)

    statuses = {item.id: item.status for item in result.results}
    assert statuses == {broken.id: "failed", healthy.id: "applied"}
    stored = schedule_repo.get(broken.id)
    assert stored.status == "failed"
    assert stored.error == "Upstream 500: room nt-broken unreachable"
    assert schedule_repo.get(healthy.id).error is None

    events = list_recent_events(10, subject_id=broken.id)
    assert events[0].action == "schedule_failed"
    assert events[0].reason == stored.error


def test_failed_entries_are_not_retried(schedule_repo):
    thermostat = FakeThermostat(failing_rooms={"nt-1"})
    schedule_repo.insert_batch([make_entry(NOW - timedelta(minutes=5))])
    executor = _executor(schedule_repo, thermostat)

    executor.run_once(now=NOW)
    assert executor.run_once(now=NOW + timedelta(minutes=1)).processed_count == 0
    assert len(thermostat.calls) == 1


def test_unexpected_adapter_error_marks_entry_failed(schedule_repo):
    class ExplodingThermostat(FakeThermostat):
        def apply(self, command):
            raise ConnectionResetError("socket closed")

    thermostat = ExplodingThermostat()
    entry = make_entry(NOW - timedelta(minutes=5))
    schedule_repo.insert_batch([entry])

    result = _executor(schedule_repo, thermostat).run_once(now=NOW)

    assert result.results[0].status == "failed"
    assert schedule_repo.get(entry.id).error == "socket closed"


def test_invalid_heat_entry_fails_without_calling_device(schedule_repo, thermostat):
    entry = make_entry(NOW - timedelta(minutes=5))
    schedule_repo.insert_batch([entry])
    schedule_repo.update(entry.id, {"temp": None})

    _executor(schedule_repo, thermostat).run_once(now=NOW)

    stored = schedule_repo.get(entry.id)
    assert stored.status == "failed"
    assert stored.error == "Invalid heat schedule: requires mode=manual and temp number"
    assert thermostat.calls == []


def test_heat_without_end_time_gets_default_expiry(schedule_repo, thermostat):
    entry = make_entry(NOW - timedelta(minutes=5))
    schedule_repo.insert_batch([entry])
    schedule_repo.update(entry.id, {"end_time": None})

    _executor(schedule_repo, thermostat).run_once(now=NOW)

    assert thermostat.calls[0].expires_at == NOW + timedelta(hours=1)


def test_run_once_scoped_to_user(schedule_repo, thermostat):
    mine = make_entry(NOW - timedelta(minutes=5))
    theirs = make_entry(NOW - timedelta(minutes=5), user_id="user-2")
    schedule_repo.insert_batch([mine, theirs])

    result = _executor(schedule_repo, thermostat).run_once(now=NOW, user_id="user-1")

    assert [item.id for item in result.results] == [mine.id]
    assert schedule_repo.get(theirs.id).status == "pending"


def test_apply_now_ignores_start_time_and_status(schedule_repo, thermostat):
    stop = make_entry(NOW + timedelta(days=3), entry_type="stop")
    schedule_repo.insert_batch([stop])
    executor = _executor(schedule_repo, thermostat)

    first = executor.apply_now(stop.id, now=NOW)
    second = executor.apply_now(stop.id, now=NOW)

    assert first.status == second.status == "applied"
    assert len(thermostat.calls) == 2
    assert thermostat.state[("home-1", "nt-1")].mode == "home"

    events = list_recent_events(10, subject_id=stop.id)
    assert {event.actor for event in events} == {"manual"}


def test_apply_now_retries_failed_entry(schedule_repo, thermostat):
    entry = make_entry(NOW - timedelta(minutes=5), status="failed")
    schedule_repo.insert_batch([entry])

    applied = _executor(schedule_repo, thermostat).apply_now(entry.id, now=NOW)

    assert applied.status == "applied"
    assert applied.error is None


def test_apply_now_unknown_entry(schedule_repo, thermostat):
    assert _executor(schedule_repo, thermostat).apply_now("missing") is None
    assert thermostat.calls == []


def test_ticker_runs_until_stopped(schedule_repo, thermostat):
    schedule_repo.insert_batch([make_entry(datetime.now(UTC) - timedelta(minutes=1))])
    executor = ScheduleExecutor(
        interval_seconds=1,
        repository_factory=lambda: schedule_repo,
        adapter_factory=thermostat.context,
    )

    async def scenario() -> None:
        await executor.start()
        assert executor.running
        for _ in range(100):
            if thermostat.calls:
                break
            await asyncio.sleep(0.02)
        await executor.stop()

    asyncio.run(scenario())

    assert not executor.running
    assert len(thermostat.calls) == 1


def test_overlapping_passes_issue_twice_and_settle_on_applied(tmp_path):
    class LockstepThermostat(FakeThermostat):
        def __init__(self) -> None:
            super().__init__()
            self.barrier = threading.Barrier(2, timeout=5)

        def apply(self, command: ThermostatCommand) -> None:
            self.barrier.wait()
            super().apply(command)

    repo = SqlScheduleRepository(
        build_session_factory(f"sqlite:///{tmp_path / 'overlap.db'}")
    )
    entry = make_entry(NOW - timedelta(minutes=5))
    repo.insert_batch([entry])
    thermostat = LockstepThermostat()
    executor = _executor(repo, thermostat)
    processed: list[int] = []
    errors: list[BaseException] = []

    def run_pass() -> None:
        try:
            processed.append(executor.run_once(now=NOW).processed_count)
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    workers = [threading.Thread(target=run_pass) for _ in range(2)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=10)

    assert errors == []
    assert processed == [1, 1]
    assert len(thermostat.calls) == 2
    assert thermostat.calls[0] == thermostat.calls[1]
    stored = repo.get(entry.id)
    assert stored.status == "applied"
    assert stored.error is None
    assert repo.list_due(NOW) == []
