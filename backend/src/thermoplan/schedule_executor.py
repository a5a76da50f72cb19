"""Executor that issues due thermostat commands and records their outcome."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import AbstractContextManager, suppress
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .commands import CommandAdapter, CommandError, adapter_context, build_command
from .events import record_event
from .netatmo.utils import logger
from .schedules import ScheduleRepository, get_schedule_repository
from .schemas import ExecutionResult, RunResult, ScheduleEntry


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class ScheduleExecutor:
    interval_seconds: int = 60
    repository_factory: Callable[[], ScheduleRepository] = get_schedule_repository
    adapter_factory: Callable[[], AbstractContextManager[CommandAdapter]] = adapter_context
    _task: asyncio.Task[None] | None = field(default=None, init=False)
    _stop_event: asyncio.Event | None = field(default=None, init=False)

    async def start(self) -> None:
        if self._task:
            return
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(self._stop_event))
        logger.bind(interval=self.interval_seconds).info("Schedule executor started.")

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._stop_event = None
        logger.info("Schedule executor stopped.")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.to_thread(self.run_once)
            except Exception as exc:  # pragma: no cover
                logger.exception("Schedule executor iteration failed.", error=str(exc))
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)

    def run_once(
        self, *, now: datetime | None = None, user_id: str | None = None
    ) -> RunResult:
        """Issue every pending entry whose start time has elapsed.

        ``now`` is sampled once for the whole pass. Each entry is handled on
        its own: an adapter failure marks that entry failed and the pass goes
        on. Store failures propagate to the caller.
        """
        current = now or _now()
        repo = self.repository_factory()
        due = repo.list_due(current, user_id=user_id)
        if not due:
            return RunResult(processed_count=0, results=[])

        logger.bind(due=len(due), user_id=user_id).info("Processing due schedules")
        results: list[ExecutionResult] = []
        with self.adapter_factory() as adapter:
            for entry in due:
                results.append(self._execute(entry, adapter, repo, current))
        return RunResult(processed_count=len(results), results=results)

    def apply_now(
        self, entry_id: str, *, now: datetime | None = None
    ) -> ScheduleEntry | None:
        """Issue one entry immediately regardless of its start time or status."""
        current = now or _now()
        repo = self.repository_factory()
        entry = repo.get(entry_id)
        if entry is None:
            return None
        with self.adapter_factory() as adapter:
            self._execute(entry, adapter, repo, current, actor="manual")
        return repo.get(entry_id)

    def _execute(
        self,
        entry: ScheduleEntry,
        adapter: CommandAdapter,
        repo: ScheduleRepository,
        now: datetime,
        *,
        actor: str = "scheduler",
    ) -> ExecutionResult:
        message: str | None = None
        try:
            adapter.apply(build_command(entry, now))
        except CommandError as exc:
            message = str(exc) or exc.__class__.__name__
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected adapter error for schedule {}", entry.id)
            message = str(exc) or exc.__class__.__name__

        if message is not None:
            logger.bind(schedule_id=entry.id, type=entry.type).warning(
                "Thermostat command failed: {}", message
            )
            repo.update(entry.id, {"status": "failed", "error": message})
            record_event(
                action="schedule_failed",
                subject_type="schedule",
                subject_id=entry.id,
                actor=actor,
                reason=message,
                metadata={"type": entry.type, "user_id": entry.user_id},
            )
            return ExecutionResult(id=entry.id, status="failed", error=message)

        repo.update(entry.id, {"status": "applied", "error": None})
        record_event(
            action="schedule_applied",
            subject_type="schedule",
            subject_id=entry.id,
            actor=actor,
            metadata={
                "type": entry.type,
                "user_id": entry.user_id,
                "home_id": entry.home_id,
                "room_id": entry.target_room_id,
            },
        )
        return ExecutionResult(id=entry.id, status="applied", error=None)


executor = ScheduleExecutor()
