"""
In-process task scheduler.

``SchedulerRegistry`` owns named recurring tasks, wakes them on their cadence
in a fixed timezone and guarantees single-flight execution: a tick that fires
while the previous run of the same task is still going is dropped and logged,
never queued. Handler failures are caught here so one broken task cannot stop
the process or any other task.
"""

import asyncio
import calendar
import time
import traceback
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from accrual_engine.core.cron_logger import CronLogger, cron_logger
from accrual_engine.core.exceptions import (
    InvalidCadenceError,
    TaskAlreadyRegisteredError,
    TaskDisabledError,
    TaskNotFoundError,
)
from accrual_engine.core.run_lock import RunLock
from accrual_engine.schemas.scheduler_schema import TaskError, TaskStatus

TaskHandler = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class EveryNMinutes:
    """Fires at every minute divisible by ``minutes`` (cron ``*/N * * * *``)."""
    minutes: int

    def __post_init__(self):
        if not 1 <= self.minutes <= 59:
            raise InvalidCadenceError(f"Minute interval must be between 1 and 59, got {self.minutes}")

    def next_run(self, after: datetime) -> datetime:
        candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
        while candidate.minute % self.minutes:
            candidate += timedelta(minutes=1)
        return candidate

    def describe(self) -> str:
        return f"every {self.minutes} minute(s)"


@dataclass(frozen=True)
class EveryNHours:
    """Fires at ``minute`` past every hour divisible by ``hours`` (cron ``M */N * * *``)."""
    hours: int
    minute: int = 0

    def __post_init__(self):
        if not 1 <= self.hours <= 23:
            raise InvalidCadenceError(f"Hour interval must be between 1 and 23, got {self.hours}")
        if not 0 <= self.minute <= 59:
            raise InvalidCadenceError(f"Minute must be between 0 and 59, got {self.minute}")

    def next_run(self, after: datetime) -> datetime:
        candidate = after.replace(minute=self.minute, second=0, microsecond=0)
        if candidate <= after:
            candidate += timedelta(hours=1)
        while candidate.hour % self.hours:
            candidate += timedelta(hours=1)
        return candidate

    def describe(self) -> str:
        return f"every {self.hours} hour(s) at minute {self.minute}"

def _parse_time(value: str) -> Tuple[int, int]:
    """Parse an ``HH:MM`` string."""
    try:
        hours, minutes = value.strip().split(":")
        return int(hours), int(minutes)
    except (AttributeError, ValueError) as e:
        raise InvalidCadenceError(f"Time must be HH:MM, got {value!r}") from e


def _check_time(hour: int, minute: int):
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise InvalidCadenceError(f"Invalid time {hour:02d}:{minute:02d}")


@dataclass(frozen=True)
class DailyAt:
    hour: int
    minute: int

    def __post_init__(self):
        _check_time(self.hour, self.minute)

    @classmethod
    def parse(cls, value: str) -> "DailyAt":
        return cls(*_parse_time(value))

    def next_run(self, after: datetime) -> datetime:
        candidate = after.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= after:
            candidate += timedelta(days=1)
        return candidate

    def describe(self) -> str:
        return f"daily at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class WeeklyAt:
    """Fires once a week; ``day_of_week`` counts from Sunday = 0 like cron."""
    day_of_week: int
    hour: int
    minute: int

    def __post_init__(self):
        if not 0 <= self.day_of_week <= 6:
            raise InvalidCadenceError(f"Day of week must be between 0 (Sunday) and 6, got {self.day_of_week}")
        _check_time(self.hour, self.minute)

    def next_run(self, after: datetime) -> datetime:
        candidate = after.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        # datetime.weekday() has Monday = 0
        candidate += timedelta(days=(self.day_of_week - (candidate.weekday() + 1) % 7) % 7)
        if candidate <= after:
            candidate += timedelta(days=7)
        return candidate

    def describe(self) -> str:
        return f"weekly on day {self.day_of_week} at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class MonthlyAt:
    """Fires on ``day_of_month``; months without that day are skipped, as in cron."""
    day_of_month: int
    hour: int
    minute: int

    def __post_init__(self):
        if not 1 <= self.day_of_month <= 31:
            raise InvalidCadenceError(f"Day of month must be between 1 and 31, got {self.day_of_month}")
        _check_time(self.hour, self.minute)

    def next_run(self, after: datetime) -> datetime:
        year, month = after.year, after.month
        while True:
            if self.day_of_month <= calendar.monthrange(year, month)[1]:
                candidate = after.replace(year=year, month=month, day=self.day_of_month, hour=self.hour,
                                          minute=self.minute, second=0, microsecond=0)
                if candidate > after:
                    return candidate
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)

    def describe(self) -> str:
        return f"monthly on day {self.day_of_month} at {self.hour:02d}:{self.minute:02d}"


Cadence = Union[EveryNMinutes, EveryNHours, DailyAt, WeeklyAt, MonthlyAt]


@dataclass
class ScheduledTask:
    name: str
    cadence: Cadence
    handler: TaskHandler
    timezone: str
    run_on_init: bool = False
    enabled: bool = True
    # Start/complete logged at DEBUG; for frequent tasks that report their own activity
    quiet: bool = False
    is_running: bool = False
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    run_count: int = 0
    error_count: int = 0
    dropped_ticks: int = 0
    last_error: Optional[TaskError] = None

    def status(self) -> TaskStatus:
        return TaskStatus(
            name=self.name,
            schedule=self.cadence.describe(),
            timezone=self.timezone,
            enabled=self.enabled,
            run_on_init=self.run_on_init,
            quiet=self.quiet,
            is_running=self.is_running,
            last_run=self.last_run,
            next_run=self.next_run,
            run_count=self.run_count,
            error_count=self.error_count,
            dropped_ticks=self.dropped_ticks,
            last_error=self.last_error,
        )


def _now(tz: ZoneInfo) -> datetime:
    return datetime.now(tz)


class SchedulerRegistry:
    """Registry of named recurring tasks and the timers that drive them."""

    def __init__(
        self,
        timezone: str = "Asia/Kolkata",
        run_lock: Optional[RunLock] = None,
        logger: Optional[CronLogger] = None,
        clock: Callable[[ZoneInfo], datetime] = _now,
    ):
        self.default_timezone = timezone
        self.run_lock = run_lock or RunLock()
        self.logger = logger or cron_logger
        self._clock = clock
        self.tasks: Dict[str, ScheduledTask] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._guard = asyncio.Lock()
        self.is_running = False

    # Registration

    def schedule(
        self,
        name: str,
        cadence: Cadence,
        handler: TaskHandler,
        *,
        timezone: Optional[str] = None,
        run_on_init: bool = False,
        enabled: bool = True,
        quiet: bool = False,
    ) -> ScheduledTask:
        if not name:
            raise ValueError("Task name must not be empty")
        if name in self.tasks:
            raise TaskAlreadyRegisteredError(f'Task "{name}" is already registered')

        tz_name = timezone or self.default_timezone
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidCadenceError(f"Unknown timezone {tz_name!r}") from e

        task = ScheduledTask(
            name=name,
            cadence=cadence,
            handler=handler,
            timezone=tz_name,
            run_on_init=run_on_init,
            enabled=enabled,
            quiet=quiet,
        )
        self.tasks[name] = task
        self.logger.info(f'Scheduled task: "{name}"', {"schedule": cadence.describe(), "timezone": tz_name})

        if self.is_running:
            self._start_timer(name)
        return task

    def every_minutes(self, minutes: int, name: str, handler: TaskHandler, **options) -> ScheduledTask:
        return self.schedule(name, EveryNMinutes(minutes), handler, **options)

    def every_hours(self, hours: int, name: str, handler: TaskHandler, **options) -> ScheduledTask:
        return self.schedule(name, EveryNHours(hours), handler, **options)

    def hourly(self, minute: int, name: str, handler: TaskHandler, **options) -> ScheduledTask:
        return self.schedule(name, EveryNHours(1, minute), handler, **options)

    def daily(self, at: str, name: str, handler: TaskHandler, **options) -> ScheduledTask:
        return self.schedule(name, DailyAt.parse(at), handler, **options)

    def weekly(self, day_of_week: int, at: str, name: str, handler: TaskHandler, **options) -> ScheduledTask:
        return self.schedule(name, WeeklyAt(day_of_week, *_parse_time(at)), handler, **options)

    def monthly(self, day_of_month: int, at: str, name: str, handler: TaskHandler, **options) -> ScheduledTask:
        return self.schedule(name, MonthlyAt(day_of_month, *_parse_time(at)), handler, **options)

    # Lifecycle

    async def start(self):
        if self.is_running:
            self.logger.warn("Scheduler is already running")
            return

        self.logger.info("Starting scheduler...", {"totalTasks": len(self.tasks)})
        self.is_running = True
        for name in self.tasks:
            self._start_timer(name)
        self.logger.info("Scheduler started", {"totalTasks": len(self.tasks)})

    async def stop(self):
        """Cancel all timers and wait for runs already in progress."""
        if not self.is_running:
            return

        self.logger.info("Stopping scheduler...")
        timers = list(self._timers.values())
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._timers.clear()

        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        self.is_running = False
        self.logger.info("Scheduler stopped")

    def _start_timer(self, name: str, initial: bool = True):
        task = self.tasks[name]
        if not task.enabled:
            self.logger.info(f'Task "{name}" is disabled')
            return

        existing = self._timers.pop(name, None)
        if existing is not None:
            existing.cancel()

        self._timers[name] = asyncio.create_task(self._timer_loop(name), name=f"scheduler:{name}")

        if initial and task.run_on_init:
            self.logger.info(f'Running task "{name}" on init...')
            self._spawn(name, "init")

    async def _timer_loop(self, name: str):
        task = self.tasks[name]
        tz = ZoneInfo(task.timezone)
        last_fire: Optional[datetime] = None
        while True:
            now = self._clock(tz)
            if last_fire is not None and now < last_fire:
                # Woke marginally early; never fire the same slot twice
                now = last_fire
            next_run = task.cadence.next_run(now)
            task.next_run = next_run
            await asyncio.sleep(max(next_run.timestamp() - now.timestamp(), 0))
            last_fire = next_run
            self._spawn(name, "tick")

    def _spawn(self, name: str, trigger: str):
        run = asyncio.create_task(self._execute_task(name, trigger))
        self._in_flight.add(run)
        run.add_done_callback(self._in_flight.discard)

    # Execution

    async def _execute_task(self, name: str, trigger: str = "tick") -> bool:
        """Run the task once unless it is already running. Returns True if the handler was invoked."""
        task = self.tasks.get(name)
        if task is None:
            return False

        async with self._guard:
            if task.is_running:
                task.dropped_ticks += 1
                self.logger.warn(f'Task "{name}" is still running; {trigger} dropped',
                                 {"task": name, "droppedTicks": task.dropped_ticks})
                return False
            task.is_running = True

        lock_held = False
        try:
            async with self.run_lock.hold(name) as acquired:
                if not acquired:
                    self._log_activity(task, f'Task "{name}" is running on another instance; {trigger} skipped')
                    return False
                lock_held = True
                await self._invoke(task)
                return True
        except Exception as e:
            if lock_held:
                message = f'Releasing run lock for task "{name}" failed after the run'
            else:
                message = f'Could not acquire run lock for task "{name}"; {trigger} skipped'
            self.logger.error(message, e, {"task": name})
            return False
        finally:
            task.is_running = False

    async def _invoke(self, task: ScheduledTask):
        start = time.monotonic()
        schedule = task.cadence.describe()
        self.logger.task_start(task.name, schedule, quiet=task.quiet)
        try:
            await task.handler()
        except Exception as error:
            duration_ms = int((time.monotonic() - start) * 1000)
            task.error_count += 1
            task.last_error = TaskError(
                message=str(error),
                stack="".join(traceback.format_exception(type(error), error, error.__traceback__)),
                timestamp=datetime.now(ZoneInfo(task.timezone)),
            )
            self.logger.task_error(task.name, error, duration_ms)
            return

        duration_ms = int((time.monotonic() - start) * 1000)
        task.last_run = datetime.now(ZoneInfo(task.timezone))
        task.run_count += 1
        self.logger.task_complete(task.name, duration_ms,
                                  {"runCount": task.run_count, "errorCount": task.error_count}, quiet=task.quiet)

    def _log_activity(self, task: ScheduledTask, message: str):
        if task.quiet:
            self.logger.debug(message)
        else:
            self.logger.info(message)

    # Management

    def _get(self, name: str) -> ScheduledTask:
        task = self.tasks.get(name)
        if task is None:
            raise TaskNotFoundError(f'Task "{name}" not found')
        return task

    async def run(self, name: str) -> bool:
        """Run a task now, subject to the same single-flight guard as timer ticks."""
        task = self._get(name)
        if not task.enabled:
            raise TaskDisabledError(f'Task "{name}" is disabled')
        self._log_activity(task, f'Manually running task: "{name}"')
        return await self._execute_task(name, "manual run")

    def enable(self, name: str):
        task = self._get(name)
        task.enabled = True
        if self.is_running and name not in self._timers:
            self._start_timer(name, initial=False)
        self.logger.info(f'Task "{name}" enabled')

    def disable(self, name: str):
        task = self._get(name)
        task.enabled = False
        timer = self._timers.pop(name, None)
        if timer is not None:
            timer.cancel()
        task.next_run = None
        self.logger.info(f'Task "{name}" disabled')

    def get_task_status(self, name: str) -> Optional[TaskStatus]:
        task = self.tasks.get(name)
        return task.status() if task else None

    def get_all_tasks_status(self) -> List[TaskStatus]:
        return [task.status() for task in self.tasks.values()]
