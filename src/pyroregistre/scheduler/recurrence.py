"""
Built-in scheduler for the backup and purge jobs.

Recurrences are iCalendar RRULE strings (RFC 5545) evaluated with
``dateutil.rrule`` on the wall clock of a named time zone. Each job runs on
its own daemon thread. All threads and one-shot timers belong to a
SchedulerHandle, which starts and stops them together.

The scheduler never persists state: a restarted process recomputes the next
fire time of every job from its rule.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.rrule import rrulestr

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Europe/Paris"

# 00:00 and 12:00 every day
DEFAULT_BACKUP_RULE = "FREQ=DAILY;BYHOUR=0,12;BYMINUTE=0;BYSECOND=0"
# 02:00 on the first day of every month
DEFAULT_PURGE_RULE = "FREQ=MONTHLY;BYMONTHDAY=1;BYHOUR=2;BYMINUTE=0;BYSECOND=0"

# Longest single wait; the next fire time is recomputed after each wake-up
# so a wall clock change is picked up within this delay.
MAX_SLEEP_SECONDS = 300.0

# Wall-clock order and instant order only disagree around a daylight saving
# change, so occurrences are scanned from this far before the reference.
DST_LOOKBACK = timedelta(days=1)


class SchedulerError(Exception):
    """Base exception for scheduler errors."""

    pass


class ScheduleError(SchedulerError):
    """Raised when a recurrence rule or its time zone is invalid."""

    pass


class SchedulerAlreadyRunningError(SchedulerError):
    """Raised when the scheduler is already running."""

    pass


class RecurrenceSchedule:
    """
    An RRULE recurrence bound to a time zone.

    The rule must not carry its own DTSTART; occurrences are anchored at
    midnight on 1 January of the current local year, so INTERVAL counts
    from there.

    Example:
        schedule = RecurrenceSchedule(DEFAULT_BACKUP_RULE, "Europe/Paris")
        schedule.next_after(datetime.now(UTC))
    """

    def __init__(self, rule: str, timezone: str = DEFAULT_TIMEZONE) -> None:
        self.rule = rule.strip()
        self.timezone = timezone

        try:
            self.tz = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ScheduleError(f"Unknown timezone: {timezone}") from e

        if not self.rule:
            raise ScheduleError("Recurrence rule is empty")
        if "DTSTART" in self.rule.upper():
            raise ScheduleError(f"Recurrence rule must not set DTSTART: {rule!r}")

        # Parse once so a bad rule fails at construction
        self._build(datetime(2000, 1, 1, tzinfo=self.tz))

    def __repr__(self) -> str:
        return f"RecurrenceSchedule({self.rule!r}, {self.timezone!r})"

    def _build(self, anchor: datetime) -> Any:
        try:
            return rrulestr(self.rule, dtstart=anchor)
        except (ValueError, TypeError) as e:
            raise ScheduleError(f"Invalid recurrence rule {self.rule!r}: {e}") from e

    def next_after(self, instant: datetime) -> datetime | None:
        """
        First fire time strictly after ``instant``.

        Wall times skipped by a daylight-saving change do not fire; repeated
        wall times fire once, on their first occurrence.

        Args:
            instant: Aware datetime.

        Returns:
            Aware UTC datetime, or None once the rule is exhausted (COUNT or
            UNTIL reached).

        Raises:
            ValueError: If ``instant`` is naive.
        """
        if instant.tzinfo is None:
            raise ValueError("next_after requires an aware datetime")

        reference = instant.astimezone(UTC)
        anchor = datetime(reference.astimezone(self.tz).year, 1, 1, tzinfo=self.tz)
        rule = self._build(anchor)

        # Aware datetimes in different zones compare as instants
        for occurrence in rule.xafter(reference - DST_LOOKBACK):
            fire_at = occurrence.astimezone(UTC)
            wall = occurrence.replace(tzinfo=None)
            if fire_at.astimezone(self.tz).replace(tzinfo=None) != wall:
                continue
            if fire_at > reference:
                return fire_at
        return None


@dataclass
class JobStatus:
    """
    Current state of one scheduled job.

    Attributes:
        name: Job name.
        rule: Recurrence rule.
        timezone: Zone the rule is evaluated in.
        running: Whether the job thread is alive.
        next_run: Next fire time (UTC), if known.
        last_run: Start of the last run.
        last_success: Outcome of the last run.
        last_error: Error of the last failed run.
        run_count: Number of completed runs.
    """

    name: str
    rule: str
    timezone: str
    running: bool = False
    next_run: datetime | None = None
    last_run: datetime | None = None
    last_success: bool | None = None
    last_error: str | None = None
    run_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert status to dictionary."""
        return {
            "name": self.name,
            "rule": self.rule,
            "timezone": self.timezone,
            "running": self.running,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_success": self.last_success,
            "last_error": self.last_error,
            "run_count": self.run_count,
        }


class ScheduledJob:
    """
    A recurring action run on its own daemon thread.

    Ticks are processed one at a time; an action that outlasts the interval
    delays the next tick instead of overlapping with it. A failing run is
    logged and recorded, and later ticks still fire.

    The action may return an object with ``success`` and ``error``
    attributes (BackupReport, PurgeReport); ``success=False`` counts as a
    failed run.
    """

    def __init__(
        self,
        name: str,
        schedule: RecurrenceSchedule,
        action: Callable[[], Any],
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.name = name
        self.schedule = schedule
        self.action = action
        self._clock = clock or (lambda: datetime.now(UTC))

        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._next_run: datetime | None = None
        self.last_run: datetime | None = None
        self.last_success: bool | None = None
        self.last_error: str | None = None
        self.run_count = 0

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        """
        Invoke the action now and record the outcome.

        Returns:
            True if the action completed and did not report a failure.
        """
        started = self._clock()
        logger.info(f"Running scheduled job '{self.name}'")

        error: str | None = None
        try:
            result = self.action()
        except Exception as e:
            logger.exception(f"Scheduled job '{self.name}' failed")
            success = False
            error = str(e) or type(e).__name__
        else:
            success = getattr(result, "success", True) is not False
            if not success:
                error = getattr(result, "error", None) or "unknown error"
                logger.error(f"Scheduled job '{self.name}' reported failure: {error}")

        with self._lock:
            self.last_run = started
            self.last_success = success
            self.last_error = error
            self.run_count += 1

        if success:
            logger.info(f"Scheduled job '{self.name}' completed")
        return success

    def start(self, stop_event: threading.Event) -> None:
        """Start the job thread; it exits once ``stop_event`` is set."""
        if self.is_alive:
            return
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(stop_event,),
            name=f"pyroregistre-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run_loop(self, stop_event: threading.Event) -> None:
        logger.debug(f"Job '{self.name}' thread started ({self.schedule})")

        while not stop_event.is_set():
            fire_at = self.schedule.next_after(self._clock())
            if fire_at is None:
                logger.warning(f"Job '{self.name}' has no further occurrences, stopping")
                break

            with self._lock:
                self._next_run = fire_at

            while not stop_event.is_set():
                remaining = (fire_at - self._clock()).total_seconds()
                if remaining <= 0:
                    break
                stop_event.wait(min(remaining, MAX_SLEEP_SECONDS))

            if stop_event.is_set():
                break

            self.run_once()

        with self._lock:
            self._next_run = None
        logger.debug(f"Job '{self.name}' thread stopped")

    def status(self) -> JobStatus:
        with self._lock:
            next_run = self._next_run
            if next_run is None:
                next_run = self.schedule.next_after(self._clock())
            return JobStatus(
                name=self.name,
                rule=self.schedule.rule,
                timezone=self.schedule.timezone,
                running=self.is_alive,
                next_run=next_run,
                last_run=self.last_run,
                last_success=self.last_success,
                last_error=self.last_error,
                run_count=self.run_count,
            )


class SchedulerHandle:
    """
    Owner of every scheduled job and one-shot timer of the process.

    Usage:
        handle = SchedulerHandle()
        handle.add_job(ScheduledJob("backup", RecurrenceSchedule(DEFAULT_BACKUP_RULE),
                                    engine.create_backup))
        handle.run_later(5, engine.create_backup)
        handle.start()
        ...
        handle.stop()
    """

    def __init__(self) -> None:
        self._jobs: dict[str, ScheduledJob] = {}
        self._timers: list[threading.Timer] = []
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def has_job(self, name: str) -> bool:
        return name in self._jobs

    def add_job(self, job: ScheduledJob) -> ScheduledJob:
        """
        Register a job. It starts immediately if the handle is running.

        Raises:
            SchedulerError: If a job with the same name exists.
        """
        with self._lock:
            if job.name in self._jobs:
                raise SchedulerError(f"Job already scheduled: {job.name}")
            self._jobs[job.name] = job
            if self._running:
                job.start(self._stop_event)

        logger.info(
            f"Scheduled job '{job.name}' with '{job.schedule.rule}' "
            f"({job.schedule.timezone})"
        )
        return job

    def run_later(
        self,
        delay: float,
        action: Callable[[], Any],
        name: str = "one-shot",
    ) -> threading.Timer:
        """Run ``action`` once after ``delay`` seconds; cancelled by ``stop``."""

        def _run() -> None:
            try:
                action()
            except Exception:
                logger.exception(f"One-shot task '{name}' failed")

        timer = threading.Timer(delay, _run)
        timer.name = f"pyroregistre-{name}"
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

        logger.info(f"One-shot task '{name}' scheduled in {delay:g}s")
        return timer

    def start(self) -> None:
        """
        Start every registered job.

        Raises:
            SchedulerAlreadyRunningError: If the handle is already running.
        """
        with self._lock:
            if self._running:
                raise SchedulerAlreadyRunningError("Scheduler is already running")
            self._stop_event.clear()
            self._running = True
            for job in self._jobs.values():
                job.start(self._stop_event)

        logger.info(f"Scheduler started with {len(self._jobs)} job(s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel pending timers and stop every job thread."""
        with self._lock:
            self._stop_event.set()
            timers, self._timers = self._timers, []
            jobs = list(self._jobs.values())
            was_running = self._running
            self._running = False

        for timer in timers:
            timer.cancel()
        for job in jobs:
            job.join(timeout)

        if was_running:
            logger.info("Scheduler stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until ``stop`` is called; True if it was."""
        return self._stop_event.wait(timeout)

    def status(self) -> list[JobStatus]:
        return [job.status() for job in self._jobs.values()]


def get_schedule_help() -> str:
    """
    Get help text explaining the recurrence rule syntax.

    Returns:
        Multi-line string with RRULE syntax explanation.
    """
    return f"""
Schedule Syntax
===============

Schedules are iCalendar recurrence rules (RFC 5545 RRULE), evaluated on the
wall clock of the configured time zone:

    FREQ=<freq>;BY<part>=<values>;...

Common parts:
    FREQ        YEARLY, MONTHLY, WEEKLY, DAILY, HOURLY, MINUTELY
    INTERVAL    Every n-th period (default 1)
    BYMONTH     1-12
    BYMONTHDAY  1-31, or -1 for the last day of the month
    BYDAY       MO, TU, WE, TH, FR, SA, SU (1MO = first Monday)
    BYHOUR      0-23
    BYMINUTE    0-59
    BYSECOND    0-59 (set to 0 to fire on the minute)

Values are comma separated. DTSTART must not be given.

Pyroregistre defaults:
    backup -> "{DEFAULT_BACKUP_RULE}"
              (midnight and noon)
    purge  -> "{DEFAULT_PURGE_RULE}"
              (1st of each month at 2:00 AM)

Examples:
    "FREQ=DAILY;BYHOUR=3;BYMINUTE=30;BYSECOND=0"          every day at 03:30
    "FREQ=WEEKLY;BYDAY=SU;BYHOUR=4;BYMINUTE=0;BYSECOND=0" Sundays at 04:00
"""
