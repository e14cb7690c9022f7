"""
Scheduler for the backup and purge jobs.

Runs RRULE-driven jobs on daemon threads inside the current process. A
SchedulerHandle owns every job and one-shot timer so they can be stopped
together.

Usage:
    from pyroregistre.scheduler import RecurrenceSchedule, ScheduledJob, SchedulerHandle

    handle = SchedulerHandle()
    rule = RecurrenceSchedule("FREQ=MONTHLY;BYMONTHDAY=1;BYHOUR=2;BYMINUTE=0;BYSECOND=0")
    handle.add_job(ScheduledJob("purge", rule, engine.purge_old_sales))
    handle.start()

    for status in handle.status():
        print(f"{status.name}: next run {status.next_run}")

    handle.stop()
"""

from pyroregistre.scheduler.recurrence import (
    DEFAULT_BACKUP_RULE,
    DEFAULT_PURGE_RULE,
    JobStatus,
    RecurrenceSchedule,
    ScheduledJob,
    ScheduleError,
    SchedulerAlreadyRunningError,
    SchedulerError,
    SchedulerHandle,
    get_schedule_help,
)

__all__ = [
    # Main classes
    "SchedulerHandle",
    "ScheduledJob",
    "RecurrenceSchedule",
    # Dataclasses
    "JobStatus",
    # Errors
    "SchedulerError",
    "ScheduleError",
    "SchedulerAlreadyRunningError",
    # Defaults
    "DEFAULT_BACKUP_RULE",
    "DEFAULT_PURGE_RULE",
    # Utilities
    "get_schedule_help",
]
