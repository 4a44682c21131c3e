"""Background processing.

This package provides the APScheduler wiring that runs the expiry watcher
and the list-cache sweeper on fixed (and jittered) intervals.
"""

from mailgate.engine.scheduler import EXPIRY_JOB_ID, SWEEP_JOB_ID, build_scheduler

__all__ = [
    "EXPIRY_JOB_ID",
    "SWEEP_JOB_ID",
    "build_scheduler",
]
