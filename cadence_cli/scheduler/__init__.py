"""Scheduling and dispatch engine for Cadence.

This module provides:
- DispatchScheduler: recurring tick running coverage and due-processing passes
- DispatchInvoker: never-raising wrapper around a delivery transport
- Jitter helpers computing randomized due times
"""

from cadence_cli.scheduler.dispatch import DispatchInvoker
from cadence_cli.scheduler.dispatch_scheduler import DispatchScheduler, ProcessingResult
from cadence_cli.scheduler.jitter import jitter_bounds, jittered_delay, next_due_time

__all__ = [
    "DispatchInvoker",
    "DispatchScheduler",
    "ProcessingResult",
    "jitter_bounds",
    "jittered_delay",
    "next_due_time",
]
