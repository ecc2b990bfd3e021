"""Time-driven work: cron catch-up and fixed-interval timers."""

from regops.scheduling.cron import CronJobScheduler, get_recent_schedule_time
from regops.scheduling.timers import IntervalTimer

__all__ = ["CronJobScheduler", "IntervalTimer", "get_recent_schedule_time"]
