from harvest.scheduling.service import CronSchedule, SchedulerService, SchedulerStats

__all__ = ["CronSchedule", "SchedulerService", "SchedulerStats"]
