"""
Background Jobs Package

Contains scheduled background jobs for record maintenance.

Available Jobs:
- retention_job: Periodic and on-demand deletion of jobs in terminal states
"""

from task_monitor.services.background_jobs.retention_job import RetentionScheduler

__all__ = [
    "RetentionScheduler",
]
