"""
Domain subpackage for the job queue.
"""

from .models import Job, JobEvent, JobStatus, JobType, RetryPolicy

__all__ = ["Job", "JobEvent", "JobStatus", "JobType", "RetryPolicy"]
