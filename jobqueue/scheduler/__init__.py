"""
Scheduler module.
Contains the periodic heartbeat producer.
"""

from jobqueue.scheduler.main import Scheduler, run

__all__ = ["Scheduler", "run"]
