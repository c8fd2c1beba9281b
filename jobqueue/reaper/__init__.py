"""
Reaper module.
Contains the stale-lease reaper for recovering abandoned jobs.
"""

from jobqueue.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
