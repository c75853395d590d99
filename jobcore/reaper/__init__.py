"""
Reaper module.
Contains the reaper that recovers expired leases and promotes due retries.
"""

from jobcore.reaper.main import Reaper, ReapReport, run

__all__ = ["ReapReport", "Reaper", "run"]
