"""
Allocation package: expose the time-allocation engine.
"""

from .hours import compute_hours
from .replay import derive_interval, Workflow, DEFAULT_WORKFLOW
from .aggregator import allocate, allocate_with_summary

__all__ = ["compute_hours", "derive_interval", "Workflow", "DEFAULT_WORKFLOW", "allocate", "allocate_with_summary"]
