"""UI components for the provisioner CLI.

This package contains console output helpers: step reporting, summary
tables and progress spinners.
"""

from .display import (
    display_lines,
    display_plan_table,
    display_result_summary,
    display_status,
    report,
)
from .progress import ProgressManager, show_progress

__all__ = [
    'display_lines',
    'display_plan_table',
    'display_result_summary',
    'display_status',
    'report',
    'ProgressManager',
    'show_progress',
]
