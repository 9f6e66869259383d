"""
Outputs: per-epoch tables, stage durations, label files and console reports.
"""

from .tables import (
    epoch_table,
    stage_durations,
    trainer_table,
    confusion_table,
    summary_row,
    summary_table,
)
from .exports import format_labels, write_labels, read_stage_file
from .reporter import StagingReporter, print_library_outcome

__all__ = [
    'epoch_table',
    'stage_durations',
    'trainer_table',
    'confusion_table',
    'summary_row',
    'summary_table',
    'format_labels',
    'write_labels',
    'read_stage_file',
    'StagingReporter',
    'print_library_outcome',
]
