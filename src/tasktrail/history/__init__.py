"""History reconstruction: git log walking and snapshot diffing."""

from tasktrail.history.differ import apply_changes, classify, diff
from tasktrail.history.walker import HistoryWalker, TaskHistory, parse_log_output

__all__ = [
    "HistoryWalker",
    "TaskHistory",
    "parse_log_output",
    "diff",
    "classify",
    "apply_changes",
]
