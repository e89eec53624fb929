"""Analytics over reconstructed task history."""

from tasktrail.analytics.aggregator import (
    Analytics,
    status_durations,
    status_timeline,
    summarize_effort,
)
from tasktrail.window import Scope, TimeWindow, parse_duration, parse_time_expression

__all__ = [
    "Analytics",
    "status_durations",
    "status_timeline",
    "summarize_effort",
    "Scope",
    "TimeWindow",
    "parse_duration",
    "parse_time_expression",
]
