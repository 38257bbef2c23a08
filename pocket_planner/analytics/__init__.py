"""Time-windowed analytics over the expense log."""

from pocket_planner.analytics.aggregator import aggregate, percentage, window_start

__all__ = ["aggregate", "percentage", "window_start"]
