"""Local tools over side-channel data (uploaded rows, cached issues)."""

from sprintwise.tools.cached import analyze_cached_data
from sprintwise.tools.tabular import parse_row_range, prepare_issues, query_rows

__all__ = [
    "analyze_cached_data",
    "parse_row_range",
    "prepare_issues",
    "query_rows",
]
