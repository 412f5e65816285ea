"""analyze_cached_data: count/filter/sum/group over a previously fetched issue set."""

from __future__ import annotations

import json
from typing import Any

from sprintwise.api.models import CachedData
from sprintwise.api.schemas import AnalyzeCachedDataArgs, CacheCondition

NO_CACHE_MESSAGE = "No cached data available. Please fetch issues first using get_sprint_issues."

_FIELDS = ("story_points", "status", "assignee")


def _plain(value: Any) -> Any:
    """5.0 -> 5, so whole-number points compare and print like ints."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _field_value(issue: dict[str, Any], field_name: str | None) -> Any:
    if field_name in _FIELDS:
        return issue.get(field_name)
    return None


def _matches(value: Any, condition: CacheCondition | None, field_name: str | None) -> bool:
    if condition is None:
        return True
    if value is None:
        return False

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if condition.gt is not None and value <= condition.gt:
            return False
        if condition.gte is not None and value < condition.gte:
            return False
        if condition.lt is not None and value >= condition.lt:
            return False
        if condition.lte is not None and value > condition.lte:
            return False

    if condition.eq is not None:
        text = str(_plain(value)).lower()
        wanted = condition.eq.lower()
        if field_name == "assignee":
            # "john doe" matches "john.doe@corp.com"
            return all(part in text for part in wanted.split())
        return text == wanted

    return True


def analyze_cached_data(cached: CachedData | None, args: AnalyzeCachedDataArgs) -> dict[str, Any]:
    """Answer a follow-up from cached issues without a remote call."""
    if cached is None or not cached.issues:
        return {"message": NO_CACHE_MESSAGE}

    issues = cached.issues
    op = args.operation
    field_name = args.field
    condition = args.condition

    if op == "count":
        count = sum(1 for i in issues if _matches(_field_value(i, field_name), condition, field_name))
        matching = ""
        if condition is not None:
            matching = f" matching {json.dumps(condition.model_dump(exclude_none=True))}"
        return {"message": f"{count} issues{matching} (out of {len(issues)} total)"}

    if op == "filter":
        filtered = [i for i in issues if _matches(_field_value(i, field_name), condition, field_name)]
        if not filtered:
            return {"message": "No issues match the criteria."}
        return {"message": f"Found {len(filtered)} issues", "issues": filtered}

    if op == "sum":
        if field_name != "story_points":
            return {"message": "Sum operation only works with story_points field."}
        total = _plain(sum(i.get("story_points") or 0 for i in issues))
        return {"message": f"Total story points: {total} (from {len(issues)} issues)"}

    if op == "group":
        groups: dict[str, int] = {}
        for issue in issues:
            value = _field_value(issue, field_name)
            key = "Unassigned" if value is None else str(_plain(value))
            groups[key] = groups.get(key, 0) + 1
        lines = "\n".join(f"{k}: {c}" for k, c in sorted(groups.items(), key=lambda kv: -kv[1]))
        return {"message": f"Grouped by {field_name}:\n{lines}"}

    return {"message": "Unknown operation. Use: count, filter, sum, or group."}
