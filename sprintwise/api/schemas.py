"""Per-tool argument models.

Tool arguments arrive from the LLM as an untyped map. They are validated
once, at the executor boundary, into a tagged union keyed by tool name;
everything past that point works with typed models.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from sprintwise.api.catalog import TOOL_NAMES


class ToolValidationError(ValueError):
    """Tool arguments (or the tool name itself) failed validation."""


class _Args(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _RemoteArgs(BaseModel):
    # Remote tools may accept parameters we do not model; pass them through.
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ---------------------------------------------------------------------------
# Issue edits (write tools)
# ---------------------------------------------------------------------------


class IssueEdit(BaseModel):
    """Normalized shape of one issue in a create/update call."""

    model_config = ConfigDict(extra="ignore")

    summary: str | None = None
    description: str | None = None
    assignee: str | None = None
    status: str | None = None
    issue_key: str | None = None
    sprint_id: int | None = None
    story_points: int | float | None = None
    issue_type: str | None = None
    priority: str | None = None
    labels: list[str] | None = None
    fix_versions: list[str] | None = None
    components: list[str] | None = None
    due_date: str | None = None
    parent_key: str | None = None

    @field_validator("labels", "fix_versions", "components", mode="before")
    @classmethod
    def _single_value(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value


class CreateIssuesArgs(_Args):
    tool: Literal["create_issues"] = "create_issues"
    issues: list[IssueEdit] = Field(min_length=1)

    @model_validator(mode="after")
    def _require_summary(self) -> "CreateIssuesArgs":
        missing = [i + 1 for i, issue in enumerate(self.issues) if not issue.summary]
        if missing:
            raise ValueError(f"summary is required for issue(s) {missing}")
        return self


class UpdateIssuesArgs(_Args):
    tool: Literal["update_issues"] = "update_issues"
    issues: list[IssueEdit] = Field(min_length=1)

    @model_validator(mode="after")
    def _require_key(self) -> "UpdateIssuesArgs":
        missing = [i + 1 for i, issue in enumerate(self.issues) if not issue.issue_key]
        if missing:
            raise ValueError(f"issue_key is required for issue(s) {missing}")
        return self


# ---------------------------------------------------------------------------
# Local tools
# ---------------------------------------------------------------------------


class QueryCsvArgs(_Args):
    tool: Literal["query_csv"] = "query_csv"
    row_range: str | None = None
    row_indices: list[int] | None = Field(
        None, validation_alias=AliasChoices("rowIndices", "rowIndex", "row_indices")
    )
    filters: dict[str, Any] | None = None
    limit: int | None = None

    @field_validator("row_indices", mode="before")
    @classmethod
    def _single_index(cls, value: Any) -> Any:
        if isinstance(value, (int, str)) and not isinstance(value, bool):
            return [value]
        return value


class IssueMapping(BaseModel):
    """Column/field mapping for turning tabular rows into issues."""

    model_config = ConfigDict(extra="ignore")

    summary_column: str | None = None
    description_column: str | None = None
    assignee: str | None = None
    story_points: int | float | None = None
    sprint_id: int | None = None
    issue_type: str | None = None
    priority: str | None = None
    labels: list[str] | None = None
    fix_versions: str | list[str] | None = None
    components: list[str] | None = None
    due_date: str | None = None
    parent_key: str | None = None


class PrepareIssuesArgs(_Args):
    tool: Literal["prepare_issues"] = "prepare_issues"
    row_range: str | None = None
    row_indices: list[int] | None = None
    mapping: IssueMapping | None = None


class CacheCondition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    gt: int | float | None = None
    gte: int | float | None = None
    lt: int | float | None = None
    lte: int | float | None = None
    eq: str | None = None

    @field_validator("eq", mode="before")
    @classmethod
    def _eq_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            return str(value)
        return value


class AnalyzeCachedDataArgs(_Args):
    tool: Literal["analyze_cached_data"] = "analyze_cached_data"
    operation: str | None = None
    field: str | None = None
    condition: CacheCondition | None = None


# ---------------------------------------------------------------------------
# Remote (read) tools
# ---------------------------------------------------------------------------


class ListSprintsArgs(_RemoteArgs):
    tool: Literal["list_sprints"] = "list_sprints"
    state: str | None = None
    limit: int | None = None


class GetContextArgs(_RemoteArgs):
    tool: Literal["get_context"] = "get_context"


class PrepareSearchArgs(_RemoteArgs):
    tool: Literal["prepare_search"] = "prepare_search"
    names: list[str] | None = None
    sprint_ids: list[int] | None = None


class GetSprintIssuesArgs(_RemoteArgs):
    tool: Literal["get_sprint_issues"] = "get_sprint_issues"
    sprint_ids: list[int]
    assignees: list[str] | None = None
    status_filters: list[str] | None = None
    keyword: str | None = None
    include_breakdown: bool | None = None


class GetIssueArgs(_RemoteArgs):
    tool: Literal["get_issue"] = "get_issue"
    issue_key: str


class GetActivityArgs(_RemoteArgs):
    tool: Literal["get_activity"] = "get_activity"
    since: str
    sprint_ids: list[int] | None = None
    to_status: str | None = None
    assignees: list[str] | None = None


class ListEpicsArgs(_RemoteArgs):
    tool: Literal["list_epics"] = "list_epics"


class GetEpicProgressArgs(_RemoteArgs):
    tool: Literal["get_epic_progress"] = "get_epic_progress"
    epic_key: str
    include_subtasks: bool | None = None


ToolArgs = Annotated[
    Union[
        ListSprintsArgs,
        GetContextArgs,
        PrepareSearchArgs,
        GetSprintIssuesArgs,
        GetIssueArgs,
        GetActivityArgs,
        ListEpicsArgs,
        GetEpicProgressArgs,
        QueryCsvArgs,
        PrepareIssuesArgs,
        AnalyzeCachedDataArgs,
        CreateIssuesArgs,
        UpdateIssuesArgs,
    ],
    Field(discriminator="tool"),
]

_TOOL_ARGS_ADAPTER: TypeAdapter[Any] = TypeAdapter(ToolArgs)


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        # first loc element is the union tag
        loc = ".".join(str(p) for p in err.get("loc", ())[1:])
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_tool_args(name: str, arguments: dict[str, Any] | None) -> BaseModel:
    """Validate raw LLM arguments for ``name`` into its argument model.

    Raises ToolValidationError for unknown tools and bad arguments.
    """
    if name not in TOOL_NAMES:
        raise ToolValidationError(f"Unknown tool: {name}")
    payload = dict(arguments or {})
    payload["tool"] = name
    try:
        return _TOOL_ARGS_ADAPTER.validate_python(payload)
    except ValidationError as e:
        raise ToolValidationError(f"Invalid arguments for {name}: {_format_errors(e)}") from e


def dump_args(model: BaseModel) -> dict[str, Any]:
    """Arguments as sent to a tool service: no tag, no unset fields."""
    return model.model_dump(exclude={"tool"}, exclude_none=True)
