"""Data models for the orchestration loop and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Turn:
    """A single message in a conversation."""

    role: str  # "user" or "assistant"
    content: str


@dataclass
class ToolCall:
    """A tool invocation requested by the LLM."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenUsage:
    """Prompt/completion token counts reported by the LLM."""

    prompt: int = 0
    completion: int = 0

    @property
    def total(self) -> int:
        return self.prompt + self.completion

    def add(self, other: TokenUsage | None) -> None:
        if other is None:
            return
        self.prompt += other.prompt
        self.completion += other.completion


@dataclass
class LLMResponse:
    """Parsed non-streaming response from the chat endpoint."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage | None = None
    raw_tool_calls: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class CondensedResult:
    """A tool result reshaped for the LLM, the reasoning log and the UI."""

    for_llm: str
    for_human: str
    structured: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class CachedData:
    """A previously fetched issue set the client carries between requests."""

    issues: list[dict[str, Any]] = field(default_factory=list)
    label: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CachedData | None:
        if not data or not isinstance(data, dict):
            return None
        issues = data.get("issues") or []
        if not isinstance(issues, list):
            return None
        return cls(issues=issues, label=data.get("sprintName") or data.get("label"))

    def to_dict(self) -> dict[str, Any]:
        return {"issues": self.issues, "sprintName": self.label}


@dataclass
class SideChannel:
    """Optional data delivered alongside the conversation."""

    rows: list[dict[str, str]] | None = None
    cached: CachedData | None = None

    @property
    def has_rows(self) -> bool:
        return bool(self.rows)


@dataclass
class ReviewVerdict:
    """Outcome of a post-hoc answer review or a mutation audit."""

    passed: bool
    reason: str | None = None
    summary: str | None = None
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"pass": self.passed}
        if self.reason is not None:
            data["reason"] = self.reason
        if self.summary is not None:
            data["summary"] = self.summary
        if self.skipped:
            data["skipped"] = True
        return data


@dataclass
class PendingAction:
    """A write-tool call awaiting client confirmation."""

    id: str
    tool_name: str
    issues: list[dict[str, Any]]
    audit: ReviewVerdict | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "toolName": self.tool_name,
            "issues": self.issues,
        }
        if self.audit is not None:
            data["auditResult"] = self.audit.to_dict()
        return data


@dataclass
class AuditContext:
    """Facts gathered during a turn, used by the answer reviewer."""

    user_question: str | None = None
    tool_used: str | None = None
    applied_filters: dict[str, Any] | None = None
    issue_count: int | None = None
    total_points: float | None = None
    issues: list[dict[str, Any]] = field(default_factory=list)
    sprint_name: str | None = None
    activity_changes: list[dict[str, Any]] = field(default_factory=list)
    change_count: int | None = None
    activity_period: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Outbound events
# ---------------------------------------------------------------------------

EVENT_TYPES = frozenset({
    "reasoning",
    "tool_call",
    "tool_result",
    "structured_data",
    "confirmation_required",
    "chunk",
    "warning",
    "error",
    "review_complete",
    "done",
})


@dataclass
class AgentEvent:
    """A typed record emitted by the loop and written to the client stream."""

    type: str
    content: str | None = None
    tool: str | None = None
    arguments: dict[str, Any] | None = None
    data: dict[str, Any] | None = None
    pending_action: PendingAction | None = None
    review: ReviewVerdict | None = None

    def __post_init__(self) -> None:
        if self.type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.type}")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type}
        if self.content is not None:
            out["content"] = self.content
        if self.tool is not None:
            out["tool"] = self.tool
        if self.arguments is not None:
            out["arguments"] = self.arguments
        if self.data is not None:
            out["data"] = self.data
        if self.pending_action is not None:
            out["pendingAction"] = self.pending_action.to_dict()
        if self.review is not None:
            out.update(self.review.to_dict())
        return out
