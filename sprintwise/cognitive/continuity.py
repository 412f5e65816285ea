"""Context continuity: does a new question continue the prior data context?

Two pieces:

- ContextStrategy: turns prior turns into (a) a terse history summary for
  the classifier and (b) a data-context hint for the model. The default
  RegexContextStrategy scans assistant turns for counts, points, sprint
  names and assignees. Pattern matching, no LLM.
- ContinuityClassifier: asks a cheap model call "fresh or continuing?".
  Any failure degrades to CONTINUING; a wrong answer costs an extra tool
  call or some irrelevant context, never correctness.
"""

from __future__ import annotations

import logging
import re
from enum import StrEnum
from typing import Protocol

from sprintwise.api.models import Turn

logger = logging.getLogger(__name__)

MAX_QUESTION_CHARS = 100
MAX_FLOW_ITEMS = 3
MAX_LISTED_KEYS = 10


class Continuity(StrEnum):
    FRESH = "fresh"
    CONTINUING = "continuing"


class ContextStrategy(Protocol):
    """Swappable history summarizer / data-context extractor."""

    def summarize_history(self, turns: list[Turn]) -> str: ...

    def extract_data_context(self, turns: list[Turn]) -> str | None: ...


class Classifier(Protocol):
    async def classify(self, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# RegexContextStrategy
# ---------------------------------------------------------------------------

_ISSUE_COUNT = re.compile(r"(\d+)\s*issues?\b", re.IGNORECASE)
_ISSUE_COUNT_LOOSE = re.compile(r"(\d+)\s*issues?", re.IGNORECASE)
_POINTS = re.compile(r"(\d+)\s*(?:story\s*)?points?\b", re.IGNORECASE)
_POINTS_LOOSE = re.compile(r"(\d+)\s*(?:story\s*)?points?", re.IGNORECASE)
_SPRINT_NAME = re.compile(r"[\"']?([A-Z]+-?\w*\s*Sprint\s*\d+)[\"']?", re.IGNORECASE)
_SPRINT_ID = re.compile(r"(?:sprint\s*(?:id[:\s]*)?|ID[:\s]*)(\d{3,5})", re.IGNORECASE)
_MORE_THAN = re.compile(
    r"(\d+)\s*(?:issues?\s*)?(?:have|has|with)\s*more\s*than\s*(\d+)\s*(?:story\s*)?points?",
    re.IGNORECASE,
)
_ASSIGNEE = re.compile(r"(\w+(?:\s+\w+)?)'s\s*tasks?|assigned\s*to\s*(\w+(?:\s+\w+)?)", re.IGNORECASE)
_ISSUE_KEY = re.compile(r"[A-Z]+-\d+")


def _assignee_count(content: str, name: str) -> str | None:
    escaped = re.escape(name)
    pattern = re.compile(
        rf"(\d+)\s*(?:issues?|tasks?).*{escaped}|{escaped}.*?(\d+)\s*(?:issues?|tasks?)",
        re.IGNORECASE,
    )
    match = pattern.search(content)
    if not match:
        return None
    return match.group(1) or match.group(2)


class RegexContextStrategy:
    """Heuristic, pattern-based context extraction."""

    def summarize_history(self, turns: list[Turn]) -> str:
        """Short "data flow" trail plus the last two user questions.

        Example: "Data flow: fetched 12 issues from TEAM Sprint 4 ->
        filtered to 3 for Alice. Last questions: ...; ..."
        """
        if len(turns) <= 1:
            return ""

        questions = [t.content[:MAX_QUESTION_CHARS] for t in turns if t.role == "user"]
        flow: list[str] = []

        for turn in turns:
            if turn.role != "assistant":
                continue
            content = turn.content
            count = _ISSUE_COUNT.search(content)
            points = _POINTS.search(content)
            sprint = _SPRINT_NAME.search(content)

            if sprint and count:
                flow.append(f"fetched {count.group(1)} issues from {sprint.group(1)}")
            elif count and points:
                flow.append(f"{count.group(1)} issues ({points.group(1)} pts)")

            more_than = _MORE_THAN.search(content)
            if more_than:
                flow.append(f"filtered to {more_than.group(1)} with >{more_than.group(2)} pts")

            assignee = _ASSIGNEE.search(content)
            if assignee:
                name = assignee.group(1) or assignee.group(2)
                n = _assignee_count(content, name)
                flow.append(f"filtered to {n} for {name}" if n else f"filtered for {name}")

        parts = []
        if flow:
            unique = list(dict.fromkeys(flow))[-MAX_FLOW_ITEMS:]
            parts.append(f"Data flow: {' → '.join(unique)}")
        if questions:
            parts.append(f"Last questions: {'; '.join(questions[-2:])}")
        return ". ".join(parts)

    def extract_data_context(self, turns: list[Turn]) -> str | None:
        """Data points mentioned in the last assistant turn, or None."""
        assistant = [t for t in turns if t.role == "assistant"]
        if not assistant:
            return None
        last = assistant[-1].content
        points: list[str] = []

        sprint_id = _SPRINT_ID.search(last)
        if sprint_id:
            points.append(f"Sprint ID: {sprint_id.group(1)}")
        sprint_name = _SPRINT_NAME.search(last)
        if sprint_name:
            points.append(f"Sprint: {sprint_name.group(1)}")
        count = _ISSUE_COUNT_LOOSE.search(last)
        if count:
            points.append(f"{count.group(1)} issues")
        story_points = _POINTS_LOOSE.search(last)
        if story_points:
            points.append(f"{story_points.group(1)} story points")

        keys = list(dict.fromkeys(_ISSUE_KEY.findall(last)))
        if keys:
            if len(keys) <= MAX_LISTED_KEYS:
                points.append(f"Issues: {', '.join(keys)}")
            else:
                points.append(f"Issues: {', '.join(keys[:5])} and {len(keys) - 5} more")

        return "; ".join(points) if points else None


# ---------------------------------------------------------------------------
# ContinuityClassifier
# ---------------------------------------------------------------------------

CLASSIFY_PROMPT = (
    "You decide whether a new question continues the previous conversation "
    "or starts a new task.\n\n"
    "PREVIOUS CONVERSATION:\n{summary}\n\n"
    'NEW QUESTION: "{question}"\n\n'
    "A follow-up refers to the same data (e.g. 'which of those are done?', "
    "'and for Alice?'). A new task asks about different sprints, people or "
    "actions without referring back.\n"
    "Answer with one word: FRESH or CONTINUE"
)


def parse_label(text: str) -> Continuity:
    """Map a free-text model answer onto a decision; unclear means continuing."""
    answer = (text or "").strip().upper()
    if answer.startswith("FRESH") or answer.startswith("NEW"):
        return Continuity.FRESH
    return Continuity.CONTINUING


class ContinuityClassifier:
    """Asks the model whether the new question starts fresh."""

    def __init__(self, llm: Classifier, strategy: ContextStrategy | None = None) -> None:
        self._llm = llm
        self.strategy: ContextStrategy = strategy or RegexContextStrategy()

    async def classify(self, question: str, summary: str) -> Continuity:
        if not summary:
            return Continuity.CONTINUING
        try:
            label = await self._llm.classify(CLASSIFY_PROMPT.format(summary=summary, question=question))
        except Exception as e:
            logger.warning("Continuity classifier failed, assuming continuing: %s", e)
            return Continuity.CONTINUING
        decision = parse_label(label)
        logger.debug("Continuity: %s (raw=%r)", decision, label)
        return decision
