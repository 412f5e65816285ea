"""Cognitive helpers for the agent loop.

Decides whether a new question continues the prior data context.
"""

from sprintwise.cognitive.continuity import (
    CLASSIFY_PROMPT,
    Continuity,
    ContextStrategy,
    ContinuityClassifier,
    RegexContextStrategy,
    parse_label,
)

__all__ = [
    "CLASSIFY_PROMPT",
    "Continuity",
    "ContextStrategy",
    "ContinuityClassifier",
    "RegexContextStrategy",
    "parse_label",
]
