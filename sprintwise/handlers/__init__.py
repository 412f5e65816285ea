"""Post-hoc handlers for agent output.

The reviewer checks finished answers and proposed mutations against the
data the turn actually used. All checks are advisory.
"""

from sprintwise.handlers.reviewer import AnswerReviewer

__all__ = ["AnswerReviewer"]
