"""Tests for AnswerReviewer -- filter/facts auditors and the mutation audit.

MockReviewModel returns scripted answers in order and records prompts.
"""

from sprintwise.api.models import AuditContext
from sprintwise.handlers.reviewer import (
    AnswerReviewer,
    build_activity_facts_sheet,
    build_assignee_map,
    build_facts_sheet,
    build_proposed_action,
)


class MockReviewModel:
    def __init__(self, *answers, error: Exception | None = None) -> None:
        self.answers = list(answers)
        self.error = error
        self.calls: list[tuple[str, int | None]] = []

    async def review(self, prompt: str, max_tokens: int | None = None) -> str:
        self.calls.append((prompt, max_tokens))
        if self.error is not None:
            raise self.error
        return self.answers.pop(0)


ISSUES = [
    {"key": "APP-1", "assignee": "alice@corp.com", "points": 5, "summary": "Login page"},
    {"key": "APP-2", "assignee": "bob@corp.com", "points": 3, "summary": "Signup"},
    {"key": "APP-3", "assignee": "alice@corp.com", "points": 2, "summary": "Logout"},
]


def _sprint_ctx(**overrides) -> AuditContext:
    ctx = AuditContext(
        user_question="How many points does Alice have in sprint 4?",
        tool_used="get_sprint_issues",
        applied_filters={"assignees": ["alice"], "sprint_ids": [4521], "status_filters": None},
        issue_count=3,
        total_points=10,
        issues=ISSUES,
        sprint_name="APP Sprint 4",
    )
    for key, value in overrides.items():
        setattr(ctx, key, value)
    return ctx


# ---------------------------------------------------------------------------
# Facts sheets
# ---------------------------------------------------------------------------


class TestFactsSheets:
    def test_assignee_map(self):
        assert build_assignee_map(ISSUES) == {"alice": "alice@corp.com", "bob": "bob@corp.com"}

    def test_facts_sheet(self):
        sheet = build_facts_sheet(ISSUES, 10)
        assert "Total: 3 tasks, 10 pts" in sheet
        assert "alice: 2 tasks, 7 pts\nbob: 1 tasks, 3 pts" in sheet
        assert "VALID ISSUES:\nAPP-1, APP-2, APP-3" in sheet
        assert 'APP-2: "Signup" (bob, 3 pts)' in sheet

    def test_activity_sheet(self):
        changes = [
            {"issue_key": "A-1", "field": "status", "to": "Done", "changed_by": "Alice Smith"},
            {"issue_key": "A-1", "field": "status", "to": "In Review", "changed_by": "Alice Smith"},
            {"issue_key": "A-2", "field": "assignee", "to": "bob", "changed_by": "Bob Jones"},
        ]
        sheet = build_activity_facts_sheet(changes, 3, {"since": "2024-01-01", "until": "2024-01-07"})
        assert "Period: 2024-01-01 to 2024-01-07" in sheet
        assert "Total: 3 changes across 2 issues" in sheet
        assert "→ Done: 1" in sheet
        assert "Alice: 2 changes" in sheet
        assert "AFFECTED ISSUES:\nA-1, A-2" in sheet

    def test_proposed_create(self):
        text = build_proposed_action("create_issues", {
            "issues": [{"summary": f"Task {n}", "assignee": "alice"} for n in range(7)],
        })
        assert "Count: 7 issue(s)" in text
        assert "Assignee: alice" in text
        assert "Summaries (first 5 of 7):" in text
        assert "  5. Task 4" in text
        assert "Task 5" not in text

    def test_proposed_update(self):
        text = build_proposed_action("update_issues", {
            "issues": [{"issue_key": "A-1", "status": "Done", "story_points": 3.0}, {"issue_key": "A-2"}],
        })
        assert "Keys: A-1, A-2" in text
        assert "Changes: status: Done, points: 3" in text


# ---------------------------------------------------------------------------
# review
# ---------------------------------------------------------------------------


class TestReview:
    async def test_no_data_skipped(self):
        model = MockReviewModel()
        verdict = await AnswerReviewer(model).review("Hello!", AuditContext(user_question="hi"))
        assert verdict.passed and verdict.skipped
        assert model.calls == []

    async def test_both_auditors_pass(self):
        model = MockReviewModel("YES", "PASS")
        verdict = await AnswerReviewer(model).review("Alice has 7 points.", _sprint_ctx())

        assert verdict.passed
        assert not verdict.skipped
        assert verdict.reason.startswith("✓ Verified. 3 issues. 10 pts. Sprint: APP Sprint 4")
        assert verdict.summary == "3 issues, 10 pts"
        assert model.calls[0][1] == 40
        assert "alice (alice@corp.com)" in model.calls[0][0]
        assert "Alice has 7 points." in model.calls[1][0]

    async def test_filter_failure_stops_early(self):
        model = MockReviewModel("NO: missing status filter")
        verdict = await AnswerReviewer(model).review("answer", _sprint_ctx())

        assert not verdict.passed
        assert verdict.summary == "Missing filter"
        assert verdict.reason.startswith("⚠ MISSING STATUS FILTER. 3 issues")
        assert len(model.calls) == 1

    async def test_facts_failure(self):
        model = MockReviewModel("YES", "FAIL: total is 10 not 12")
        verdict = await AnswerReviewer(model).review("12 points", _sprint_ctx())
        assert not verdict.passed
        assert verdict.reason.startswith("⚠ TOTAL IS 10 NOT 12.")
        assert verdict.summary == "3 issues, 10 pts"

    async def test_model_error_degrades_to_skipped(self):
        model = MockReviewModel(error=RuntimeError("timeout"))
        verdict = await AnswerReviewer(model).review("answer", _sprint_ctx())
        assert verdict.passed
        assert verdict.skipped
        assert verdict.reason == "Skipped (error)"

    async def test_facts_only_without_filters(self):
        model = MockReviewModel("PASS")
        verdict = await AnswerReviewer(model).review("answer", _sprint_ctx(applied_filters=None))
        assert verdict.passed
        assert len(model.calls) == 1

    async def test_activity_summary(self):
        ctx = AuditContext(
            user_question="what changed?",
            tool_used="get_activity",
            activity_changes=[{"issue_key": "A-1", "field": "status", "to": "Done"}],
            change_count=1,
            activity_period={"since": "2024-01-01", "until": "2024-01-07"},
        )
        model = MockReviewModel("PASS")
        verdict = await AnswerReviewer(model).review("One change.", ctx)
        assert verdict.passed
        assert verdict.summary == "1 changes"
        assert verdict.to_dict()["pass"] is True


class TestAuditMutation:
    async def test_yes(self):
        model = MockReviewModel("YES")
        verdict = await AnswerReviewer(model).audit_mutation(
            "create two issues", "create_issues", {"issues": [{"summary": "A"}, {"summary": "B"}]}
        )
        assert verdict.passed
        assert verdict.reason == "Arguments match request"
        assert 'User requested: "create two issues"' in model.calls[0][0]

    async def test_no_with_reason(self):
        model = MockReviewModel("NO: count mismatch (3 requested, 2 proposed)")
        verdict = await AnswerReviewer(model).audit_mutation("create three", "create_issues", {"issues": []})
        assert not verdict.passed
        assert verdict.reason == "COUNT MISMATCH (3 REQUESTED, 2 PROPOSED)"

    async def test_error_is_skipped_pass(self):
        model = MockReviewModel(error=RuntimeError("down"))
        verdict = await AnswerReviewer(model).audit_mutation("x", "update_issues", {"issues": []})
        assert verdict.passed
        assert verdict.skipped
