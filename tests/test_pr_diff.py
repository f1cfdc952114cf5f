"""Tests for pull request change payloads and request models."""

import pytest

from branchtale.domain.models import PRLabel, PRType
from branchtale.exceptions import ErrorCode, ValidationError
from branchtale.pull_requests.diff import apply_changes, diff_stats, resolve_changes, unified_diff
from branchtale.pull_requests.models import PullRequestCreate


class TestDiffStats:
    """Tests for diff_stats."""

    def test_identical(self):
        """Test identical text has no additions or deletions."""
        assert diff_stats("a\nb", "a\nb") == (2, 0, 0)

    def test_replace_line(self):
        """Test a replaced line counts as one deletion and one addition."""
        assert diff_stats("a\nb\nc", "a\nB\nc") == (4, 1, 1)

    def test_append(self):
        """Test appended lines are additions."""
        assert diff_stats("a", "a\nb\nc") == (3, 2, 0)

    def test_full_removal(self):
        """Test removing everything deletes every line."""
        assert diff_stats("a\nb", "") == (2, 0, 2)


class TestUnifiedDiff:
    """Tests for unified_diff."""

    def test_headers_and_hunks(self):
        """Test the diff names both sides and marks changed lines."""
        diff = unified_diff("one\ntwo", "one\n2")
        lines = diff.splitlines()
        assert lines[0] == "--- chapter (original)"
        assert lines[1] == "+++ chapter (proposed)"
        assert "-two" in lines
        assert "+2" in lines

    def test_no_change(self):
        """Test identical content produces an empty diff."""
        assert unified_diff("same", "same") == ""


class TestResolveChanges:
    """Tests for resolve_changes."""

    def test_new_chapter(self):
        """Test new chapters carry only the proposed text."""
        changes = resolve_changes(PRType.NEW_CHAPTER, "Fresh text")
        assert changes.proposed == "Fresh text"
        assert changes.original is None
        assert changes.diff is None
        assert changes.line_count is None

    def test_edit_chapter(self):
        """Test edits keep the original and a diff."""
        changes = resolve_changes("edit_chapter", "The road was short.", "The road was long.")
        assert changes.original == "The road was long."
        assert changes.proposed == "The road was short."
        assert "+The road was short." in changes.diff
        assert changes.additions_count == 1
        assert changes.deletions_count == 1
        assert changes.line_count == 2

    def test_delete_chapter_ignores_proposed(self):
        """Test deletions always propose empty content."""
        changes = resolve_changes(PRType.DELETE_CHAPTER, "ignored", "line 1\nline 2")
        assert changes.proposed == ""
        assert changes.original == "line 1\nline 2"
        assert changes.deletions_count == 2
        assert changes.additions_count == 0

    def test_deterministic(self):
        """Test the same input gives the same payload."""
        first = resolve_changes("edit_chapter", "b", "a")
        second = resolve_changes("edit_chapter", "b", "a")
        assert first == second

    def test_apply_changes(self):
        """Test merging takes the proposed content."""
        assert apply_changes(resolve_changes("edit_chapter", "new", "old")) == "new"
        assert apply_changes(resolve_changes("delete_chapter", "", "old")) == ""


class TestPullRequestCreate:
    """Tests for the PullRequestCreate request model."""

    def base(self, **overrides):
        data = {
            "author_id": "U1",
            "story_slug": "quest",
            "pr_type": "edit_chapter",
            "title": "Fix typo",
            "chapter_slug": "dawn",
            "proposed_content": "Better text",
        }
        data.update(overrides)
        return data

    def test_valid_edit(self):
        """Test a complete edit request parses."""
        dto = PullRequestCreate.parse(self.base(labels=["grammar"]))
        assert dto.pr_type == PRType.EDIT_CHAPTER
        assert dto.labels == [PRLabel.GRAMMAR]

    def test_strips_whitespace(self):
        """Test string fields are trimmed."""
        dto = PullRequestCreate.parse(self.base(title="  Fix typo  "))
        assert dto.title == "Fix typo"

    def test_new_chapter_generates_slug(self):
        """Test a new chapter without a slug gets one from the title."""
        dto = PullRequestCreate.parse(
            self.base(pr_type="new_chapter", chapter_slug=None, parent_chapter_slug="dawn")
        )
        assert dto.chapter_slug.startswith("fix-typo-")

    def test_new_chapter_needs_parent(self):
        """Test a new chapter without a parent is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            PullRequestCreate.parse(self.base(pr_type="new_chapter"))
        assert exc_info.value.code == ErrorCode.INVALID_INPUT

    def test_edit_needs_chapter(self):
        """Test edits must name their target chapter."""
        with pytest.raises(ValidationError):
            PullRequestCreate.parse(self.base(chapter_slug=None))

    def test_edit_needs_content(self):
        """Test edits must propose content."""
        with pytest.raises(ValidationError):
            PullRequestCreate.parse(self.base(proposed_content=""))

    def test_delete_clears_content(self):
        """Test delete requests drop any proposed content."""
        dto = PullRequestCreate.parse(self.base(pr_type="delete_chapter"))
        assert dto.proposed_content == ""

    def test_title_too_long(self):
        """Test overlong titles are reported per field."""
        with pytest.raises(ValidationError) as exc_info:
            PullRequestCreate.parse(self.base(title="x" * 201))
        fields = [e["field"] for e in exc_info.value.details["errors"]]
        assert "title" in fields

    def test_unknown_type(self):
        """Test an unknown PR type is invalid input."""
        with pytest.raises(ValidationError):
            PullRequestCreate.parse(self.base(pr_type="rename_chapter"))

    def test_model_passthrough(self):
        """Test an already-parsed model is returned as is."""
        dto = PullRequestCreate.parse(self.base())
        assert PullRequestCreate.parse(dto) is dto
