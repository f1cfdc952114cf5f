"""Tests for the pure domain rules."""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from branchtale.domain.models import ChapterStatus, CollaboratorRole, PRStatus, StoryStatus
from branchtale.domain.rules import (
    PERMISSION_NAMES,
    ROLE_HIERARCHY,
    ROLE_PERMISSIONS,
    TERMINAL_PR_STATUSES,
    can_add_chapter_directly,
    can_add_root_chapter,
    can_edit_story,
    can_invite_collaborators,
    can_publish_story,
    can_role_create_pr,
    check_role_hierarchy,
    get_role_permissions,
    has_duplicate_open_pr,
    has_minimum_story_role,
    has_story_permission,
    is_chapter_author,
    is_terminal_pr_status,
    is_valid_chapter_transition,
    is_valid_pr_transition,
    is_valid_status_transition,
    must_use_pr_for_chapter_addition,
    qualifies_for_auto_approve,
    validate_publishing,
)


def make_story(**overrides):
    values = {
        "creator_id": "U1",
        "status": "draft",
        "title": "The Quest",
        "description": "A long journey into the unknown.",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


# =============================================================================
# Roles and permissions
# =============================================================================


class TestRolePermissions:
    """Tests for the role permission table."""

    def test_every_role_has_permissions(self):
        """Test each role maps to a capability set."""
        assert set(ROLE_PERMISSIONS) == set(CollaboratorRole)

    def test_owner_has_everything(self):
        """Test the owner holds every permission."""
        for name in PERMISSION_NAMES:
            assert has_story_permission(CollaboratorRole.OWNER, name) is True

    def test_co_author_cannot_delete_story_or_manage_members(self):
        """Test co-authors lack the owner-only permissions."""
        perms = get_role_permissions("co_author")
        assert perms.can_delete_story is False
        assert perms.can_remove_collaborators is False
        assert perms.can_change_permissions is False
        assert perms.can_merge_prs is True
        assert perms.can_invite_collaborators is True

    def test_moderator_reviews_but_cannot_invite(self):
        """Test moderators handle PRs and comments only."""
        assert has_story_permission("moderator", "can_approve_prs") is True
        assert has_story_permission("moderator", "can_merge_prs") is True
        assert has_story_permission("moderator", "can_invite_collaborators") is False
        assert has_story_permission("moderator", "can_edit_any_chapter") is False

    def test_reviewer_cannot_approve(self):
        """Test reviewers may review but not approve or reject."""
        assert has_story_permission("reviewer", "can_review_prs") is True
        assert has_story_permission("reviewer", "can_approve_prs") is False
        assert has_story_permission("reviewer", "can_reject_prs") is False

    def test_contributor_only_writes(self):
        """Test contributors may only write chapters."""
        perms = get_role_permissions(CollaboratorRole.CONTRIBUTOR)
        granted = {name for name in PERMISSION_NAMES if getattr(perms, name)}
        assert granted == {"can_write_chapters"}

    def test_none_and_unknown_grant_nothing(self):
        """Test missing roles and unknown names are denied."""
        assert has_story_permission(None, "can_write_chapters") is False
        assert has_story_permission("owner", "can_fly") is False
        assert has_story_permission("emperor", "can_write_chapters") is False

    def test_permissions_are_frozen(self):
        """Test the capability sets cannot be mutated."""
        with pytest.raises(AttributeError):
            ROLE_PERMISSIONS[CollaboratorRole.OWNER].can_delete_story = False

    def test_every_role_can_create_pr(self):
        """Test all roles can write, so all can open PRs."""
        for role in CollaboratorRole:
            assert can_role_create_pr(role) is True

    def test_can_invite(self):
        """Test only owners and co-authors can invite."""
        assert can_invite_collaborators("owner") is True
        assert can_invite_collaborators("co_author") is True
        assert can_invite_collaborators("moderator") is False


class TestRoleHierarchy:
    """Tests for role ordering."""

    def test_order(self):
        """Test contributor < reviewer < moderator < co_author < owner."""
        ordered = sorted(ROLE_HIERARCHY, key=ROLE_HIERARCHY.get)
        assert [r.value for r in ordered] == [
            "contributor",
            "reviewer",
            "moderator",
            "co_author",
            "owner",
        ]

    def test_minimum_role(self):
        """Test minimum role comparisons."""
        assert has_minimum_story_role("owner", "moderator") is True
        assert has_minimum_story_role("moderator", "moderator") is True
        assert has_minimum_story_role("reviewer", "moderator") is False

    def test_inviter_cannot_grant_higher_role(self):
        """Test invitations are capped at the inviter's own level."""
        assert check_role_hierarchy("co_author", "co_author") is True
        assert check_role_hierarchy("co_author", "owner") is False
        assert check_role_hierarchy("owner", "contributor") is True


# =============================================================================
# Status transitions
# =============================================================================


class TestStoryTransitions:
    """Tests for the story status table."""

    @pytest.mark.parametrize(
        "current,target,expected",
        [
            ("draft", "published", True),
            ("draft", "archived", True),
            ("draft", "deleted", True),
            ("published", "archived", True),
            ("published", "deleted", True),
            ("published", "draft", False),
            ("archived", "deleted", True),
            ("archived", "published", False),
            ("deleted", "draft", False),
            ("deleted", "published", False),
        ],
    )
    def test_table(self, current, target, expected):
        """Test each listed story transition."""
        assert is_valid_status_transition(current, target) is expected

    def test_deleted_is_final(self):
        """Test nothing leaves the deleted state."""
        for status in StoryStatus:
            assert is_valid_status_transition(StoryStatus.DELETED, status) is False


class TestChapterTransitions:
    """Tests for the chapter status table."""

    def test_draft(self):
        """Test drafts can be activated or deleted."""
        assert is_valid_chapter_transition("draft", "active") is True
        assert is_valid_chapter_transition("draft", "deleted") is True

    def test_active_only_to_deleted(self):
        """Test active chapters can only be deleted."""
        assert is_valid_chapter_transition("active", "deleted") is True
        assert is_valid_chapter_transition("active", "draft") is False

    def test_deleted_is_final(self):
        """Test deleted chapters cannot come back."""
        for status in ChapterStatus:
            assert is_valid_chapter_transition(ChapterStatus.DELETED, status) is False


class TestPullRequestTransitions:
    """Tests for the pull request status table."""

    def test_open(self):
        """Test open PRs can be approved, rejected or closed."""
        assert is_valid_pr_transition("open", "approved") is True
        assert is_valid_pr_transition("open", "rejected") is True
        assert is_valid_pr_transition("open", "closed") is True
        assert is_valid_pr_transition("open", "merged") is False

    def test_approved(self):
        """Test approved PRs can be merged or closed."""
        assert is_valid_pr_transition("approved", "merged") is True
        assert is_valid_pr_transition("approved", "closed") is True
        assert is_valid_pr_transition("approved", "rejected") is False

    def test_terminal_statuses(self):
        """Test rejected, closed and merged are terminal."""
        assert TERMINAL_PR_STATUSES == {PRStatus.REJECTED, PRStatus.CLOSED, PRStatus.MERGED}
        assert is_terminal_pr_status("merged") is True
        assert is_terminal_pr_status("open") is False
        for status in TERMINAL_PR_STATUSES:
            for target in PRStatus:
                assert is_valid_pr_transition(status, target) is False


# =============================================================================
# Ownership
# =============================================================================


class TestOwnership:
    """Tests for creator and author predicates."""

    def test_creator_predicates(self):
        """Test creator-only predicates."""
        story = make_story()
        assert can_edit_story(story, "U1") is True
        assert can_edit_story(story, "U2") is False
        assert can_add_root_chapter(story, "U1") is True
        assert can_add_root_chapter(story, "U2") is False
        assert can_add_chapter_directly(story, "U1") is True

    def test_non_creator_must_use_pr(self):
        """Test everyone but the creator goes through a PR."""
        story = make_story()
        assert must_use_pr_for_chapter_addition(story, "U2") is True
        assert must_use_pr_for_chapter_addition(story, "U1") is False

    def test_publish_requires_draft(self):
        """Test only draft stories can be published by the creator."""
        assert can_publish_story(make_story(), "U1") is True
        assert can_publish_story(make_story(status="published"), "U1") is False
        assert can_publish_story(make_story(), "U2") is False

    def test_is_chapter_author(self):
        """Test authorship is a plain equality check."""
        chapter = SimpleNamespace(author_id="U5")
        assert is_chapter_author(chapter, "U5") is True
        assert is_chapter_author(chapter, "U1") is False


class TestValidatePublishing:
    """Tests for validate_publishing."""

    def test_ready_story(self):
        """Test a complete draft story can be published."""
        result = validate_publishing(make_story(), "U1", chapter_count=1)
        assert result.can_publish is True
        assert result.errors == []

    def test_collects_every_error(self):
        """Test all failed checks are reported together."""
        story = make_story(status="published", title="Hi", description="short")
        result = validate_publishing(story, "U2", chapter_count=0)
        assert result.can_publish is False
        assert result.errors == [
            "Only the story creator can publish the story",
            "Story must be in draft status to be published",
            "Story must have at least one chapter before publishing",
            "Story must have a valid title (minimum 3 characters)",
            "Story must have a description (minimum 10 characters)",
        ]

    def test_missing_description(self):
        """Test a missing description blocks publishing."""
        result = validate_publishing(make_story(description=None), "U1", chapter_count=3)
        assert result.errors == ["Story must have a description (minimum 10 characters)"]


# =============================================================================
# Pull request predicates
# =============================================================================


class TestDuplicateOpenPr:
    """Tests for has_duplicate_open_pr."""

    def test_duplicate(self):
        """Test a chapter already targeted is a duplicate."""
        assert has_duplicate_open_pr("U1", "ch-1", ["ch-1", "ch-2"]) is True

    def test_not_duplicate(self):
        """Test a fresh chapter is not a duplicate."""
        assert has_duplicate_open_pr("U1", "ch-3", ["ch-1", "ch-2"]) is False
        assert has_duplicate_open_pr("U1", "ch-1", []) is False


class TestAutoApprove:
    """Tests for qualifies_for_auto_approve."""

    created = datetime(2024, 1, 1, 12, 0)

    def test_disabled(self):
        """Test nothing qualifies when auto-approve is off."""
        assert qualifies_for_auto_approve(False, 50, 10, self.created, self.created, 7) is False

    def test_below_threshold(self):
        """Test a low score does not qualify."""
        assert qualifies_for_auto_approve(True, 9, 10, self.created, self.created, 7) is False

    def test_at_threshold_within_window(self):
        """Test reaching the threshold inside the window qualifies."""
        now = self.created + timedelta(days=7)
        assert qualifies_for_auto_approve(True, 10, 10, self.created, now, 7) is True

    def test_outside_window(self):
        """Test votes after the window do not qualify."""
        now = self.created + timedelta(days=7, seconds=1)
        assert qualifies_for_auto_approve(True, 20, 10, self.created, now, 7) is False
