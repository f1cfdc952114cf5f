"""Tests for the notification factory."""

import pytest

from branchtale.exceptions import ErrorCode, NotificationValidationError, ValidationError
from branchtale.notifications.factory import (
    NOTIFICATION_CONFIGS,
    ActionType,
    HighlightKind,
    NotificationContext,
    NotificationFactory,
    NotificationType,
    badge_earned,
    chapter_upvote,
    collab_invitation,
    highlight,
    new_branch,
    new_follower,
    parse_context,
    strip_highlights,
)


class TestHighlight:
    """Tests for highlight markup helpers."""

    def test_wraps_text(self):
        """Test text is wrapped with its kind."""
        assert highlight("John", HighlightKind.ACTOR) == "[[actor:John]]"
        assert highlight("Quest", "story") == "[[story:Quest]]"

    def test_default_kind_is_actor(self):
        """Test actor is the default kind."""
        assert highlight("Ann") == "[[actor:Ann]]"

    def test_empty_text(self):
        """Test empty or missing text yields an empty string."""
        assert highlight("") == ""
        assert highlight(None, HighlightKind.STORY) == ""

    def test_strip(self):
        """Test markers are removed and their text kept."""
        text = "[[actor:Alice]] invited you to [[story:Quest]]"
        assert strip_highlights(text) == "Alice invited you to Quest"


class TestNotificationContext:
    """Tests for NotificationContext parsing."""

    def test_camel_case_keys(self):
        """Test camelCase keys populate snake_case fields."""
        ctx = NotificationContext.model_validate(
            {"actor": "Alice", "storyName": "Quest", "storySlug": "quest", "actorId": "U1"}
        )
        assert ctx.story_name == "Quest"
        assert ctx.story_slug == "quest"
        assert ctx.actor_id == "U1"

    def test_snake_case_keys(self):
        """Test snake_case keys are accepted too."""
        ctx = NotificationContext.model_validate({"story_name": "Quest", "pr_id": "42"})
        assert ctx.story_name == "Quest"
        assert ctx.pr_id == "42"

    def test_unknown_keys_ignored(self):
        """Test extra keys are dropped."""
        ctx = NotificationContext.model_validate({"actor": "Alice", "mood": "happy"})
        assert ctx.actor == "Alice"

    def test_frozen(self):
        """Test the context cannot be changed after construction."""
        ctx = NotificationContext(actor="Alice")
        with pytest.raises(Exception):
            ctx.actor = "Bob"


class TestConfigs:
    """Tests for the per-type configuration table."""

    def test_every_type_configured(self):
        """Test each notification type has exactly one config."""
        assert set(NOTIFICATION_CONFIGS) == set(NotificationType)
        assert len(NotificationType) == 17

    def test_required_fields_are_context_fields(self):
        """Test required fields all exist on the context model."""
        fields = set(NotificationContext.model_fields)
        for config in NOTIFICATION_CONFIGS.values():
            assert set(config.required) <= fields

    def test_helpers(self):
        """Test lookup helpers."""
        assert NotificationFactory.get_required_fields("NEW_FOLLOWER") == ["actor", "actor_id"]
        assert NotificationFactory.requires_action_url(NotificationType.BADGE_EARNED) is True
        assert NotificationFactory.is_supported("PR_MERGED") is True
        assert NotificationFactory.is_supported("PR_EXPLODED") is False
        assert NotificationFactory.get_supported_types() == list(NotificationType)


class TestBuild:
    """Tests for NotificationFactory.build."""

    def test_collab_invitation(self):
        """Test an invitation links to the collaborators page."""
        payload = NotificationFactory.build(
            "COLLAB_INVITATION",
            {"actor": "Alice", "storyName": "Quest", "storySlug": "quest", "role": "Editor"},
        )
        assert payload.type == NotificationType.COLLAB_INVITATION
        assert "[[actor:Alice]]" in payload.title
        assert payload.message == (
            "[[actor:Alice]] invited you to join [[story:Quest]] as [[role:Editor]]."
        )
        assert payload.action_url == "/story/quest/collaborators"

    def test_missing_fields_for_follower(self):
        """Test an empty follower context names the first missing field."""
        with pytest.raises(NotificationValidationError) as exc_info:
            NotificationFactory.build("NEW_FOLLOWER", {})

        error = exc_info.value
        assert isinstance(error, ValidationError)
        assert error.field == "actor"
        assert error.code == ErrorCode.VALIDATION_FAILED
        assert error.message == "Actor is required for NEW_FOLLOWER notification"
        assert error.details["missing_fields"] == ["actor", "actor_id"]
        assert error.details["notification_type"] == "NEW_FOLLOWER"

    def test_wrong_value_type(self):
        """Test a non-string context value raises a domain ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            NotificationFactory.build("NEW_FOLLOWER", {"actor": "Bob", "actorId": 42})

        error = exc_info.value
        assert error.code == ErrorCode.INVALID_INPUT
        assert error.details["errors"][0]["field"] == "actorId"

    def test_parse_context_passes_models_through(self):
        """Test an already built context is returned unchanged."""
        ctx = NotificationContext(actor="Bob")
        assert parse_context(ctx) is ctx
        assert parse_context({"storyName": "Quest"}).story_name == "Quest"

    def test_field_specific_code(self):
        """Test the error code follows the missing field."""
        with pytest.raises(NotificationValidationError) as exc_info:
            NotificationFactory.build("NEW_FOLLOWER", {"actor": "Bob"})
        assert exc_info.value.field == "actor_id"
        assert exc_info.value.code == ErrorCode.USER_ID_REQUIRED

    def test_unknown_type(self):
        """Test unknown types are a validation error."""
        with pytest.raises(ValidationError) as exc_info:
            NotificationFactory.build("PR_EXPLODED", {"actor": "Bob"})
        assert exc_info.value.code == ErrorCode.UNKNOWN_NOTIFICATION_TYPE

    def test_deterministic(self):
        """Test the same input always gives the same payload."""
        ctx = {"actor": "Alice", "storyName": "Quest", "pr": "Fix typo", "prId": "7", "storySlug": "quest"}
        first = NotificationFactory.build("PR_MERGED", ctx)
        second = NotificationFactory.build("PR_MERGED", ctx)
        assert first == second
        assert first.action_url == "/story/quest/pr/7"

    def test_slug_preferred_over_id(self):
        """Test story slugs win over story ids in links."""
        payload = NotificationFactory.build(
            "NEW_BRANCH",
            NotificationContext(actor="Ann", story_name="Quest", story_id="s-1", story_slug="quest"),
        )
        assert payload.action_url == "/story/quest"

    def test_falls_back_to_id(self):
        """Test the story id is used when no slug is given."""
        payload = NotificationFactory.build(
            "NEW_BRANCH", NotificationContext(actor="Ann", story_name="Quest", story_id="s-1")
        )
        assert payload.action_url == "/story/s-1"

    def test_missing_identifiers_give_no_url(self):
        """Test a link needing absent identifiers resolves to None."""
        payload = NotificationFactory.build(
            "PR_REJECTED", NotificationContext(actor="Bob", pr="Fix typo")
        )
        assert payload.action_url is None

    def test_every_type_builds_with_full_context(self):
        """Test each type renders once its required fields are present."""
        full = NotificationContext(
            actor="Alice",
            story_name="Quest",
            chapter_name="Dawn",
            pr="Fix typo",
            comment="Nice!",
            badge="Storyteller",
            role="reviewer",
            actor_id="U1",
            story_slug="quest",
            chapter_slug="dawn",
            pr_id="7",
            comment_id="c-1",
        )
        for notification_type in NotificationType:
            payload = NotificationFactory.build(notification_type, full)
            assert payload.title
            assert payload.message
            assert payload.action_url is not None


class TestValidate:
    """Tests for NotificationFactory.validate."""

    def test_valid(self):
        """Test a complete context validates."""
        result = NotificationFactory.validate("BADGE_EARNED", {"badge": "Storyteller"})
        assert result.is_valid is True
        assert result.errors == []

    def test_lists_every_missing_field(self):
        """Test all missing fields are reported in order."""
        result = NotificationFactory.validate("PR_OPENED", {"pr": "Fix typo"})
        assert result.is_valid is False
        assert [e.field for e in result.errors] == ["actor", "story_name"]
        assert result.errors[1].code == ErrorCode.STORY_SLUG_REQUIRED
        assert result.errors[1].message == "Story name is required for PR_OPENED notification"

    def test_empty_string_is_missing(self):
        """Test empty strings count as missing."""
        result = NotificationFactory.validate("BADGE_EARNED", {"badge": ""})
        assert result.is_valid is False

    def test_unknown_type(self):
        """Test unknown types fail validation without raising."""
        result = NotificationFactory.validate("NOPE", {})
        assert result.is_valid is False
        assert result.errors[0].field == "type"
        assert result.errors[0].code == ErrorCode.UNKNOWN_NOTIFICATION_TYPE

    def test_wrong_value_type(self):
        """Test a non-string context value fails validation without raising."""
        result = NotificationFactory.validate("NEW_FOLLOWER", {"actor": "Bob", "actorId": 42})
        assert result.is_valid is False
        assert [e.field for e in result.errors] == ["actorId"]
        assert result.errors[0].code == ErrorCode.INVALID_INPUT
        assert "string" in result.errors[0].message


class TestConvenienceBuilders:
    """Tests for the convenience builders."""

    def test_collab_invitation(self):
        """Test the invitation builder."""
        payload = collab_invitation("Alice", "Quest", "quest", "reviewer")
        assert payload.type == NotificationType.COLLAB_INVITATION
        assert payload.action_url == "/story/quest/collaborators"

    def test_new_follower(self):
        """Test the follower builder links to the follower's profile."""
        payload = new_follower("Bob", "U2")
        assert payload.title == "[[actor:Bob]] started following you"
        assert payload.action_url == "/user/U2"

    def test_new_branch(self):
        """Test the branch builder links to the story."""
        assert new_branch("Ann", "Quest", "quest").action_url == "/story/quest"

    def test_chapter_upvote(self):
        """Test the upvote builder links to the chapter."""
        payload = chapter_upvote("Ann", "Dawn", "quest", "dawn")
        assert payload.action_url == "/story/quest/chapter/dawn"
        assert "[[chapter:Dawn]]" in payload.message

    def test_badge_earned(self):
        """Test the badge builder links to the badge page."""
        payload = badge_earned("Storyteller")
        assert payload.action_url == "/profile/badges"
        assert payload.message == "You've earned the [[badge:Storyteller]] badge!"

    def test_action_types_cover_resolvers(self):
        """Test every action type used by a config has a link kind."""
        used = {config.action for config in NOTIFICATION_CONFIGS.values()}
        assert used <= set(ActionType)
