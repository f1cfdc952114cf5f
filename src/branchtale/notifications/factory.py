"""Builds typed notification payloads from a notification type and a context.

Each ``NotificationType`` has exactly one ``NotificationTypeConfig`` holding
the context fields it needs, the kind of deep link it points to and a
template producing its title and message. Names in the text are wrapped in
highlight markers (``[[actor:Alice]]``) that clients turn into styling.

Everything here is pure: the same type and context always give the same
payload.
"""

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from branchtale.exceptions import ErrorCode, NotificationValidationError, ValidationError


class NotificationType(str, Enum):
    """Every notification the platform can send."""

    NEW_BRANCH = "NEW_BRANCH"
    CHAPTER_UPVOTE = "CHAPTER_UPVOTE"
    STORY_MILESTONE = "STORY_MILESTONE"
    STORY_CONTINUED = "STORY_CONTINUED"
    PR_OPENED = "PR_OPENED"
    PR_APPROVED = "PR_APPROVED"
    PR_REJECTED = "PR_REJECTED"
    PR_MERGED = "PR_MERGED"
    PR_COMMENTED = "PR_COMMENTED"
    COMMENT_REPLY = "COMMENT_REPLY"
    COMMENT_MENTION = "COMMENT_MENTION"
    MENTION = "MENTION"
    NEW_FOLLOWER = "NEW_FOLLOWER"
    BADGE_EARNED = "BADGE_EARNED"
    COLLAB_INVITATION = "COLLAB_INVITATION"
    COLLAB_INVITATION_APPROVED = "COLLAB_INVITATION_APPROVED"
    COLLAB_INVITATION_REJECTED = "COLLAB_INVITATION_REJECTED"


class HighlightKind(str, Enum):
    """Semantic styles a highlighted span can carry."""

    ACTOR = "actor"
    STORY = "story"
    CHAPTER = "chapter"
    PR = "pr"
    COMMENT = "comment"
    ROLE = "role"
    BADGE = "badge"


class ActionType(str, Enum):
    """Kinds of deep link a notification can point to."""

    STORY = "story"
    CHAPTER = "chapter"
    PR = "pr"
    COMMENT = "comment"
    USER = "user"
    BADGES = "badges"
    COLLABORATORS = "collaborators"


class NotificationContext(BaseModel):
    """Display names and identifiers used to fill a notification.

    Accepts snake_case field names as well as camelCase keys
    (``storyName``, ``actorId``).
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    # Display names
    actor: str | None = None
    story_name: str | None = None
    chapter_name: str | None = None
    pr: str | None = None
    comment: str | None = None
    badge: str | None = None
    role: str | None = None

    # Identifiers for deep links
    actor_id: str | None = None
    story_id: str | None = None
    story_slug: str | None = None
    chapter_id: str | None = None
    chapter_slug: str | None = None
    pr_id: str | None = None
    comment_id: str | None = None


@dataclass(frozen=True)
class NotificationPayload:
    """A rendered notification."""

    type: NotificationType
    title: str
    message: str
    action_url: str | None


@dataclass(frozen=True)
class FieldError:
    field: str
    code: ErrorCode
    message: str


@dataclass
class ValidationResult:
    """Outcome of checking a context against a type's required fields."""

    is_valid: bool
    errors: list[FieldError] = field(default_factory=list)


@dataclass(frozen=True)
class NotificationTypeConfig:
    """Required fields, link kind and template for one notification type."""

    required: tuple[str, ...]
    action: ActionType | None
    template: Callable[[NotificationContext], tuple[str, str]]


# =============================================================================
# Highlight markup
# =============================================================================

HIGHLIGHT_PATTERN = re.compile(r"\[\[(\w+):(.*?)\]\]")


def highlight(text: str | None, kind: HighlightKind | str = HighlightKind.ACTOR) -> str:
    """Wrap text in a highlight marker; empty text yields an empty string.

    >>> highlight("John", "actor")
    '[[actor:John]]'
    """
    if not text:
        return ""
    kind_value = kind.value if isinstance(kind, HighlightKind) else kind
    return f"[[{kind_value}:{text}]]"


def strip_highlights(text: str) -> str:
    """Remove highlight markers, keeping the wrapped text."""
    return HIGHLIGHT_PATTERN.sub(r"\2", text)


# =============================================================================
# URL resolvers
# =============================================================================


def _story_ref(ctx: NotificationContext) -> str | None:
    return ctx.story_slug or ctx.story_id


def _story_url(ctx: NotificationContext) -> str | None:
    story = _story_ref(ctx)
    return f"/story/{story}" if story else None


def _chapter_url(ctx: NotificationContext) -> str | None:
    story = _story_ref(ctx)
    chapter = ctx.chapter_slug or ctx.chapter_id
    if story and chapter:
        return f"/story/{story}/chapter/{chapter}"
    return None


def _pr_url(ctx: NotificationContext) -> str | None:
    story = _story_ref(ctx)
    if story and ctx.pr_id:
        return f"/story/{story}/pr/{ctx.pr_id}"
    return None


def _comment_url(ctx: NotificationContext) -> str | None:
    return f"/comment/{ctx.comment_id}" if ctx.comment_id else None


def _user_url(ctx: NotificationContext) -> str | None:
    return f"/user/{ctx.actor_id}" if ctx.actor_id else None


def _badges_url(ctx: NotificationContext) -> str | None:
    return "/profile/badges"


def _collaborators_url(ctx: NotificationContext) -> str | None:
    story = _story_ref(ctx)
    return f"/story/{story}/collaborators" if story else None


URL_RESOLVERS: Mapping[ActionType, Callable[[NotificationContext], str | None]] = MappingProxyType(
    {
        ActionType.STORY: _story_url,
        ActionType.CHAPTER: _chapter_url,
        ActionType.PR: _pr_url,
        ActionType.COMMENT: _comment_url,
        ActionType.USER: _user_url,
        ActionType.BADGES: _badges_url,
        ActionType.COLLABORATORS: _collaborators_url,
    }
)


# =============================================================================
# Per-type configuration
# =============================================================================

HK = HighlightKind

NOTIFICATION_CONFIGS: Mapping[NotificationType, NotificationTypeConfig] = MappingProxyType(
    {
        NotificationType.NEW_BRANCH: NotificationTypeConfig(
            required=("actor", "story_name"),
            action=ActionType.STORY,
            template=lambda c: (
                f"{highlight(c.actor, HK.ACTOR)} created a new branch",
                f"{highlight(c.actor, HK.ACTOR)} added a new branch to "
                f"{highlight(c.story_name, HK.STORY)}.",
            ),
        ),
        NotificationType.CHAPTER_UPVOTE: NotificationTypeConfig(
            required=("actor", "chapter_name"),
            action=ActionType.CHAPTER,
            template=lambda c: (
                "Your chapter received an upvote",
                f"{highlight(c.actor, HK.ACTOR)} upvoted your chapter "
                f"{highlight(c.chapter_name, HK.CHAPTER)}.",
            ),
        ),
        NotificationType.STORY_MILESTONE: NotificationTypeConfig(
            required=("story_name",),
            action=ActionType.STORY,
            template=lambda c: (
                "Your story reached a new milestone",
                f"{highlight(c.story_name, HK.STORY)} has hit a new milestone! Keep it going.",
            ),
        ),
        NotificationType.STORY_CONTINUED: NotificationTypeConfig(
            required=("actor", "story_name"),
            action=ActionType.CHAPTER,
            template=lambda c: (
                f"{highlight(c.actor, HK.ACTOR)} continued your story",
                f"{highlight(c.actor, HK.ACTOR)} added a new chapter to "
                f"{highlight(c.story_name, HK.STORY)}.",
            ),
        ),
        NotificationType.PR_OPENED: NotificationTypeConfig(
            required=("actor", "story_name", "pr"),
            action=ActionType.PR,
            template=lambda c: (
                f"{highlight(c.actor, HK.ACTOR)} opened a pull request",
                f"{highlight(c.actor, HK.ACTOR)} created a pull request "
                f"{highlight(c.pr, HK.PR)} on {highlight(c.story_name, HK.STORY)}.",
            ),
        ),
        NotificationType.PR_APPROVED: NotificationTypeConfig(
            required=("actor", "story_name", "pr"),
            action=ActionType.PR,
            template=lambda c: (
                "Your pull request was approved",
                f"{highlight(c.actor, HK.ACTOR)} approved your pull request "
                f"{highlight(c.pr, HK.PR)} in {highlight(c.story_name, HK.STORY)}.",
            ),
        ),
        NotificationType.PR_REJECTED: NotificationTypeConfig(
            required=("actor", "pr"),
            action=ActionType.PR,
            template=lambda c: (
                "Your pull request was rejected",
                f"{highlight(c.actor, HK.ACTOR)} requested changes on {highlight(c.pr, HK.PR)}.",
            ),
        ),
        NotificationType.PR_MERGED: NotificationTypeConfig(
            required=("actor", "story_name", "pr"),
            action=ActionType.PR,
            template=lambda c: (
                "Your pull request was merged",
                f"{highlight(c.actor, HK.ACTOR)} merged {highlight(c.pr, HK.PR)} into "
                f"{highlight(c.story_name, HK.STORY)}.",
            ),
        ),
        NotificationType.PR_COMMENTED: NotificationTypeConfig(
            required=("actor", "pr"),
            action=ActionType.PR,
            template=lambda c: (
                "New comment on pull request",
                f"{highlight(c.actor, HK.ACTOR)} commented on {highlight(c.pr, HK.PR)}.",
            ),
        ),
        NotificationType.COMMENT_REPLY: NotificationTypeConfig(
            required=("actor", "comment"),
            action=ActionType.COMMENT,
            template=lambda c: (
                f"{highlight(c.actor, HK.ACTOR)} replied to your comment",
                f"{highlight(c.actor, HK.ACTOR)} replied: {highlight(c.comment, HK.COMMENT)}.",
            ),
        ),
        NotificationType.COMMENT_MENTION: NotificationTypeConfig(
            required=("actor", "story_name"),
            action=ActionType.COMMENT,
            template=lambda c: (
                f"{highlight(c.actor, HK.ACTOR)} mentioned you",
                f"{highlight(c.actor, HK.ACTOR)} mentioned you while discussing "
                f"{highlight(c.story_name, HK.STORY)}.",
            ),
        ),
        NotificationType.MENTION: NotificationTypeConfig(
            required=("actor", "story_name"),
            action=ActionType.STORY,
            template=lambda c: (
                f"{highlight(c.actor, HK.ACTOR)} mentioned you",
                f"{highlight(c.actor, HK.ACTOR)} mentioned you in a discussion.",
            ),
        ),
        NotificationType.NEW_FOLLOWER: NotificationTypeConfig(
            required=("actor", "actor_id"),
            action=ActionType.USER,
            template=lambda c: (
                f"{highlight(c.actor, HK.ACTOR)} started following you",
                f"{highlight(c.actor, HK.ACTOR)} is now following your work.",
            ),
        ),
        NotificationType.BADGE_EARNED: NotificationTypeConfig(
            required=("badge",),
            action=ActionType.BADGES,
            template=lambda c: (
                "You earned a new badge",
                f"You've earned the {highlight(c.badge, HK.BADGE)} badge!",
            ),
        ),
        NotificationType.COLLAB_INVITATION: NotificationTypeConfig(
            required=("actor", "story_name", "role"),
            action=ActionType.COLLABORATORS,
            template=lambda c: (
                f"{highlight(c.actor, HK.ACTOR)} invited you to collaborate",
                f"{highlight(c.actor, HK.ACTOR)} invited you to join "
                f"{highlight(c.story_name, HK.STORY)} as {highlight(c.role, HK.ROLE)}.",
            ),
        ),
        NotificationType.COLLAB_INVITATION_APPROVED: NotificationTypeConfig(
            required=("actor", "story_name"),
            action=ActionType.COLLABORATORS,
            template=lambda c: (
                "Collaboration accepted",
                f"{highlight(c.actor, HK.ACTOR)} accepted your collaboration request for "
                f"{highlight(c.story_name, HK.STORY)}.",
            ),
        ),
        NotificationType.COLLAB_INVITATION_REJECTED: NotificationTypeConfig(
            required=("actor", "story_name"),
            action=ActionType.COLLABORATORS,
            template=lambda c: (
                "Collaboration declined",
                f"{highlight(c.actor, HK.ACTOR)} declined your invitation for "
                f"{highlight(c.story_name, HK.STORY)}.",
            ),
        ),
    }
)

FIELD_ERROR_CODES: Mapping[str, ErrorCode] = MappingProxyType(
    {
        "actor": ErrorCode.VALIDATION_FAILED,
        "story_name": ErrorCode.STORY_SLUG_REQUIRED,
        "chapter_name": ErrorCode.CHAPTER_SLUG_REQUIRED,
        "pr": ErrorCode.VALIDATION_FAILED,
        "comment": ErrorCode.VALIDATION_FAILED,
        "badge": ErrorCode.VALIDATION_FAILED,
        "role": ErrorCode.ROLE_REQUIRED,
        "actor_id": ErrorCode.USER_ID_REQUIRED,
        "story_id": ErrorCode.STORY_SLUG_REQUIRED,
        "story_slug": ErrorCode.STORY_SLUG_REQUIRED,
        "chapter_id": ErrorCode.CHAPTER_SLUG_REQUIRED,
        "chapter_slug": ErrorCode.CHAPTER_SLUG_REQUIRED,
        "pr_id": ErrorCode.VALIDATION_FAILED,
        "comment_id": ErrorCode.VALIDATION_FAILED,
    }
)


def _check_configs() -> None:
    """Fail at import if a type lacks a config or requires an unknown field."""
    missing = [t.value for t in NotificationType if t not in NOTIFICATION_CONFIGS]
    if missing:
        raise RuntimeError(f"Notification types without a config: {', '.join(missing)}")

    known_fields = set(NotificationContext.model_fields)
    for notification_type, config in NOTIFICATION_CONFIGS.items():
        unknown = set(config.required) - known_fields
        if unknown:
            raise RuntimeError(
                f"{notification_type.value} requires unknown context fields: {sorted(unknown)}"
            )


_check_configs()


# =============================================================================
# Factory
# =============================================================================


def _format_field_name(name: str) -> str:
    return name.replace("_", " ").capitalize()


def parse_context(context: NotificationContext | Mapping[str, Any]) -> NotificationContext:
    """Validate a raw context mapping, reporting bad values as a ValidationError."""
    if isinstance(context, NotificationContext):
        return context
    try:
        return NotificationContext.model_validate(dict(context))
    except pydantic.ValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(
            "Invalid notification context",
            ErrorCode.INVALID_INPUT,
            {"errors": errors},
        ) from e


class NotificationFactory:
    """Builds and validates notification payloads."""

    @staticmethod
    def parse_type(notification_type: NotificationType | str) -> NotificationType:
        """Resolve a type name, raising ValidationError for unknown names."""
        try:
            return NotificationType(notification_type)
        except ValueError:
            raise ValidationError(
                f"Unknown notification type: {notification_type}",
                ErrorCode.UNKNOWN_NOTIFICATION_TYPE,
                {"type": str(notification_type)},
            ) from None

    @classmethod
    def validate(
        cls,
        notification_type: NotificationType | str,
        context: NotificationContext | Mapping[str, Any],
    ) -> ValidationResult:
        """Check a context against the type's required fields without building.

        Args:
            notification_type: Type to validate for
            context: NotificationContext or a mapping of its fields

        Returns:
            ValidationResult listing every missing field in declaration order
        """
        if not cls.is_supported(notification_type):
            return ValidationResult(
                is_valid=False,
                errors=[
                    FieldError(
                        field="type",
                        code=ErrorCode.UNKNOWN_NOTIFICATION_TYPE,
                        message=f"Unknown notification type: {notification_type}",
                    )
                ],
            )

        resolved = NotificationType(notification_type)
        try:
            ctx = parse_context(context)
        except ValidationError as e:
            return ValidationResult(
                is_valid=False,
                errors=[
                    FieldError(field=err["field"], code=e.code, message=err["message"])
                    for err in e.details["errors"]
                ],
            )
        errors = [
            FieldError(
                field=name,
                code=FIELD_ERROR_CODES.get(name, ErrorCode.MISSING_REQUIRED_FIELD),
                message=f"{_format_field_name(name)} is required for {resolved.value} notification",
            )
            for name in NOTIFICATION_CONFIGS[resolved].required
            if getattr(ctx, name) in (None, "")
        ]
        return ValidationResult(is_valid=not errors, errors=errors)

    @classmethod
    def build(
        cls,
        notification_type: NotificationType | str,
        context: NotificationContext | Mapping[str, Any],
    ) -> NotificationPayload:
        """Build a notification payload.

        Args:
            notification_type: Type of notification to build
            context: NotificationContext or a mapping of its fields

        Returns:
            NotificationPayload with title, message and action URL

        Raises:
            ValidationError: The type is unknown or a context value has the wrong type
            NotificationValidationError: A required field is missing; the error
                names the first missing field and carries its code
        """
        resolved = cls.parse_type(notification_type)
        ctx = parse_context(context)

        validation = cls.validate(resolved, ctx)
        if not validation.is_valid:
            first = validation.errors[0]
            raise NotificationValidationError(
                first.message,
                first.code,
                first.field,
                {
                    "notification_type": resolved.value,
                    "missing_fields": [e.field for e in validation.errors],
                },
            )

        config = NOTIFICATION_CONFIGS[resolved]
        title, message = config.template(ctx)
        action_url = URL_RESOLVERS[config.action](ctx) if config.action else None
        return NotificationPayload(
            type=resolved,
            title=title,
            message=message,
            action_url=action_url,
        )

    @staticmethod
    def requires_action_url(notification_type: NotificationType | str) -> bool:
        return NOTIFICATION_CONFIGS[NotificationType(notification_type)].action is not None

    @staticmethod
    def get_required_fields(notification_type: NotificationType | str) -> list[str]:
        return list(NOTIFICATION_CONFIGS[NotificationType(notification_type)].required)

    @staticmethod
    def get_supported_types() -> list[NotificationType]:
        return list(NOTIFICATION_CONFIGS)

    @staticmethod
    def is_supported(notification_type: NotificationType | str) -> bool:
        return notification_type in {t.value for t in NOTIFICATION_CONFIGS}

    highlight = staticmethod(highlight)


# =============================================================================
# Convenience builders
# =============================================================================


def collab_invitation(
    actor_name: str, story_name: str, story_slug: str, role: str
) -> NotificationPayload:
    return NotificationFactory.build(
        NotificationType.COLLAB_INVITATION,
        NotificationContext(
            actor=actor_name, story_name=story_name, story_slug=story_slug, role=role
        ),
    )


def new_follower(follower_name: str, follower_id: str) -> NotificationPayload:
    return NotificationFactory.build(
        NotificationType.NEW_FOLLOWER,
        NotificationContext(actor=follower_name, actor_id=follower_id),
    )


def new_branch(author_name: str, story_name: str, story_slug: str) -> NotificationPayload:
    return NotificationFactory.build(
        NotificationType.NEW_BRANCH,
        NotificationContext(actor=author_name, story_name=story_name, story_slug=story_slug),
    )


def chapter_upvote(
    voter_name: str, chapter_name: str, story_slug: str, chapter_slug: str
) -> NotificationPayload:
    return NotificationFactory.build(
        NotificationType.CHAPTER_UPVOTE,
        NotificationContext(
            actor=voter_name,
            chapter_name=chapter_name,
            story_slug=story_slug,
            chapter_slug=chapter_slug,
        ),
    )


def badge_earned(badge_name: str) -> NotificationPayload:
    return NotificationFactory.build(
        NotificationType.BADGE_EARNED, NotificationContext(badge=badge_name)
    )
