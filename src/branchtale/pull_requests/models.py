"""Request models for pull request operations."""

from collections.abc import Mapping
from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from branchtale.config import settings
from branchtale.domain.models import PRLabel, PRType, generate_slug
from branchtale.exceptions import ErrorCode, ValidationError


class PullRequestCreate(BaseModel):
    """Input for opening a pull request.

    For ``new_chapter`` requests ``chapter_slug`` is the slug the new chapter
    will take; it is generated from the title when omitted.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    author_id: str = Field(min_length=1)
    author_name: str | None = None
    story_slug: str = Field(min_length=1)
    pr_type: PRType
    title: str = Field(min_length=1)
    description: str | None = None
    chapter_slug: str | None = None
    parent_chapter_slug: str | None = None
    proposed_content: str = ""
    is_draft: bool = False
    labels: list[PRLabel] = Field(default_factory=list)
    auto_approve: bool = False

    @field_validator("title")
    @classmethod
    def check_title_length(cls, value: str) -> str:
        if len(value) > settings.PR_TITLE_MAX_LENGTH:
            raise ValueError(f"title must be at most {settings.PR_TITLE_MAX_LENGTH} characters")
        return value

    @field_validator("description")
    @classmethod
    def check_description_length(cls, value: str | None) -> str | None:
        if value and len(value) > settings.PR_DESCRIPTION_MAX_LENGTH:
            raise ValueError(
                f"description must be at most {settings.PR_DESCRIPTION_MAX_LENGTH} characters"
            )
        return value

    @field_validator("proposed_content")
    @classmethod
    def check_content_length(cls, value: str) -> str:
        if len(value) > settings.CONTENT_MAX_LENGTH:
            raise ValueError(f"content must be at most {settings.CONTENT_MAX_LENGTH} characters")
        return value

    @model_validator(mode="after")
    def check_targets(self) -> "PullRequestCreate":
        """Each PR type needs its own combination of slugs and content."""
        if self.pr_type == PRType.NEW_CHAPTER:
            if not self.parent_chapter_slug:
                raise ValueError("parent_chapter_slug is required for new_chapter")
            if not self.proposed_content:
                raise ValueError("proposed_content is required for new_chapter")
            if not self.chapter_slug:
                self.chapter_slug = generate_slug(self.title)
        else:
            if not self.chapter_slug:
                raise ValueError(f"chapter_slug is required for {self.pr_type.value}")
            if self.pr_type == PRType.EDIT_CHAPTER and not self.proposed_content:
                raise ValueError("proposed_content is required for edit_chapter")
            if self.pr_type == PRType.DELETE_CHAPTER:
                self.proposed_content = ""
        return self

    @classmethod
    def parse(cls, data: "PullRequestCreate | Mapping[str, Any]") -> "PullRequestCreate":
        """Validate raw input, reporting problems as a ValidationError."""
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(dict(data))
        except pydantic.ValidationError as e:
            errors = [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError(
                "Invalid pull request input",
                ErrorCode.INVALID_INPUT,
                {"errors": errors},
            ) from e
