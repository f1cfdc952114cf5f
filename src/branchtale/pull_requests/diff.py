"""Computes the change payload stored on a pull request."""

import difflib

from branchtale.domain.models import PRChanges, PRType


def _split(text: str) -> list[str]:
    return text.splitlines()


def unified_diff(original: str, proposed: str) -> str:
    """Unified line diff from ``original`` to ``proposed``."""
    return "\n".join(
        difflib.unified_diff(
            _split(original),
            _split(proposed),
            fromfile="chapter (original)",
            tofile="chapter (proposed)",
            lineterm="",
        )
    )


def diff_stats(original: str, proposed: str) -> tuple[int, int, int]:
    """Count lines touched by the change.

    Returns:
        (line_count, additions_count, deletions_count), where line_count
        covers unchanged, added and removed lines alike
    """
    matcher = difflib.SequenceMatcher(None, _split(original), _split(proposed), autojunk=False)
    unchanged = additions = deletions = 0
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            unchanged += i2 - i1
        if tag in ("replace", "delete"):
            deletions += i2 - i1
        if tag in ("replace", "insert"):
            additions += j2 - j1
    return unchanged + additions + deletions, additions, deletions


def resolve_changes(
    pr_type: PRType | str,
    proposed: str,
    original: str | None = None,
) -> PRChanges:
    """Build the change payload for a pull request.

    Args:
        pr_type: Kind of pull request
        proposed: Submitted content (ignored for deletions)
        original: Current chapter content for edits and deletions

    Returns:
        PRChanges; new chapters carry no original and no diff
    """
    pr_type = PRType(pr_type)

    if pr_type == PRType.NEW_CHAPTER:
        return PRChanges(proposed=proposed)

    original = original or ""
    if pr_type == PRType.DELETE_CHAPTER:
        proposed = ""

    line_count, additions, deletions = diff_stats(original, proposed)
    return PRChanges(
        proposed=proposed,
        original=original,
        diff=unified_diff(original, proposed),
        line_count=line_count,
        additions_count=additions,
        deletions_count=deletions,
    )


def apply_changes(changes: PRChanges) -> str:
    """Content of the chapter once the change is merged."""
    return changes.proposed
