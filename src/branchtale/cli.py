"""CLI commands for Branchtale administration."""

import asyncio
import json
import logging
import re
import sys

import click

from branchtale.config import settings
from branchtale.exceptions import BranchtaleError


class SecretRedactingFilter(logging.Filter):
    """Filter to redact sensitive information from logs."""

    # Patterns for common secrets
    SECRET_PATTERNS = [
        (re.compile(r"xox[abposr]-[\w-]+"), "[REDACTED]"),
        (re.compile(r"(token[\s:=]+)[\w-]{20,}", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(password[\s:=]+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(secret[\s:=]+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(bearer\s+)[\w-]+", re.IGNORECASE), r"\1[REDACTED]"),
        (re.compile(r"(://[^:/\s]+:)[^@\s]+(@)"), r"\1[REDACTED]\2"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact secrets from log messages."""
        if isinstance(record.msg, str):
            for pattern, replacement in self.SECRET_PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)
        return True


# Configure logging with secret redaction
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger().addFilter(SecretRedactingFilter())
logger = logging.getLogger(__name__)


def _redact(text: str) -> str:
    for pattern, replacement in SecretRedactingFilter.SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _parse_context(pairs: tuple[str, ...]) -> dict[str, str]:
    context: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--context")
        context[key.strip()] = value
    return context


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """Branchtale CLI."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@cli.command()
def init_database() -> None:
    """Initialize the database schema."""
    asyncio.run(_init_database())


async def _init_database() -> None:
    """Async implementation of init-database command."""
    from branchtale.db.database import init_db

    await init_db()
    click.echo("Database initialized successfully!")


@cli.command()
def check_connection() -> None:
    """Check the database connection (and Slack, when enabled)."""
    asyncio.run(_check_connection())


async def _check_connection() -> None:
    """Async implementation of check-connection command."""
    from sqlalchemy import text

    from branchtale.db.database import async_session_maker
    from branchtale.notifications.slack import create_slack_dispatcher

    try:
        async with async_session_maker() as session:
            await session.execute(text("SELECT 1"))
        click.echo(f"Connected to database: {_redact(settings.DATABASE_URL)}")
    except Exception as e:
        click.echo(f"Database connection failed: {e}", err=True)
        sys.exit(1)

    dispatcher = create_slack_dispatcher()
    if dispatcher is None:
        click.echo("Slack delivery: disabled")
        return

    try:
        response = await dispatcher.client.auth_test()
        click.echo(f"Slack delivery: connected as {response.get('user')} ({response.get('team')})")
    except Exception as e:
        click.echo(f"Slack connection failed: {e}", err=True)
        sys.exit(1)


@cli.command()
def notification_types() -> None:
    """List notification types with their required context fields."""
    from branchtale.notifications.factory import NOTIFICATION_CONFIGS

    for notification_type, config in NOTIFICATION_CONFIGS.items():
        action = config.action.value if config.action else "-"
        click.echo(
            f"{notification_type.value:<28} link={action:<14} required={', '.join(config.required)}"
        )


@cli.command()
@click.argument("notification_type")
@click.option(
    "--context",
    "-c",
    "context_pairs",
    multiple=True,
    help="Context value as key=value (snake_case or camelCase); repeatable",
)
@click.option("--as-json", is_flag=True, help="Print the payload as JSON")
@click.option("--plain", is_flag=True, help="Strip highlight markers")
def render_notification(
    notification_type: str,
    context_pairs: tuple[str, ...],
    as_json: bool,
    plain: bool,
) -> None:
    """Build a notification payload without storing it."""
    from branchtale.notifications.factory import NotificationFactory, strip_highlights

    try:
        payload = NotificationFactory.build(notification_type, _parse_context(context_pairs))
    except BranchtaleError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    title, message = payload.title, payload.message
    if plain:
        title, message = strip_highlights(title), strip_highlights(message)

    if as_json:
        click.echo(
            json.dumps(
                {
                    "type": payload.type.value,
                    "title": title,
                    "message": message,
                    "action_url": payload.action_url,
                },
                indent=2,
            )
        )
        return

    click.echo(f"Title:   {title}")
    click.echo(f"Message: {message}")
    click.echo(f"Link:    {payload.action_url or '-'}")


# =============================================================================
# Pull request administration
# =============================================================================


@cli.group()
def pr() -> None:
    """Review and merge pull requests."""
    pass


async def _run_pr_action(action: str, pr_id: str, user_id: str, **kwargs) -> None:
    from branchtale.db.database import async_session_maker
    from branchtale.services import build_services

    async with async_session_maker() as session:
        services = build_services(session)
        method = getattr(services.pull_requests, action)
        try:
            pull_request = await method(pr_id, user_id, **kwargs)
        except BranchtaleError as e:
            logger.warning(f"pr {action} {pr_id} failed: {e}")
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    click.echo(f"Pull request {pull_request.id} is now {pull_request.status}")


@pr.command(name="approve")
@click.argument("pr_id")
@click.option("--user", "-u", "user_id", required=True, help="Reviewer user id")
@click.option("--notes", "-n", help="Review notes")
def pr_approve(pr_id: str, user_id: str, notes: str | None) -> None:
    """Approve an open pull request."""
    asyncio.run(_run_pr_action("approve", pr_id, user_id, notes=notes))


@pr.command(name="reject")
@click.argument("pr_id")
@click.option("--user", "-u", "user_id", required=True, help="Reviewer user id")
@click.option("--reason", "-r", required=True, help="Why the pull request is rejected")
def pr_reject(pr_id: str, user_id: str, reason: str) -> None:
    """Reject an open pull request."""
    asyncio.run(_run_pr_action("reject", pr_id, user_id, reason=reason))


@pr.command(name="merge")
@click.argument("pr_id")
@click.option("--user", "-u", "user_id", required=True, help="Merging user id")
def pr_merge(pr_id: str, user_id: str) -> None:
    """Merge an approved pull request into the chapter tree."""
    asyncio.run(_run_pr_action("merge", pr_id, user_id))


@pr.command(name="close")
@click.argument("pr_id")
@click.option("--user", "-u", "user_id", required=True, help="Closing user id")
@click.option("--reason", "-r", help="Why the pull request is closed")
def pr_close(pr_id: str, user_id: str, reason: str | None) -> None:
    """Close an open or approved pull request without merging."""
    asyncio.run(_run_pr_action("close", pr_id, user_id, reason=reason))


@pr.command(name="list")
@click.argument("story_slug")
@click.option("--status", "-s", help="Only pull requests in this status")
def pr_list(story_slug: str, status: str | None) -> None:
    """List a story's pull requests."""
    asyncio.run(_pr_list(story_slug, status))


async def _pr_list(story_slug: str, status: str | None) -> None:
    """Async implementation of pr list command."""
    from branchtale.db.database import async_session_maker
    from branchtale.services import build_services

    async with async_session_maker() as session:
        services = build_services(session, use_slack=False)
        pull_requests = await services.pull_requests.list_for_story(story_slug, status)

    if not pull_requests:
        click.echo("No pull requests found.")
        return

    for pull_request in pull_requests:
        click.echo(
            f"{pull_request.id}  {pull_request.status:<9} {pull_request.pr_type:<15} "
            f"score={pull_request.score:<4} {pull_request.title}"
        )


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
