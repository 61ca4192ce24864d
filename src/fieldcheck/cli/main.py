"""FieldCheck CLI entry point."""

import logging

import click

from fieldcheck.config import EngineSettings

_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Logging level (default: FIELDCHECK_LOG_LEVEL or WARNING).",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str | None):
    """FieldCheck validation rules engine CLI."""
    try:
        settings = EngineSettings.from_env()
    except ValueError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        raise SystemExit(1)
    if log_level:
        settings.log_level = log_level.upper()
    logging.basicConfig(
        level=settings.log_level_number,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = settings


# Register subcommands
from fieldcheck.cli.rules_cmd import rules  # noqa: E402
from fieldcheck.cli.validate_cmd import validate  # noqa: E402

cli.add_command(rules)
cli.add_command(validate)
