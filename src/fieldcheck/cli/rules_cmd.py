"""Rules CLI commands: check rules files."""

from pathlib import Path

import click

from fieldcheck.config import EngineSettings
from fieldcheck.metadata.loader import RulesLoader
from fieldcheck.metadata.validator import SchemaIssue, validate_rules_dir, validate_rules_file
from fieldcheck.validation.manager import ValidationManager
from fieldcheck.validation.services import create_validation_services
from fieldcheck.validation.types import CodingError


def _report_schema_issues(issues: list[SchemaIssue]) -> bool:
    """Print schema issues; return False when any of them is an error."""
    error_count = sum(1 for i in issues if i.is_error)
    for issue in issues:
        click.echo(click.style(str(issue), fg="red" if issue.is_error else "yellow"))
    if error_count:
        summary = f"\n{error_count} schema error(s) found"
        if len(issues) > error_count:
            summary += f" and {len(issues) - error_count} warning(s)"
        click.echo(click.style(summary, fg="red", bold=True))
        return False
    if issues:
        click.echo(click.style(f"{len(issues)} schema warning(s).", fg="yellow"))
    return True


@click.group()
def rules():
    """Rules file commands."""
    pass


@rules.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Treat warnings as errors.",
)
@click.pass_obj
def check(settings: EngineSettings | None, path: Path, strict: bool):
    """Check a rules file, or a directory of them, against the schema and the engine."""
    # ── Structure: every file against the rules schema ──────────────────────
    if path.is_dir():
        schema_issues = validate_rules_dir(path, strict=strict)
    else:
        schema_issues = validate_rules_file(path)
        if strict:
            for issue in schema_issues:
                issue.severity = "error"
    if not _report_schema_issues(schema_issues):
        raise SystemExit(1)

    # ── Semantics: the engine must accept every rule set ────────────────────
    loader = RulesLoader(path)
    try:
        loader.load_all()
    except ValueError as e:
        click.echo(click.style(f"\nLoading failed: {e}", fg="red"), err=True)
        raise SystemExit(1)

    services = create_validation_services(settings)
    click.echo(f"\nLoaded {len(loader.list_rule_sets())} rule set(s):")
    for name in loader.list_rule_sets():
        rule_set = loader.get_rule_set(name)
        try:
            manager = ValidationManager(services, rule_set.fields, notify_delay_ms=0)
        except CodingError as e:
            click.echo(click.style(f"  ✗ {name}: {e}", fg="red"), err=True)
            raise SystemExit(1)
        rule_count = sum(len(f.validator_configs) for f in rule_set.fields)
        click.echo(f"  ✓ {name} ({len(rule_set.fields)} fields, {rule_count} rules)")
        manager.dispose()

    click.echo(click.style("\nAll rules are valid.", fg="green", bold=True))
