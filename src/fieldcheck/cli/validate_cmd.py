"""Validate CLI command: run a rules file against a data file."""

import asyncio
import json
from pathlib import Path

import click

from fieldcheck.config import EngineSettings
from fieldcheck.metadata.loader import FieldInput, load_data_file, load_rules_file
from fieldcheck.validation.manager import ValidationManager
from fieldcheck.validation.services import create_validation_services
from fieldcheck.validation.types import (
    CodingError,
    SetValueOptions,
    ValidateOptions,
    ValidationSeverity,
    ValidationState,
)
from fieldcheck.validation.value_hosts import CalcValueHost, InputValueHost

_SEVERITY_COLOURS = {
    ValidationSeverity.WARNING: "yellow",
    ValidationSeverity.ERROR: "red",
    ValidationSeverity.SEVERE: "magenta",
}


def _apply_inputs(manager: ValidationManager, inputs: dict[str, FieldInput]) -> None:
    for name, entry in inputs.items():
        value_host = manager.get_value_host(name)
        if value_host is None or isinstance(value_host, CalcValueHost):
            click.echo(
                click.style(f"Warning: ignoring value for unknown field '{name}'", fg="yellow"),
                err=True,
            )
            continue
        options = SetValueOptions(conversion_error=entry.conversion_error)
        if entry.has_text and isinstance(value_host, InputValueHost):
            value_host.set_values(entry.value, entry.text, options)
        else:
            value_host.set_value(entry.value, options)


def _print_verdict(verdict: ValidationState) -> None:
    for issue in verdict.issues_found:
        colour = _SEVERITY_COLOURS[issue.severity]
        click.echo(
            click.style(f"  ✗ {issue.value_host_name} [{issue.error_code}] ", fg=colour)
            + issue.error_message
        )
    if verdict.do_not_save:
        click.echo(click.style("\nSaving is blocked.", fg="red", bold=True))
    elif verdict.issues_found:
        click.echo(click.style("\nValid, with warnings.", fg="yellow", bold=True))
    else:
        click.echo(click.style("\nAll fields are valid.", fg="green", bold=True))


@click.command()
@click.argument("rules_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("data_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--group", default=None, help="Only validate fields in this group.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the verdict as JSON.")
@click.pass_obj
def validate(
    settings: EngineSettings | None,
    rules_path: Path,
    data_path: Path,
    group: str | None,
    as_json: bool,
):
    """Validate the values in DATA_PATH with the rules in RULES_PATH.

    Exits with status 1 when saving would be blocked.
    """
    try:
        rule_set = load_rules_file(rules_path)
        inputs = load_data_file(data_path)
    except ValueError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        raise SystemExit(1)

    overrides = {"culture_id": rule_set.culture} if rule_set.culture else {}
    services = create_validation_services(settings, **overrides)
    try:
        manager = ValidationManager(services, rule_set.fields, notify_delay_ms=0)
        _apply_inputs(manager, inputs)
        verdict = asyncio.run(manager.validate_async(ValidateOptions(group=group)))
    except CodingError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        raise SystemExit(1)
    manager.dispose()

    if as_json:
        click.echo(json.dumps(verdict.to_dict(), indent=2, default=str))
    else:
        _print_verdict(verdict)

    if verdict.do_not_save:
        raise SystemExit(1)
