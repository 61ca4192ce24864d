"""Schema checks for rules files.

The engine itself only raises CodingError on the first bad rule it builds;
this module reports every structural problem in a file at once, with its
location, before anything is built.

Usage:
    from fieldcheck.metadata.validator import validate_rules_file

    for issue in validate_rules_file(Path("rules/signup.yaml")):
        print(issue)
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

logger = logging.getLogger(__name__)

SCHEMAS_DIR = Path(__file__).parent / "schemas"
RULES_SCHEMA_ID = "https://fieldcheck.dev/schemas/fields.schema.json"


@dataclass
class SchemaIssue:
    """One problem found in a rules file.

    Attributes:
        file: The rules file
        message: What is wrong
        path: Location inside the document, e.g. ``fields[0].validators[1]``
        severity: "error" or "warning"
    """

    file: Path
    message: str
    path: str = ""
    severity: str = "error"

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def __str__(self) -> str:
        where = f"{self.file}:{self.path}" if self.path else str(self.file)
        return f"{where}: {self.severity}: {self.message}"


# =============================================================================
# Schema loading
# =============================================================================


def load_registry(schemas_dir: Path = SCHEMAS_DIR) -> Registry:
    """Register every ``*.schema.json`` under its ``$id``."""
    registry = Registry()
    for schema_file in sorted(schemas_dir.glob("*.schema.json")):
        contents = json.loads(schema_file.read_text())
        registry = registry.with_resource(
            contents["$id"], Resource.from_contents(contents, default_specification=DRAFT202012)
        )
    return registry


@lru_cache(maxsize=1)
def _default_registry() -> Registry:
    return load_registry()


def _rules_validator(registry: Registry) -> Draft202012Validator:
    schema = registry.contents(RULES_SCHEMA_ID)
    return Draft202012Validator(schema, registry=registry)


def _location(error: ValidationError) -> str:
    location = ""
    for part in error.absolute_path:
        if isinstance(part, int):
            location += f"[{part}]"
        elif location:
            location += f".{part}"
        else:
            location = str(part)
    return location


# =============================================================================
# Checks
# =============================================================================


def validate_rules_document(
    doc: Any,
    file: Path,
    *,
    registry: Registry | None = None,
) -> list[SchemaIssue]:
    """Check an already parsed rules document against the rules schema.

    Issues come back in document order.
    """
    validator = _rules_validator(registry or _default_registry())
    errors = sorted(
        validator.iter_errors(doc),
        key=lambda e: [f"{p:08d}" if isinstance(p, int) else p for p in e.absolute_path],
    )
    return [SchemaIssue(file, error.message, _location(error)) for error in errors]


def _duplicate_field_issues(doc: dict, file: Path) -> list[SchemaIssue]:
    names = [f["name"] for f in doc.get("fields") or []]
    issues = []
    for index, name in enumerate(names):
        if names.index(name) != index:
            issues.append(
                SchemaIssue(
                    file,
                    f"Field '{name}' is declared more than once",
                    f"fields[{index}]",
                    severity="warning",
                )
            )
    return issues


def validate_rules_file(
    path: Path,
    *,
    registry: Registry | None = None,
) -> list[SchemaIssue]:
    """Check one rules file.

    Unreadable YAML and empty files are reported as single issues. A file
    that passes the schema is also checked for fields declared twice, which
    the schema cannot express; those are warnings.
    """
    try:
        doc = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        return [SchemaIssue(path, f"YAML parse error: {exc}")]
    if doc is None:
        return [SchemaIssue(path, "File is empty")]

    issues = validate_rules_document(doc, path, registry=registry)
    if issues:
        logger.debug("%s failed the rules schema with %d issue(s)", path, len(issues))
        return issues
    return _duplicate_field_issues(doc, path)


def validate_rules_dir(rules_dir: Path, *, strict: bool = False) -> list[SchemaIssue]:
    """Check every ``*.yaml`` file directly under ``rules_dir``.

    Args:
        rules_dir: Directory of rules files
        strict: Report warnings as errors
    """
    if not rules_dir.is_dir():
        return [SchemaIssue(rules_dir, f"Rules directory does not exist: {rules_dir}")]

    try:
        registry = _default_registry()
    except (OSError, ValueError) as exc:
        return [SchemaIssue(SCHEMAS_DIR, f"Cannot load the rules schema: {exc}")]

    issues: list[SchemaIssue] = []
    for path in sorted(rules_dir.glob("*.yaml")):
        issues.extend(validate_rules_file(path, registry=registry))
    if strict:
        for issue in issues:
            issue.severity = "error"
    return issues
