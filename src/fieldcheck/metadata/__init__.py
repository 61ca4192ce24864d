"""Rules files: loading and schema validation."""

from fieldcheck.metadata.loader import (
    FieldInput,
    RuleSet,
    RulesLoader,
    load_data_file,
    load_rules_file,
)
from fieldcheck.metadata.validator import SchemaIssue, validate_rules_dir, validate_rules_file

__all__ = [
    "FieldInput",
    "RuleSet",
    "RulesLoader",
    "SchemaIssue",
    "load_data_file",
    "load_rules_file",
    "validate_rules_dir",
    "validate_rules_file",
]
