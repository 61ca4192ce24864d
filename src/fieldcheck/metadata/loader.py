"""Load field and rule configurations from YAML files."""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from fieldcheck.validation.configs import ConditionConfig, FieldConfig, RuleConfig

# Field-level shorthand -> canned condition it expands to
_SHORTHAND_RULES = ("required", "minLength", "maxLength", "pattern", "min", "max")


@dataclass
class FieldInput:
    """A value for one field from a data file.

    ``text`` and ``conversion_error`` describe what the user typed when the
    typed text could not be converted.
    """

    value: Any = None
    text: Any = None
    conversion_error: str | None = None
    has_text: bool = False


@dataclass
class RuleSet:
    """The fields declared in one rules file."""

    source: Path
    fields: list[FieldConfig] = field(default_factory=list)
    culture: str | None = None

    def get_field(self, name: str) -> FieldConfig | None:
        for config in self.fields:
            if config.name == name:
                return config
        return None


class RulesLoader:
    """Loads rule sets from a rules file or a directory of them."""

    def __init__(self, rules_path: Path):
        self.rules_path = rules_path
        self.rule_sets: dict[str, RuleSet] = {}

    def load_all(self) -> None:
        """Load every rules file; a directory contributes its ``*.yaml`` files."""
        if self.rules_path.is_dir():
            paths = sorted(self.rules_path.glob("*.yaml"))
        else:
            paths = [self.rules_path]
        for path in paths:
            rule_set = load_rules_file(path)
            self.rule_sets[path.stem] = rule_set

    def list_rule_sets(self) -> list[str]:
        return list(self.rule_sets)

    def get_rule_set(self, name: str) -> RuleSet | None:
        return self.rule_sets.get(name)


def load_rules_file(path: Path) -> RuleSet:
    """Read one rules file.

    Raises:
        ValueError: If the file is not a valid rules document
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError(f"{path}: YAML parse error: {exc}") from exc

    if not isinstance(data, dict) or not isinstance(data.get("fields"), list):
        raise ValueError(f"{path}: expected a mapping with a 'fields' list")

    fields: list[FieldConfig] = []
    seen: set[str] = set()
    for index, field_data in enumerate(data["fields"]):
        try:
            config = resolve_field(field_data)
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"{path}: fields[{index}]: {exc}") from exc
        if config.name in seen:
            raise ValueError(f"{path}: field '{config.name}' is declared more than once")
        seen.add(config.name)
        fields.append(config)

    return RuleSet(source=path, fields=fields, culture=data.get("culture"))


def resolve_field(data: dict) -> FieldConfig:
    """Convert a field dict to a FieldConfig, expanding ``validation`` shorthand."""
    data = dict(data)
    shorthand = data.pop("validation", None) or {}
    config = FieldConfig.from_dict(data)
    rules = _expand_shorthand(shorthand)
    if not rules:
        return config
    return replace(config, validator_configs=tuple(rules) + config.validator_configs)


def _expand_shorthand(shorthand: dict) -> list[RuleConfig]:
    unknown = set(shorthand) - set(_SHORTHAND_RULES)
    if unknown:
        raise ValueError(f"unknown validation keys: {', '.join(sorted(unknown))}")

    rules = []
    if shorthand.get("required"):
        rules.append(RuleConfig(condition_config=ConditionConfig("RequireText")))
    if shorthand.get("minLength") is not None or shorthand.get("maxLength") is not None:
        rules.append(
            RuleConfig(
                condition_config=ConditionConfig(
                    "StringLength",
                    {"minimum": shorthand.get("minLength"), "maximum": shorthand.get("maxLength")},
                )
            )
        )
    if shorthand.get("pattern"):
        rules.append(
            RuleConfig(
                condition_config=ConditionConfig("RegExp", {"expression": shorthand["pattern"]})
            )
        )
    if shorthand.get("min") is not None or shorthand.get("max") is not None:
        rules.append(
            RuleConfig(
                condition_config=ConditionConfig(
                    "Range", {"minimum": shorthand.get("min"), "maximum": shorthand.get("max")}
                )
            )
        )
    return rules


def load_data_file(path: Path) -> dict[str, FieldInput]:
    """Read field values from a YAML or JSON file.

    Each entry is either a plain value or a mapping with ``value``,
    ``inputValue`` and ``conversionError`` keys.

    Raises:
        ValueError: If the file is not a mapping of field names
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError(f"{path}: YAML parse error: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping of field name to value")

    inputs = {}
    for name, entry in data.items():
        if isinstance(entry, dict) and ("value" in entry or "inputValue" in entry):
            inputs[str(name)] = FieldInput(
                value=entry.get("value"),
                text=entry.get("inputValue"),
                conversion_error=entry.get("conversionError"),
                has_text="inputValue" in entry,
            )
        else:
            inputs[str(name)] = FieldInput(value=entry)
    return inputs
