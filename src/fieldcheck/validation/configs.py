"""Business-authored configuration for fields and their rules.

Configurations are immutable for a configuration epoch. They are plain
declarations; the manager resolves them into value hosts and validators.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from fieldcheck.validation.types import (
    ConditionCategory,
    ValidationSeverity,
    ValueHostKind,
    ValueOrFunction,
)

if TYPE_CHECKING:
    from fieldcheck.validation.conditions.base import Condition


@dataclass(frozen=True)
class ConditionConfig:
    """Declarative description of a condition.

    Attributes:
        type: Registered condition type (e.g. "RequireText", "EqualTo")
        params: Type-specific parameters
        category: Overrides the condition's own category
    """

    type: str
    params: dict[str, Any] = field(default_factory=dict)
    category: ConditionCategory | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConditionConfig:
        """Create ConditionConfig from YAML/JSON dict.

        Parameters may be nested under ``params`` or given inline next to ``type``.
        """
        params = {
            k: v for k, v in data.items() if k not in ("type", "params", "category")
        }
        params.update(data.get("params") or {})
        category = data.get("category")
        return cls(
            type=data["type"],
            params=params,
            category=ConditionCategory(category) if category else None,
        )


# Builds a condition in code instead of through the condition factory
ConditionCreator = Callable[["RuleConfig"], "Condition | None"]


@dataclass(frozen=True)
class RuleConfig:
    """One validator on a field.

    Exactly one of ``condition_config`` and ``condition_creator`` must be given.

    Attributes:
        condition_config: Declarative condition
        condition_creator: Function building the condition
        enabler_config: Condition that must match for the rule to run
        enabler_creator: Function building the enabler
        enabled: Literal or function of the validator; None means enabled
        error_code: Stable key of the rule; defaults to the condition type
        severity: Literal or function; None uses the category default
        error_message: Template, literal or function of the validator
        error_message_l10n: Localization key for the error message
        summary_message: Template for validation summaries
        summary_message_l10n: Localization key for the summary message
    """

    condition_config: ConditionConfig | None = None
    condition_creator: ConditionCreator | None = None
    enabler_config: ConditionConfig | None = None
    enabler_creator: ConditionCreator | None = None
    enabled: ValueOrFunction[bool] | None = None
    error_code: str | None = None
    severity: ValueOrFunction[ValidationSeverity] | None = None
    error_message: ValueOrFunction[str] | None = None
    error_message_l10n: str | None = None
    summary_message: ValueOrFunction[str] | None = None
    summary_message_l10n: str | None = None

    def resolved_error_code(self) -> str | None:
        """The explicit error code, else the declared condition type."""
        if self.error_code:
            return self.error_code
        if self.condition_config is not None:
            return self.condition_config.type
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuleConfig:
        """Create RuleConfig from YAML/JSON dict."""
        condition = data.get("condition")
        enabler = data.get("enabler")
        severity = data.get("severity")
        return cls(
            condition_config=ConditionConfig.from_dict(condition) if condition else None,
            enabler_config=ConditionConfig.from_dict(enabler) if enabler else None,
            enabled=data.get("enabled"),
            error_code=data.get("errorCode"),
            severity=ValidationSeverity(severity) if severity else None,
            error_message=data.get("errorMessage"),
            error_message_l10n=data.get("errorMessageL10n"),
            summary_message=data.get("summaryMessage"),
            summary_message_l10n=data.get("summaryMessageL10n"),
        )


@dataclass(frozen=True)
class FieldConfig:
    """Configuration of one field.

    Attributes:
        name: Unique field name
        kind: Field variant; only input, property and businessLogic fields validate
        data_type: Declared data type, used for default messages and comparisons
        label: Display label used by the {Label} token
        label_l10n: Localization key for the label
        initial_value: Value of a freshly created field
        group: Group name, or several, used for partial validation
        enabled: None means enabled
        validator_configs: Rules, in declaration order
        calc_fn: For calc fields, computes the value from (value_host, resolver)
    """

    name: str
    kind: ValueHostKind = ValueHostKind.INPUT
    data_type: str | None = None
    label: str | None = None
    label_l10n: str | None = None
    initial_value: Any = None
    group: str | tuple[str, ...] | None = None
    enabled: bool | None = None
    validator_configs: tuple[RuleConfig, ...] = ()
    calc_fn: Callable[[Any, Any], Any] | None = None

    @property
    def is_enabled(self) -> bool:
        return self.enabled is not False

    def in_group(self, group: str | None) -> bool:
        """Check whether the field takes part in a validation of ``group``.

        No requested group matches every field; a field without a group
        matches every requested group. Comparison ignores case.
        """
        if not group or not self.group:
            return True
        groups = (self.group,) if isinstance(self.group, str) else self.group
        return group.lower() in (g.lower() for g in groups)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldConfig:
        """Create FieldConfig from YAML/JSON dict."""
        group = data.get("group")
        if isinstance(group, list):
            group = tuple(group)
        return cls(
            name=data["name"],
            kind=ValueHostKind(data.get("kind", "input")),
            data_type=data.get("dataType"),
            label=data.get("label"),
            label_l10n=data.get("labelL10n"),
            initial_value=data.get("initialValue"),
            group=group,
            enabled=data.get("enabled"),
            validator_configs=tuple(
                RuleConfig.from_dict(v) for v in data.get("validators") or []
            ),
        )
