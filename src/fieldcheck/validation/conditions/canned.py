"""Canned conditions for fieldcheck.

These are ready-to-use conditions registered with a ConditionFactory and
referenced from rule configuration by type.

Available conditions:
- RequireText: Text must be present (edit-time capable)
- NotNull: Value must be present
- DataTypeCheck: The typed text converted to a native value
- RegExp: Text matches a regular expression (edit-time capable)
- StringLength: Text length within bounds (edit-time capable)
- Range: Value within bounds
- EqualToValue, NotEqualToValue, GreaterThanValue, LessThanValue, ...:
  Compare against a configured value
- EqualTo, NotEqualTo, GreaterThan, LessThan, ...: Compare against a second field
- AllMatch, AnyMatch, CountMatches: Combine the results of child conditions
- Not: Invert a child condition
- When: Evaluate a child condition only when an enabler matches
"""

from __future__ import annotations

import functools
import inspect
import re
from typing import TYPE_CHECKING, Any

from fieldcheck.validation.conditions.base import ConditionFactory, ValueHostResolver
from fieldcheck.validation.configs import ConditionConfig
from fieldcheck.validation.services import (
    ComparersResult,
    TextLocalizer,
    TokenLabelAndValue,
)
from fieldcheck.validation.types import (
    CodingError,
    ConditionCategory,
    ConditionEvaluateResult,
)

if TYPE_CHECKING:
    from fieldcheck.validation.services import ValidationServices
    from fieldcheck.validation.value_hosts import ValueHost

MATCH = ConditionEvaluateResult.MATCH
NO_MATCH = ConditionEvaluateResult.NO_MATCH
UNDETERMINED = ConditionEvaluateResult.UNDETERMINED


# =============================================================================
# Base
# =============================================================================


class ValueHostCondition:
    """Base for conditions that read one field.

    Params:
        valueHostName: Evaluate this field instead of the validator's own field
    """

    condition_type = ""
    category = ConditionCategory.UNDETERMINED

    def __init__(self, config: ConditionConfig):
        self.config = config
        self.condition_type = config.type or self.condition_type
        self.value_host_name: str | None = config.params.get("valueHostName")

    def evaluate(
        self, value_host: ValueHost | None, resolver: ValueHostResolver
    ) -> ConditionEvaluateResult:
        target = self.target(value_host, resolver)
        return self.evaluate_value(target.get_value(), target, resolver)

    def evaluate_value(
        self, value: Any, target: ValueHost, resolver: ValueHostResolver
    ) -> ConditionEvaluateResult:
        raise NotImplementedError("Subclasses must implement evaluate_value()")

    def target(
        self, value_host: ValueHost | None, resolver: ValueHostResolver
    ) -> ValueHost:
        if self.value_host_name:
            target = resolver.get_value_host(self.value_host_name)
            if target is None:
                raise CodingError(
                    f"{self.condition_type}: field '{self.value_host_name}' does not exist"
                )
            return target
        if value_host is None:
            raise CodingError(f"{self.condition_type}: no field to evaluate")
        return value_host

    def gather_value_host_names(self, names: set[str], resolver: ValueHostResolver) -> None:
        if self.value_host_name:
            names.add(self.value_host_name)

    def get_values_for_tokens(
        self, value_host: ValueHost, resolver: ValueHostResolver
    ) -> list[TokenLabelAndValue]:
        return []


# =============================================================================
# Required
# =============================================================================


class RequireTextCondition(ValueHostCondition):
    """Text must be present.

    Params:
        trim: Ignore surrounding whitespace (default: true)
    """

    condition_type = "RequireText"
    category = ConditionCategory.REQUIRED

    def __init__(self, config: ConditionConfig):
        super().__init__(config)
        self.trim = config.params.get("trim", True)

    def evaluate_value(self, value, target, resolver):
        if value is None:
            return NO_MATCH
        return self._check_text(value)

    def evaluate_during_edits(
        self, text: str, value_host: ValueHost, services: ValidationServices
    ) -> ConditionEvaluateResult:
        return self._check_text(text)

    def _check_text(self, text: Any) -> ConditionEvaluateResult:
        if not isinstance(text, str):
            return UNDETERMINED
        if self.trim:
            text = text.strip()
        return MATCH if text else NO_MATCH


class NotNullCondition(ValueHostCondition):
    """Value must not be None."""

    condition_type = "NotNull"
    category = ConditionCategory.REQUIRED

    def evaluate_value(self, value, target, resolver):
        return NO_MATCH if value is None else MATCH


class DataTypeCheckCondition(ValueHostCondition):
    """Fails when the field's typed text could not be converted to a native value."""

    condition_type = "DataTypeCheck"
    category = ConditionCategory.DATA_TYPE_CHECK

    def evaluate_value(self, value, target, resolver):
        if target.conversion_error:
            return NO_MATCH
        if value is None and isinstance(target.get_input_value(), str):
            return NO_MATCH if target.get_input_value().strip() else MATCH
        return MATCH


# =============================================================================
# Contents
# =============================================================================


class RegExpCondition(ValueHostCondition):
    """Text must match a regular expression.

    Params:
        expression: The pattern (searched, anchor it for full matches)
        ignoreCase: Case-insensitive matching (default: false)
        not: Invert the result (default: false)
    """

    condition_type = "RegExp"
    category = ConditionCategory.CONTENTS

    def __init__(self, config: ConditionConfig):
        super().__init__(config)
        expression = config.params.get("expression")
        if not expression:
            raise CodingError(f"{self.condition_type}: 'expression' is required")
        flags = re.IGNORECASE if config.params.get("ignoreCase") else 0
        try:
            self.pattern = re.compile(expression, flags)
        except re.error as exc:
            raise CodingError(f"{self.condition_type}: invalid expression: {exc}") from exc
        self.invert = bool(config.params.get("not", False))

    def evaluate_value(self, value, target, resolver):
        return self._check_text(value)

    def evaluate_during_edits(self, text, value_host, services):
        return self._check_text(text)

    def _check_text(self, text: Any) -> ConditionEvaluateResult:
        if not isinstance(text, str):
            return UNDETERMINED
        found = self.pattern.search(text) is not None
        return MATCH if found != self.invert else NO_MATCH


class StringLengthCondition(ValueHostCondition):
    """Text length must be within bounds.

    Params:
        minimum: Smallest allowed length
        maximum: Largest allowed length
        trim: Measure without surrounding whitespace (default: true)
    """

    condition_type = "StringLength"
    category = ConditionCategory.CONTENTS

    def __init__(self, config: ConditionConfig):
        super().__init__(config)
        self.minimum = config.params.get("minimum")
        self.maximum = config.params.get("maximum")
        self.trim = config.params.get("trim", True)

    def evaluate_value(self, value, target, resolver):
        return self._check_text(value)

    def evaluate_during_edits(self, text, value_host, services):
        return self._check_text(text)

    def _check_text(self, text: Any) -> ConditionEvaluateResult:
        if not isinstance(text, str):
            return UNDETERMINED
        length = len(text.strip() if self.trim else text)
        if self.minimum is not None and length < self.minimum:
            return NO_MATCH
        if self.maximum is not None and length > self.maximum:
            return NO_MATCH
        return MATCH

    def get_values_for_tokens(self, value_host, resolver):
        return [
            TokenLabelAndValue("Minimum", self.minimum),
            TokenLabelAndValue("Maximum", self.maximum),
        ]


# =============================================================================
# Comparison
# =============================================================================

# Comparison outcomes that count as a match, by condition type suffix
COMPARISON_OUTCOMES: dict[str, frozenset[ComparersResult]] = {
    "EqualTo": frozenset({ComparersResult.EQUALS}),
    "NotEqualTo": frozenset(
        {ComparersResult.NOT_EQUALS, ComparersResult.LESS_THAN, ComparersResult.GREATER_THAN}
    ),
    "GreaterThan": frozenset({ComparersResult.GREATER_THAN}),
    "GreaterThanOrEqual": frozenset({ComparersResult.GREATER_THAN, ComparersResult.EQUALS}),
    "LessThan": frozenset({ComparersResult.LESS_THAN}),
    "LessThanOrEqual": frozenset({ComparersResult.LESS_THAN, ComparersResult.EQUALS}),
}


def _outcome(comparison: ComparersResult, allowed: frozenset[ComparersResult]):
    if comparison == ComparersResult.UNDETERMINED:
        return UNDETERMINED
    return MATCH if comparison in allowed else NO_MATCH


class RangeCondition(ValueHostCondition):
    """Value must be between minimum and maximum, inclusive.

    Params:
        minimum: Lower bound (optional)
        maximum: Upper bound (optional)
    """

    condition_type = "Range"
    category = ConditionCategory.COMPARISON

    def __init__(self, config: ConditionConfig):
        super().__init__(config)
        self.minimum = config.params.get("minimum")
        self.maximum = config.params.get("maximum")

    def evaluate_value(self, value, target, resolver):
        if value is None:
            return UNDETERMINED
        comparer = resolver.services.data_type_comparer
        for bound, allowed in (
            (self.minimum, COMPARISON_OUTCOMES["GreaterThanOrEqual"]),
            (self.maximum, COMPARISON_OUTCOMES["LessThanOrEqual"]),
        ):
            if bound is None:
                continue
            result = _outcome(comparer.compare(value, bound), allowed)
            if result == UNDETERMINED:
                resolver.services.logger.info(
                    "%s on '%s': cannot compare %s with %s",
                    self.condition_type, target.name, type(value).__name__, type(bound).__name__,
                )
            if result != MATCH:
                return result
        return MATCH

    def get_values_for_tokens(self, value_host, resolver):
        return [
            TokenLabelAndValue("Minimum", self.minimum),
            TokenLabelAndValue("Maximum", self.maximum),
        ]


class CompareToValueCondition(ValueHostCondition):
    """Compares the field to a configured value.

    Registered as EqualToValue, NotEqualToValue, GreaterThanValue, ...

    Params:
        secondValue: Value to compare with
    """

    category = ConditionCategory.COMPARISON

    def __init__(self, config: ConditionConfig):
        super().__init__(config)
        self.allowed = COMPARISON_OUTCOMES[config.type[: -len("Value")]]
        self.second_value = config.params.get("secondValue")

    def evaluate_value(self, value, target, resolver):
        if value is None:
            return UNDETERMINED
        comparison = resolver.services.data_type_comparer.compare(value, self.second_value)
        if comparison == ComparersResult.UNDETERMINED:
            resolver.services.logger.info(
                "%s on '%s': cannot compare %s with %s",
                self.condition_type,
                target.name,
                type(value).__name__,
                type(self.second_value).__name__,
            )
        return _outcome(comparison, self.allowed)

    def get_values_for_tokens(self, value_host, resolver):
        return [TokenLabelAndValue("CompareTo", self.second_value)]


class CompareToSecondValueHostCondition(ValueHostCondition):
    """Compares the field to another field.

    Registered as EqualTo, NotEqualTo, GreaterThan, ...
    A missing second field, an empty second value or incomparable types are
    expected while the user is still typing: they give UNDETERMINED and a log
    entry rather than an exception.

    Params:
        secondValueHostName: The other field
    """

    category = ConditionCategory.COMPARISON

    def __init__(self, config: ConditionConfig):
        super().__init__(config)
        self.allowed = COMPARISON_OUTCOMES[config.type]
        self.second_value_host_name: str | None = config.params.get("secondValueHostName")
        if not self.second_value_host_name:
            raise CodingError(f"{self.condition_type}: 'secondValueHostName' is required")

    def evaluate_value(self, value, target, resolver):
        if value is None:
            return UNDETERMINED
        logger = resolver.services.logger
        second = resolver.get_value_host(self.second_value_host_name)
        if second is None:
            logger.warning(
                "%s on '%s': second field '%s' not found",
                self.condition_type, target.name, self.second_value_host_name,
            )
            return UNDETERMINED
        second_value = second.get_value()
        if second_value is None:
            logger.info(
                "%s on '%s': second field '%s' has no value",
                self.condition_type, target.name, self.second_value_host_name,
            )
            return UNDETERMINED
        comparison = resolver.services.data_type_comparer.compare(value, second_value)
        if comparison == ComparersResult.UNDETERMINED:
            logger.info(
                "%s on '%s': type mismatch between %s and %s",
                self.condition_type,
                target.name,
                type(value).__name__,
                type(second_value).__name__,
            )
        return _outcome(comparison, self.allowed)

    def gather_value_host_names(self, names, resolver):
        super().gather_value_host_names(names, resolver)
        names.add(self.second_value_host_name)

    def get_values_for_tokens(self, value_host, resolver):
        second = resolver.get_value_host(self.second_value_host_name)
        if second is None:
            return []
        return [
            TokenLabelAndValue("CompareTo", second.get_value()),
            TokenLabelAndValue("CompareToLabel", second.get_label(), purpose="label"),
        ]


# =============================================================================
# Children
# =============================================================================


class ChildConditionsBase:
    """Base for conditions built from other conditions.

    Children come from the same ConditionFactory and are created when the
    parent is. A child without ``valueHostName`` evaluates the parent's field.
    Children must be synchronous.
    """

    category = ConditionCategory.CHILDREN

    def __init__(self, config: ConditionConfig, factory: ConditionFactory):
        self.config = config
        self.condition_type = config.type
        self.factory = factory

    def create_child(self, data: Any) -> Any:
        if isinstance(data, ConditionConfig):
            return self.factory.create(data)
        if not isinstance(data, dict) or "type" not in data:
            raise CodingError(f"{self.condition_type}: child conditions need a 'type'")
        return self.factory.create(ConditionConfig.from_dict(data))

    def evaluate_child(
        self, child: Any, value_host: ValueHost | None, resolver: ValueHostResolver
    ) -> ConditionEvaluateResult:
        result = child.evaluate(value_host, resolver)
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise CodingError(
                f"{self.condition_type}: child condition '{child.condition_type}' is asynchronous"
            )
        return result

    @property
    def children(self) -> list[Any]:
        return []

    def gather_value_host_names(self, names: set[str], resolver: ValueHostResolver) -> None:
        for child in self.children:
            gather = getattr(child, "gather_value_host_names", None)
            if gather is not None:
                gather(names, resolver)


class EvaluateChildResultsCondition(ChildConditionsBase):
    """Combines the results of a list of children.

    An UNDETERMINED child makes the whole result UNDETERMINED unless
    ``treatUndeterminedAs`` says otherwise. No children gives UNDETERMINED.

    Params:
        conditionConfigs: The children
        treatUndeterminedAs: "match", "noMatch" or "undetermined" (default)
    """

    # Stop at the first NO_MATCH child
    stop_on_no_match = False

    def __init__(self, config: ConditionConfig, factory: ConditionFactory):
        super().__init__(config, factory)
        self.conditions = [self.create_child(c) for c in config.params.get("conditionConfigs") or []]
        treat = config.params.get("treatUndeterminedAs")
        self.treat_undetermined_as = ConditionEvaluateResult(treat) if treat else UNDETERMINED

    @property
    def children(self) -> list[Any]:
        return self.conditions

    def evaluate(
        self, value_host: ValueHost | None, resolver: ValueHostResolver
    ) -> ConditionEvaluateResult:
        if not self.conditions:
            return UNDETERMINED
        matches = 0
        for child in self.conditions:
            result = self.evaluate_child(child, value_host, resolver)
            if result == UNDETERMINED:
                result = self.treat_undetermined_as
            if result == UNDETERMINED:
                return UNDETERMINED
            if result == MATCH:
                matches += 1
            elif self.stop_on_no_match:
                return NO_MATCH
        return self.judge(matches)

    def judge(self, matches: int) -> ConditionEvaluateResult:
        raise NotImplementedError("Subclasses must implement judge()")


class AllMatchCondition(EvaluateChildResultsCondition):
    """Every child must match."""

    condition_type = "AllMatch"
    stop_on_no_match = True

    def judge(self, matches):
        return MATCH


class AnyMatchCondition(EvaluateChildResultsCondition):
    """At least one child must match."""

    condition_type = "AnyMatch"

    def judge(self, matches):
        return MATCH if matches else NO_MATCH


class CountMatchesCondition(EvaluateChildResultsCondition):
    """The number of matching children must be within bounds.

    Params:
        minimum: Fewest matches allowed (default: 1)
        maximum: Most matches allowed (optional)
    """

    condition_type = "CountMatches"

    def __init__(self, config: ConditionConfig, factory: ConditionFactory):
        super().__init__(config, factory)
        self.minimum = config.params.get("minimum", 1)
        self.maximum = config.params.get("maximum")

    def judge(self, matches):
        if matches < self.minimum:
            return NO_MATCH
        if self.maximum is not None and matches > self.maximum:
            return NO_MATCH
        return MATCH

    def get_values_for_tokens(self, value_host, resolver):
        return [
            TokenLabelAndValue("Minimum", self.minimum),
            TokenLabelAndValue("Maximum", self.maximum),
        ]


class OneChildCondition(ChildConditionsBase):
    """Base for conditions wrapping a single child.

    Params:
        childConditionConfig: The child
    """

    def __init__(self, config: ConditionConfig, factory: ConditionFactory):
        super().__init__(config, factory)
        child = config.params.get("childConditionConfig")
        if child is None:
            raise CodingError(f"{self.condition_type}: 'childConditionConfig' is required")
        self.child = self.create_child(child)

    @property
    def children(self) -> list[Any]:
        return [self.child]


class NotCondition(OneChildCondition):
    """Inverts the child; UNDETERMINED stays UNDETERMINED."""

    condition_type = "Not"

    def evaluate(self, value_host, resolver):
        result = self.evaluate_child(self.child, value_host, resolver)
        if result == MATCH:
            return NO_MATCH
        if result == NO_MATCH:
            return MATCH
        return UNDETERMINED


class WhenCondition(OneChildCondition):
    """Evaluates the child only when the enabler matches.

    Otherwise the result is UNDETERMINED, which raises no issue. The enabler
    usually names its own field through ``valueHostName``.

    Params:
        enablerConfig: Condition that must match
        childConditionConfig: The child
    """

    condition_type = "When"

    def __init__(self, config: ConditionConfig, factory: ConditionFactory):
        super().__init__(config, factory)
        enabler = config.params.get("enablerConfig")
        if enabler is None:
            raise CodingError(f"{self.condition_type}: 'enablerConfig' is required")
        self.enabler = self.create_child(enabler)

    @property
    def children(self) -> list[Any]:
        return [self.enabler, self.child]

    def evaluate(self, value_host, resolver):
        if self.evaluate_child(self.enabler, value_host, resolver) != MATCH:
            resolver.services.logger.info(
                "%s: enabler '%s' did not match; child not evaluated",
                self.condition_type, self.enabler.condition_type,
            )
            return UNDETERMINED
        return self.evaluate_child(self.child, value_host, resolver)


# =============================================================================
# Registration
# =============================================================================


def register_canned_conditions(factory: ConditionFactory) -> None:
    """Register all canned conditions with a ConditionFactory."""
    factory.register("RequireText", RequireTextCondition)
    factory.register("NotNull", NotNullCondition)
    factory.register("DataTypeCheck", DataTypeCheckCondition)
    factory.register("RegExp", RegExpCondition)
    factory.register("StringLength", StringLengthCondition)
    factory.register("Range", RangeCondition)
    for name in COMPARISON_OUTCOMES:
        factory.register(name, CompareToSecondValueHostCondition)
        factory.register(f"{name}Value", CompareToValueCondition)
    for condition_class in (
        AllMatchCondition,
        AnyMatchCondition,
        CountMatchesCondition,
        NotCondition,
        WhenCondition,
    ):
        factory.register(
            condition_class.condition_type,
            functools.partial(condition_class, factory=factory),
        )


_DEFAULT_MESSAGES: dict[str, tuple[str, str]] = {
    "RequireText": ("Requires a value.", "{Label} requires a value."),
    "NotNull": ("Requires a value.", "{Label} requires a value."),
    "DataTypeCheck": ("Invalid value.", "{Label} has an invalid value."),
    "RegExp": ("Invalid value.", "{Label} has an invalid value."),
    "StringLength": ("Invalid length.", "{Label} has an invalid length."),
    "Range": (
        "Must be between {Minimum} and {Maximum}.",
        "{Label} must be between {Minimum} and {Maximum}.",
    ),
    "EqualTo": ("Must match {CompareToLabel}.", "{Label} must match {CompareToLabel}."),
    "NotEqualTo": (
        "Must not match {CompareToLabel}.",
        "{Label} must not match {CompareToLabel}.",
    ),
    "GreaterThan": (
        "Must be greater than {CompareTo}.",
        "{Label} must be greater than {CompareTo}.",
    ),
    "GreaterThanOrEqual": (
        "Must be greater than or equal to {CompareTo}.",
        "{Label} must be greater than or equal to {CompareTo}.",
    ),
    "LessThan": ("Must be less than {CompareTo}.", "{Label} must be less than {CompareTo}."),
    "LessThanOrEqual": (
        "Must be less than or equal to {CompareTo}.",
        "{Label} must be less than or equal to {CompareTo}.",
    ),
    "EqualToValue": ("Must be {CompareTo}.", "{Label} must be {CompareTo}."),
    "NotEqualToValue": ("Must not be {CompareTo}.", "{Label} must not be {CompareTo}."),
    "AllMatch": ("Invalid value.", "{Label} has an invalid value."),
    "AnyMatch": ("Invalid value.", "{Label} has an invalid value."),
    "CountMatches": ("Invalid value.", "{Label} has an invalid value."),
    "Not": ("Invalid value.", "{Label} has an invalid value."),
    "When": ("Invalid value.", "{Label} has an invalid value."),
}


def register_canned_messages(localizer: TextLocalizer, culture_id: str = "en") -> None:
    """Register default messages for the canned conditions."""
    for error_code, (message, summary) in _DEFAULT_MESSAGES.items():
        localizer.register_error_message(
            error_code, {culture_id: message}, summary_translations={culture_id: summary}
        )
    localizer.register_error_message(
        "DataTypeCheck",
        {culture_id: "Enter a whole number."},
        summary_translations={culture_id: "{Label} must be a whole number."},
        data_type="Integer",
    )
    for name in ("GreaterThan", "GreaterThanOrEqual", "LessThan", "LessThanOrEqual"):
        message, summary = _DEFAULT_MESSAGES[name]
        localizer.register_error_message(
            f"{name}Value", {culture_id: message}, summary_translations={culture_id: summary}
        )
