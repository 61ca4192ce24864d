"""Validator: decides whether a condition runs and turns a NoMatch into an issue."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any

from fieldcheck.validation.conditions.base import Condition, supports_edit_time
from fieldcheck.validation.configs import ConditionConfig, ConditionCreator, RuleConfig
from fieldcheck.validation.types import (
    NO_CHANGE,
    BusinessLogicError,
    CodingError,
    ConditionCategory,
    ConditionEvaluateResult,
    IssueFound,
    ValidateOptions,
    ValidationSeverity,
    ValidatorValidateResult,
    resolve_value,
)

if TYPE_CHECKING:
    from fieldcheck.validation.services import ValidationServices
    from fieldcheck.validation.value_hosts import ValidatableValueHost


# Lower runs first
CATEGORY_ORDER = {
    ConditionCategory.REQUIRED: 0,
    ConditionCategory.DATA_TYPE_CHECK: 1,
}

_SEVERE_BY_DEFAULT = (ConditionCategory.REQUIRED, ConditionCategory.DATA_TYPE_CHECK)


class Validator:
    """One rule on a field: a condition plus enablement, severity and messages.

    Conditions are built when the validator is built, so configuration faults
    surface as CodingError while the manager is being configured.

    Runtime overrides are kept in the owning field's state, keyed
    ``_IV[{errorCode}].{property}``. Passing None to a setter reverts to the
    configured value; passing NO_CHANGE leaves the current value alone.
    """

    def __init__(
        self,
        value_host: ValidatableValueHost,
        config: RuleConfig,
        services: ValidationServices,
    ):
        self.value_host = value_host
        self.config = config
        self.services = services
        condition = self._build_condition(
            config.condition_config, config.condition_creator, "condition"
        )
        if condition is None:
            raise CodingError(
                f"Field '{value_host.name}': a rule needs condition_config or condition_creator"
            )
        self.condition: Condition = condition
        self.enabler: Condition | None = self._build_condition(
            config.enabler_config, config.enabler_creator, "enabler"
        )

    def _build_condition(
        self,
        condition_config: ConditionConfig | None,
        creator: ConditionCreator | None,
        role: str,
    ) -> Condition | None:
        if condition_config is not None and creator is not None:
            raise CodingError(
                f"Field '{self.value_host.name}': supply {role}_config or "
                f"{role}_creator, not both"
            )
        if condition_config is not None:
            return self.services.condition_factory.create(condition_config)
        if creator is not None:
            condition = creator(self.config)
            if condition is None:
                raise CodingError(
                    f"Field '{self.value_host.name}': {role}_creator returned None"
                )
            return condition
        return None

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    def condition_type(self) -> str:
        return self.condition.condition_type

    @property
    def error_code(self) -> str:
        return self.config.error_code or self.condition_type

    @property
    def category(self) -> ConditionCategory:
        condition_config = self.config.condition_config
        if condition_config is not None and condition_config.category is not None:
            return condition_config.category
        return getattr(self.condition, "category", ConditionCategory.UNDETERMINED)

    @property
    def sort_key(self) -> int:
        return CATEGORY_ORDER.get(self.category, len(CATEGORY_ORDER))

    # =========================================================================
    # Overridable settings
    # =========================================================================

    def _override_key(self, prop: str) -> str:
        return f"_IV[{self.error_code}].{prop}"

    def _setting(self, prop: str, configured: Any) -> Any:
        key = self._override_key(prop)
        if self.value_host.has_in_state(key):
            return self.value_host.get_from_state(key)
        return resolve_value(configured, self)

    def _override(self, prop: str, value: Any) -> None:
        if value is NO_CHANGE:
            return
        self.value_host.save_into_state(self._override_key(prop), value)

    @property
    def enabled(self) -> bool:
        return self._setting("enabled", self.config.enabled) is not False

    def set_enabled(self, enabled: Any) -> None:
        self._override("enabled", enabled)

    @property
    def severity(self) -> ValidationSeverity:
        severity = self._setting("severity", self.config.severity)
        if severity is None:
            if self.category in _SEVERE_BY_DEFAULT:
                return ValidationSeverity.SEVERE
            return ValidationSeverity.ERROR
        return ValidationSeverity(severity)

    def set_severity(self, severity: Any) -> None:
        if isinstance(severity, ValidationSeverity):
            severity = severity.value
        self._override("severity", severity)

    def set_error_message(self, message: Any = NO_CHANGE, l10n: Any = NO_CHANGE) -> None:
        self._override("errorMessage", message)
        self._override("errorMessageL10n", l10n)

    def set_summary_message(self, message: Any = NO_CHANGE, l10n: Any = NO_CHANGE) -> None:
        self._override("summaryMessage", message)
        self._override("summaryMessageL10n", l10n)

    def get_error_message_template(self) -> str:
        """The unrendered error message.

        Raises:
            CodingError: If neither configuration nor the localizer supply one
        """
        message = self._localized(
            self._setting("errorMessage", self.config.error_message),
            self._setting("errorMessageL10n", self.config.error_message_l10n),
        )
        if not message:
            message = self._default_message(self.services.text_localizer.get_error_message)
        if not message:
            raise CodingError(
                f"Field '{self.value_host.name}': no error message for '{self.error_code}'"
            )
        return message

    def get_summary_message_template(self) -> str:
        message = self._localized(
            self._setting("summaryMessage", self.config.summary_message),
            self._setting("summaryMessageL10n", self.config.summary_message_l10n),
        )
        if not message:
            message = self._default_message(self.services.text_localizer.get_summary_message)
        return message or self.get_error_message_template()

    def _localized(self, message: str | None, l10n: str | None) -> str | None:
        return self.services.text_localizer.localize(self.services.culture_id, l10n, message)

    def _default_message(self, lookup: Any) -> str | None:
        culture = self.services.culture_id
        data_type = self.value_host.data_type
        message = lookup(culture, self.error_code, data_type)
        if not message and self.error_code != self.condition_type:
            message = lookup(culture, self.condition_type, data_type)
        return message

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(
        self, options: ValidateOptions
    ) -> ValidatorValidateResult | Awaitable[ValidatorValidateResult] | None:
        """Run the condition unless one of the skip rules applies.

        Skip rules, in order: preliminary pass on a required rule; edit-time
        pass on a condition without edit-time support; disabled; enabler not
        matching.

        Returns:
            None when skipped, the result, or an awaitable of the result when
            the condition is asynchronous
        """
        if options.preliminary and self.category == ConditionCategory.REQUIRED:
            return None
        if options.during_edit and not supports_edit_time(self.condition):
            return None
        if not self.enabled:
            return None
        if self.enabler is not None and not self._enabler_matches():
            return None

        try:
            if options.during_edit:
                text = self.value_host.get_input_value()
                result = self.condition.evaluate_during_edits(
                    "" if text is None else text, self.value_host, self.services
                )
            else:
                result = self.condition.evaluate(self.value_host, self.value_host.manager)
        except CodingError:
            raise
        except Exception as exc:
            self.services.logger.error(
                "Condition '%s' on field '%s' failed: %s",
                self.condition_type,
                self.value_host.name,
                exc,
                exc_info=True,
            )
            return ValidatorValidateResult(ConditionEvaluateResult.UNDETERMINED)

        if inspect.isawaitable(result):
            return self._finish_async(result)
        return self._to_result(result)

    def _enabler_matches(self) -> bool:
        try:
            result = self.enabler.evaluate(self.value_host, self.value_host.manager)
        except CodingError:
            raise
        except Exception as exc:
            self.services.logger.error(
                "Enabler '%s' on field '%s' failed: %s",
                self.enabler.condition_type,
                self.value_host.name,
                exc,
                exc_info=True,
            )
            return False
        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise CodingError(
                f"Field '{self.value_host.name}': enablers must evaluate synchronously"
            )
        return result == ConditionEvaluateResult.MATCH

    async def _finish_async(self, awaitable: Awaitable[Any]) -> ValidatorValidateResult:
        try:
            result = await awaitable
        except Exception:
            self.services.logger.error(
                "Async condition '%s' on field '%s' failed",
                self.condition_type,
                self.value_host.name,
                exc_info=True,
            )
            raise
        return self._to_result(result)

    def _to_result(self, result: Any) -> ValidatorValidateResult:
        if not isinstance(result, ConditionEvaluateResult):
            raise CodingError(
                f"Condition '{self.condition_type}' returned {result!r}, "
                "expected a ConditionEvaluateResult"
            )
        if result == ConditionEvaluateResult.NO_MATCH:
            return ValidatorValidateResult(result, self.create_issue_found())
        return ValidatorValidateResult(result)

    # =========================================================================
    # Issues
    # =========================================================================

    def create_issue_found(self) -> IssueFound:
        return IssueFound(
            value_host_name=self.value_host.name,
            error_code=self.error_code,
            severity=self.severity,
            error_message=self._render(self.get_error_message_template()),
            summary_message=self._render(self.get_summary_message_template()),
        )

    def create_issue_for_business_logic(self, error: BusinessLogicError) -> IssueFound:
        """Build an issue for a business-logic error that carries this rule's code."""
        return IssueFound(
            value_host_name=self.value_host.name,
            error_code=self.error_code,
            severity=error.severity or self.severity,
            error_message=error.error_message
            or self._render(self.get_error_message_template()),
            summary_message=error.summary_message
            or self._render(self.get_summary_message_template()),
        )

    def _render(self, template: str) -> str:
        return self.services.message_token_resolver.resolve_tokens(
            template,
            self.value_host,
            self.value_host.manager,
            self.value_host,
            self.condition,
        )

    def gather_value_host_names(self, names: set[str]) -> None:
        """Add the names of the fields this rule reads to ``names``."""
        for condition in (self.condition, self.enabler):
            gather = getattr(condition, "gather_value_host_names", None)
            if gather is not None:
                gather(names, self.value_host.manager)

    def __repr__(self) -> str:
        return f"Validator({self.value_host.name!r}, {self.error_code!r})"
