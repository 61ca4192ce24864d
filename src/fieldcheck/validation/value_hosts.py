"""Value hosts: the named, stateful fields owned by a ValidationManager.

Variants are a closed set selected by ``ValueHostKind``:
- StaticValueHost: holds a value, no validation
- CalcValueHost: value computed on demand from other fields
- ValidatableValueHost: property and business-logic fields with validators
- InputValueHost: a validatable field that also keeps the raw text being typed

Every state change goes through ``update_state``: the current FieldState is
replaced by a new one, and the manager is told only when the two differ.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import inspect
import logging
from collections.abc import Awaitable
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable

from fieldcheck.validation.configs import FieldConfig
from fieldcheck.validation.services import TokenLabelAndValue, to_display_label
from fieldcheck.validation.types import (
    BusinessLogicError,
    CodingError,
    FieldState,
    IssueFound,
    SetValueOptions,
    ValidateOptions,
    ValidationSeverity,
    ValidationStatus,
    ValidatorValidateResult,
    ValueHostKind,
    ValueHostValidateResult,
)
from fieldcheck.validation.validator import Validator

if TYPE_CHECKING:
    from fieldcheck.validation.manager import ValidationManager
    from fieldcheck.validation.services import ValidationServices

logger = logging.getLogger(__name__)

GENERATED_CODE_PREFIX = "GENERATED_"


def values_differ(old: Any, new: Any) -> bool:
    """Deep comparison; values that cannot be compared count as different."""
    if old is new:
        return False
    try:
        return bool(old != new) or type(old) is not type(new)
    except (TypeError, ValueError):
        return True


def _counted(state: FieldState, changed: bool, options: SetValueOptions) -> FieldState:
    if options.reset:
        return replace(state, change_counter=0)
    if changed:
        return replace(state, change_counter=state.change_counter + 1)
    return state


# =============================================================================
# Base
# =============================================================================


class ValueHost:
    """Shared behaviour of every field variant."""

    def __init__(self, manager: ValidationManager, config: FieldConfig, state: FieldState):
        self.manager = manager
        self.config = config
        self.kind = config.kind
        self._state = state

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def data_type(self) -> str | None:
        return self.config.data_type

    @property
    def services(self) -> ValidationServices:
        return self.manager.services

    @property
    def state(self) -> FieldState:
        """A copy of the current state; edits to it have no effect on the field."""
        return copy.deepcopy(self._state)

    @property
    def is_enabled(self) -> bool:
        if self._state.enabled is not None:
            return self._state.enabled
        return self.config.is_enabled

    @property
    def conversion_error(self) -> str | None:
        return self._state.conversion_error

    def get_value(self) -> Any:
        """A copy of the value; change it through set_value."""
        return copy.deepcopy(self._state.value)

    @property
    def is_changed(self) -> bool:
        """True once the value was edited since creation or the last reset."""
        return self._state.change_counter > 0

    def get_input_value(self) -> Any:
        return None

    def get_label(self) -> str:
        fallback = self.config.label or to_display_label(self.name)
        return self.services.text_localizer.localize(
            self.services.culture_id, self.config.label_l10n, fallback
        ) or fallback

    def update_state(
        self,
        updater: Callable[[FieldState], FieldState],
        options: ValidateOptions | SetValueOptions | None = None,
    ) -> bool:
        """Replace the state with ``updater(current)``.

        Returns:
            True when the new state differs and the manager was told
        """
        updated = updater(self._state)
        if updated == self._state:
            return False
        self._state = updated
        self.manager.value_host_state_changed(self, options)
        return True

    def set_value(self, value: Any, options: SetValueOptions | None = None) -> None:
        options = options or SetValueOptions()
        old_value = self._state.value
        changed = values_differ(old_value, value)
        stored = copy.deepcopy(value)
        self.update_state(
            lambda s: _counted(
                replace(s, value=stored, conversion_error=options.conversion_error),
                changed,
                options,
            ),
            options,
        )
        if changed:
            self.manager.value_changed(self, old_value, options)

    def set_enabled(self, enabled: bool | None, options: ValidateOptions | None = None) -> None:
        """Override the configured enabled flag; None returns to the configuration."""
        self.update_state(lambda s: replace(s, enabled=enabled), options)

    # Overrides of validator settings live in the state so they persist

    def has_in_state(self, key: str) -> bool:
        return key in self._state.overrides

    def get_from_state(self, key: str) -> Any:
        return self._state.overrides.get(key)

    def save_into_state(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``; None removes the key."""

        def update(state: FieldState) -> FieldState:
            overrides = dict(state.overrides)
            if value is None:
                overrides.pop(key, None)
            else:
                overrides[key] = value
            return replace(state, overrides=overrides)

        self.update_state(update)

    def get_values_for_tokens(self, value_host: ValueHost, resolver: Any) -> list[TokenLabelAndValue]:
        return [
            TokenLabelAndValue("Label", self.get_label(), purpose="label"),
            TokenLabelAndValue("Value", self.get_value()),
            TokenLabelAndValue("ConversionError", self.conversion_error, purpose="message"),
        ]

    def other_value_host_changed(self, name: str, revalidate: bool) -> None:
        """Called by the manager when another field's value changed."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class StaticValueHost(ValueHost):
    """A field holding a value supplied by the application."""


class CalcValueHost(ValueHost):
    """A field whose value is computed from other fields."""

    def get_value(self) -> Any:
        if self.config.calc_fn is None:
            return None
        return self.config.calc_fn(self, self.manager)

    def set_value(self, value: Any, options: SetValueOptions | None = None) -> None:
        raise CodingError(f"Calculated field '{self.name}' does not accept values")


# =============================================================================
# Validatable
# =============================================================================


class ValidatableValueHost(ValueHost):
    """A field with validators and a validation status.

    Used directly for property and business-logic fields. Validators run in
    category order (required rules first, then data type checks); a SEVERE
    issue stops the remaining validators.
    """

    def __init__(self, manager: ValidationManager, config: FieldConfig, state: FieldState):
        super().__init__(manager, config, state)
        validators = [Validator(self, rc, manager.services) for rc in config.validator_configs]
        codes = [v.error_code for v in validators]
        duplicates = sorted({c for c in codes if codes.count(c) > 1})
        if duplicates:
            raise CodingError(
                f"Field '{self.name}': duplicate error codes {', '.join(duplicates)}"
            )
        self.validators: list[Validator] = sorted(validators, key=lambda v: v.sort_key)
        # Bumped whenever a validation pass starts or the value changes;
        # async results from an older epoch are discarded
        self._epoch = 0
        self._dependencies: frozenset[str] | None = None

    # =========================================================================
    # Derived properties
    # =========================================================================

    @property
    def status(self) -> ValidationStatus:
        if not self.is_enabled:
            return ValidationStatus.DISABLED
        if any(i.severity != ValidationSeverity.WARNING for i in self._combined_issues()):
            return ValidationStatus.INVALID
        if self._state.status == ValidationStatus.INVALID:
            # A business-logic warning replaced the only blocking issue
            return ValidationStatus.VALID
        return self._state.status

    @property
    def is_valid(self) -> bool:
        return self.status != ValidationStatus.INVALID

    @property
    def async_processing(self) -> bool:
        return self.is_enabled and self._state.async_processing

    @property
    def do_not_save(self) -> bool:
        if not self.is_enabled:
            return False
        return self._state.async_processing or self.status in (
            ValidationStatus.INVALID,
            ValidationStatus.NEEDS_VALIDATION,
        )

    @property
    def corrected(self) -> bool:
        return self.is_enabled and self._state.corrected

    @property
    def dependencies(self) -> frozenset[str]:
        """Names of the other fields this field's rules read; built once."""
        if self._dependencies is None:
            names: set[str] = set()
            for validator in self.validators:
                validator.gather_value_host_names(names)
            names.discard(self.name)
            self._dependencies = frozenset(names)
        return self._dependencies

    def get_validator(self, error_code: str) -> Validator | None:
        for validator in self.validators:
            if validator.error_code == error_code:
                return validator
        return None

    def adopt_state(self, cleanup: Callable[[FieldState, list[str]], FieldState]) -> None:
        """Fit a state carried over from an older config to this field's rules.

        Only used while the manager rebuilds the field, so nobody is notified.
        """
        self._state = cleanup(self._state, [v.error_code for v in self.validators])

    def detach(self) -> None:
        """Ignore results of async validators still running; the manager dropped this host."""
        self._epoch += 1

    # =========================================================================
    # Issues
    # =========================================================================

    def get_issues_found(self, group: str | None = None) -> list[IssueFound]:
        """Issues to show for this field; disabled fields have none."""
        if not self.is_enabled or not self.config.in_group(group):
            return []
        return self._combined_issues()

    def _combined_issues(self) -> list[IssueFound]:
        issues = {i.error_code: i for i in self._state.issues_found}
        for issue in self._business_logic_issues():
            issues[issue.error_code] = issue
        return list(issues.values())

    def _business_logic_issues(self) -> list[IssueFound]:
        issues = []
        for index, error in enumerate(self._state.business_logic_errors):
            validator = self.get_validator(error.error_code) if error.error_code else None
            if validator is not None:
                issues.append(validator.create_issue_for_business_logic(error))
                continue
            issues.append(
                IssueFound(
                    value_host_name=self.name,
                    error_code=error.error_code or f"{GENERATED_CODE_PREFIX}{index}",
                    severity=error.severity or ValidationSeverity.ERROR,
                    error_message=error.error_message,
                    summary_message=error.summary_message or error.error_message,
                )
            )
        return issues

    def set_business_logic_error(
        self, error: BusinessLogicError, options: ValidateOptions | None = None
    ) -> bool:
        """Add an injected error, replacing one with the same error code.

        Returns:
            True when the state changed
        """
        errors = [
            e
            for e in self._state.business_logic_errors
            if not error.error_code or e.error_code != error.error_code
        ]
        errors.append(error)
        changed = self.update_state(
            lambda s: replace(s, business_logic_errors=tuple(errors)), options
        )
        if changed:
            self.manager.notify_validation_state_changed(None, options)
        return changed

    def clear_business_logic_errors(self, options: ValidateOptions | None = None) -> bool:
        changed = self.update_state(lambda s: replace(s, business_logic_errors=()), options)
        if changed:
            self.manager.notify_validation_state_changed(None, options)
        return changed

    def set_issues_found(
        self, issues: list[IssueFound], options: ValidateOptions | None = None
    ) -> bool:
        """Merge externally computed issues into the issue list by error code."""
        merged = {i.error_code: i for i in self._state.issues_found}
        for issue in issues:
            merged[issue.error_code] = replace(issue, value_host_name=self.name)
        blocking = any(i.severity != ValidationSeverity.WARNING for i in merged.values())

        def update(state: FieldState) -> FieldState:
            if blocking:
                status = ValidationStatus.INVALID
            elif state.status == ValidationStatus.INVALID:
                status = ValidationStatus.VALID
            else:
                status = state.status
            return replace(state, issues_found=tuple(merged.values()), status=status)

        changed = self.update_state(update, options)
        if changed:
            self.manager.notify_validation_state_changed(None, options)
        return changed

    # =========================================================================
    # Value changes
    # =========================================================================

    def set_value(self, value: Any, options: SetValueOptions | None = None) -> None:
        """Change the value.

        A different value moves the field to NEEDS_VALIDATION and drops its
        issues; ``options.reset`` moves it to NOT_ATTEMPTED instead.
        """
        options = options or SetValueOptions()
        old_value = self._state.value
        changed = values_differ(old_value, value)
        stored = copy.deepcopy(value)
        self._apply_change(
            lambda s: replace(s, value=stored, conversion_error=options.conversion_error),
            changed,
            options,
        )
        if changed:
            self.manager.value_changed(self, old_value, options)
        self._after_change(changed, options, ValidateOptions(skip_callback=options.skip_callback))

    def _apply_change(
        self,
        change: Callable[[FieldState], FieldState],
        changed: bool,
        options: SetValueOptions,
    ) -> None:
        if changed or options.reset:
            self._epoch += 1

        def update(state: FieldState) -> FieldState:
            state = _counted(change(state), changed, options)
            if options.reset:
                return replace(
                    state,
                    status=ValidationStatus.NOT_ATTEMPTED,
                    issues_found=(),
                    async_processing=False,
                    corrected=False,
                    pending_correction=False,
                )
            if changed:
                return self._demoted(state)
            return state

        self.update_state(update, options)

    def _after_change(
        self, changed: bool, options: SetValueOptions, validate_options: ValidateOptions
    ) -> None:
        if options.validate:
            self.validate(validate_options)
        elif changed or options.reset:
            self.manager.notify_validation_state_changed(None, validate_options)

    def _demoted(self, state: FieldState) -> FieldState:
        return replace(
            state,
            status=ValidationStatus.NEEDS_VALIDATION,
            issues_found=(),
            async_processing=False,
            pending_correction=state.pending_correction
            or state.status == ValidationStatus.INVALID,
        )

    def set_enabled(self, enabled: bool | None, options: ValidateOptions | None = None) -> None:
        was_enabled = self.is_enabled
        super().set_enabled(enabled, options)
        if was_enabled and not self.is_enabled:
            self.clear_validation(options)
        elif was_enabled != self.is_enabled:
            self.manager.notify_validation_state_changed(None, options)

    def other_value_host_changed(self, name: str, revalidate: bool) -> None:
        """React to a change of a field this field's rules may read.

        Fields that were never validated ignore it; so does a field already
        waiting for validation unless revalidation is requested.
        """
        if not self.is_enabled:
            return
        status = self._state.status
        if status == ValidationStatus.NOT_ATTEMPTED:
            return
        if not revalidate and status == ValidationStatus.NEEDS_VALIDATION:
            return
        if name not in self.dependencies:
            return
        if revalidate:
            self.validate()
            return
        self._epoch += 1
        if self.update_state(self._demoted):
            self.manager.notify_validation_state_changed(None, None)

    # =========================================================================
    # Validation
    # =========================================================================

    def clear_validation(self, options: ValidateOptions | None = None) -> bool:
        """Return to NOT_ATTEMPTED and drop issues; business-logic errors are kept."""
        self._epoch += 1
        changed = self.update_state(
            lambda s: replace(
                s,
                status=ValidationStatus.NOT_ATTEMPTED,
                issues_found=(),
                async_processing=False,
                corrected=False,
                pending_correction=False,
            ),
            options,
        )
        if changed:
            self.manager.notify_validation_state_changed(None, options)
        return changed

    def validate(self, options: ValidateOptions | None = None) -> ValueHostValidateResult | None:
        """Run the validators and store the outcome.

        Returns:
            None when the field is disabled, outside the requested group, or
            no validator produced a result and there is nothing to report;
            otherwise the result. Its ``pending`` list holds tasks for async
            validators, and the object is updated as they finish.

        Raises:
            CodingError: On configuration faults, or when an async condition
                runs without an event loop
        """
        options = options or ValidateOptions()
        if not self.is_enabled:
            self.clear_validation(options)
            return None
        if not self.config.in_group(options.group):
            return None

        self._epoch += 1
        epoch = self._epoch
        result = ValueHostValidateResult(status=ValidationStatus.UNDETERMINED)
        issues: dict[str, IssueFound] = {}
        contributed = False

        for validator in self.validators:
            outcome = validator.validate(options)
            if outcome is None:
                continue
            contributed = True
            if inspect.isawaitable(outcome):
                result.pending.append(self._start_async(outcome, epoch, result))
                continue
            if outcome.issue_found is not None:
                issues[outcome.issue_found.error_code] = outcome.issue_found
                if outcome.issue_found.severity == ValidationSeverity.SEVERE:
                    break

        blocking = any(i.severity != ValidationSeverity.WARNING for i in issues.values())
        pending = bool(result.pending)

        def update(state: FieldState) -> FieldState:
            was_invalid = state.status == ValidationStatus.INVALID or state.pending_correction
            if blocking:
                status, corrected, pending_correction = ValidationStatus.INVALID, False, False
            elif pending:
                status, corrected, pending_correction = (
                    ValidationStatus.UNDETERMINED,
                    state.corrected,
                    was_invalid,
                )
            else:
                status = ValidationStatus.VALID
                corrected, pending_correction = was_invalid or state.corrected, False
            return replace(
                state,
                status=status,
                issues_found=tuple(issues.values()),
                async_processing=pending,
                corrected=corrected,
                pending_correction=pending_correction,
            )

        self.update_state(update, options)
        self.manager.notify_validation_state_changed(None, options)

        combined = self._combined_issues()
        result.status = self.status
        result.issues_found = combined or None
        result.corrected = self._state.corrected
        if not contributed and not pending and not combined:
            return None
        return result

    async def validate_async(
        self, options: ValidateOptions | None = None
    ) -> ValueHostValidateResult | None:
        """Validate and wait for async validators.

        Raises:
            Exception: Whatever a failing async condition raised
        """
        result = self.validate(options)
        if result is not None and result.pending:
            await asyncio.gather(*list(result.pending))
        return result

    def _start_async(
        self,
        awaitable: Awaitable[ValidatorValidateResult],
        epoch: int,
        result: ValueHostValidateResult,
    ) -> asyncio.Task:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise CodingError(
                f"Field '{self.name}' has an asynchronous condition; "
                "validate inside a running event loop (validate_async)"
            ) from None
        task = loop.create_task(awaitable)
        task.add_done_callback(
            functools.partial(self._async_done, epoch=epoch, result=result)
        )
        return task

    def _async_done(
        self, task: asyncio.Task, *, epoch: int, result: ValueHostValidateResult
    ) -> None:
        if task in result.pending:
            result.pending.remove(task)
        failed = task.cancelled() or task.exception() is not None
        if epoch != self._epoch:
            logger.debug("Discarding stale async result for field '%s'", self.name)
            return

        issue = None if failed else task.result().issue_found
        issues = {i.error_code: i for i in self._state.issues_found}
        if issue is not None:
            issues[issue.error_code] = issue
        blocking = any(i.severity != ValidationSeverity.WARNING for i in issues.values())
        still_pending = bool(result.pending)

        def update(state: FieldState) -> FieldState:
            if blocking:
                return replace(
                    state,
                    status=ValidationStatus.INVALID,
                    issues_found=tuple(issues.values()),
                    async_processing=still_pending,
                    corrected=False,
                    pending_correction=False,
                )
            if still_pending:
                return replace(state, issues_found=tuple(issues.values()))
            if failed:
                # The caller awaiting the task sees the exception; the status stays open
                return replace(state, async_processing=False)
            return replace(
                state,
                status=ValidationStatus.VALID,
                issues_found=tuple(issues.values()),
                async_processing=False,
                corrected=state.pending_correction or state.corrected,
                pending_correction=False,
            )

        self.update_state(update)
        result.status = self.status
        result.issues_found = self._combined_issues() or None
        result.corrected = self._state.corrected
        self.manager.notify_validation_state_changed(None, None)


class InputValueHost(ValidatableValueHost):
    """A validatable field that also keeps the raw text the user is typing."""

    def get_input_value(self) -> Any:
        return copy.deepcopy(self._state.input_value)

    def set_input_value(self, text: Any, options: SetValueOptions | None = None) -> None:
        """Change the raw text.

        With ``options.validate`` the field is validated in edit-time mode.
        """
        options = options or SetValueOptions()
        changed = values_differ(self._state.input_value, text)
        stored = copy.deepcopy(text)
        self._apply_change(lambda s: replace(s, input_value=stored), changed, options)
        self._after_change(
            changed,
            options,
            ValidateOptions(during_edit=True, skip_callback=options.skip_callback),
        )

    def set_values(
        self, value: Any, text: Any, options: SetValueOptions | None = None
    ) -> None:
        """Change the native value and the raw text together."""
        options = options or SetValueOptions()
        self.set_input_value(text, replace(options, validate=False))
        self.set_value(value, options)


# =============================================================================
# Factory
# =============================================================================

_VALUE_HOST_CLASSES: dict[ValueHostKind, type[ValueHost]] = {
    ValueHostKind.INPUT: InputValueHost,
    ValueHostKind.PROPERTY: ValidatableValueHost,
    ValueHostKind.BUSINESS_LOGIC: ValidatableValueHost,
    ValueHostKind.STATIC: StaticValueHost,
    ValueHostKind.CALC: CalcValueHost,
}


def create_default_state(config: FieldConfig) -> FieldState:
    return FieldState(name=config.name, value=copy.deepcopy(config.initial_value))


def create_value_host(
    manager: ValidationManager,
    config: FieldConfig,
    state: FieldState | None = None,
) -> ValueHost:
    """Build the variant for ``config.kind``.

    Raises:
        CodingError: If a non-validatable field is given validators
    """
    cls = _VALUE_HOST_CLASSES[config.kind]
    if config.validator_configs and not issubclass(cls, ValidatableValueHost):
        raise CodingError(
            f"Field '{config.name}': {config.kind.value} fields do not take validators"
        )
    if state is None:
        state = create_default_state(config)
    elif state.name != config.name:
        state = replace(state, name=config.name)
    return cls(manager, config, state)
