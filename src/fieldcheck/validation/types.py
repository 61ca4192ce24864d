"""Core types for the fieldcheck validation engine.

This module defines the foundational types shared by every layer:
- Enums for severity, field status and condition results
- Issue and business-logic error records
- The persistable per-field state snapshot
- Option and result records passed between validators, fields and the manager
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, TypeVar, Union

T = TypeVar("T")


class ValidationSeverity(Enum):
    """Severity of an issue.

    WARNING: Reported but never blocks saving
    ERROR: Blocks saving
    SEVERE: Blocks saving and stops the remaining validators of the field
    """

    WARNING = "warning"
    ERROR = "error"
    SEVERE = "severe"


class ValidationStatus(Enum):
    """Per-field validation status.

    DISABLED is derived from the field's enabled flag and never stored.
    """

    NOT_ATTEMPTED = "notAttempted"
    NEEDS_VALIDATION = "needsValidation"
    VALID = "valid"
    INVALID = "invalid"
    UNDETERMINED = "undetermined"
    DISABLED = "disabled"


class ConditionEvaluateResult(Enum):
    """Tri-state result of evaluating a condition."""

    MATCH = "match"
    NO_MATCH = "noMatch"
    UNDETERMINED = "undetermined"


class ConditionCategory(Enum):
    """Broad purpose of a condition, used for ordering and severity defaults."""

    REQUIRED = "required"
    DATA_TYPE_CHECK = "dataTypeCheck"
    COMPARISON = "comparison"
    CONTENTS = "contents"
    CHILDREN = "children"
    UNDETERMINED = "undetermined"


class ValueHostKind(Enum):
    """The closed set of field variants."""

    INPUT = "input"
    PROPERTY = "property"
    STATIC = "static"
    CALC = "calc"
    BUSINESS_LOGIC = "businessLogic"


class MissingCodeBehavior(Enum):
    """What set_issues_found does with an issue whose error code has no validator."""

    KEEP = "keep"
    OMIT = "omit"


class CodingError(Exception):
    """Raised for programmer errors: missing, conflicting or dangling configuration."""


class _NoChange:
    """Sentinel type for override setters that must leave the current value alone."""

    _instance: _NoChange | None = None

    def __new__(cls) -> _NoChange:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_CHANGE"


NO_CHANGE = _NoChange()

# A configuration property given either literally or as a function of its owner
ValueOrFunction = Union[T, Callable[[Any], T]]


def resolve_value(source: Any, context: Any) -> Any:
    """Resolve a literal-or-callable configuration property.

    Args:
        source: A literal value, a callable taking ``context``, or None
        context: The object handed to a callable source (usually a Validator)

    Returns:
        The literal, or the callable's return value
    """
    if callable(source):
        return source(context)
    return source


# =============================================================================
# Issues
# =============================================================================


@dataclass(frozen=True)
class IssueFound:
    """A rendered, field-scoped validation failure.

    Attributes:
        value_host_name: Name of the field the issue belongs to
        error_code: Unique within the field's issue list
        severity: WARNING never blocks saving, ERROR and SEVERE do
        error_message: Message shown next to the field
        summary_message: Message shown in a validation summary
    """

    value_host_name: str
    error_code: str
    severity: ValidationSeverity = ValidationSeverity.ERROR
    error_message: str = ""
    summary_message: str | None = None

    @property
    def blocks_save(self) -> bool:
        return self.severity != ValidationSeverity.WARNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "valueHostName": self.value_host_name,
            "errorCode": self.error_code,
            "severity": self.severity.value,
            "errorMessage": self.error_message,
            "summaryMessage": self.summary_message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IssueFound:
        return cls(
            value_host_name=data["valueHostName"],
            error_code=data["errorCode"],
            severity=ValidationSeverity(data.get("severity", "error")),
            error_message=data.get("errorMessage", ""),
            summary_message=data.get("summaryMessage"),
        )


@dataclass(frozen=True)
class BusinessLogicError:
    """An error supplied from outside the rule pipeline, e.g. by a server-side check.

    Attributes:
        error_message: Message shown next to the field
        summary_message: Message for a validation summary; defaults to error_message
        error_code: Optional code; when it matches a validator on the field,
            that validator's messages and severity are used
        severity: Defaults to ERROR
        associated_value_host_name: Field to attach to; None targets the
            business-logic pseudo-field
    """

    error_message: str
    summary_message: str | None = None
    error_code: str | None = None
    severity: ValidationSeverity | None = None
    associated_value_host_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"errorMessage": self.error_message}
        if self.summary_message is not None:
            result["summaryMessage"] = self.summary_message
        if self.error_code is not None:
            result["errorCode"] = self.error_code
        if self.severity is not None:
            result["severity"] = self.severity.value
        if self.associated_value_host_name is not None:
            result["associatedValueHostName"] = self.associated_value_host_name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BusinessLogicError:
        severity = data.get("severity")
        return cls(
            error_message=data.get("errorMessage", ""),
            summary_message=data.get("summaryMessage"),
            error_code=data.get("errorCode"),
            severity=ValidationSeverity(severity) if severity else None,
            associated_value_host_name=data.get("associatedValueHostName"),
        )


# =============================================================================
# Field state
# =============================================================================


@dataclass(frozen=True)
class FieldState:
    """Persistable snapshot of one field.

    Never mutated in place; the owning value host replaces it through
    ``dataclasses.replace`` and compares old and new to decide whether to notify.

    Attributes:
        name: Field name
        value: Current native value
        status: Stored status (never DISABLED)
        issues_found: Issues from the last validation, unique by error code
        business_logic_errors: Errors injected from outside the rule pipeline
        async_processing: True while an async condition is in flight
        corrected: True once an invalid field became valid again
        input_value: Raw text for input fields
        conversion_error: Message from a failed text-to-native conversion
        overrides: Runtime overrides of validator settings
        enabled: Runtime override of the field's enabled flag
        pending_correction: The field was invalid when its value last changed
        change_counter: Edits since the last reset; see ValueHost.is_changed
    """

    name: str
    value: Any = None
    status: ValidationStatus = ValidationStatus.NOT_ATTEMPTED
    issues_found: tuple[IssueFound, ...] = ()
    business_logic_errors: tuple[BusinessLogicError, ...] = ()
    async_processing: bool = False
    corrected: bool = False
    input_value: Any = None
    conversion_error: str | None = None
    overrides: dict[str, Any] = field(default_factory=dict)
    enabled: bool | None = None
    pending_correction: bool = False
    change_counter: int = 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "status": self.status.value,
            "issuesFound": [i.to_dict() for i in self.issues_found],
        }
        if self.business_logic_errors:
            result["businessLogicErrors"] = [
                e.to_dict() for e in self.business_logic_errors
            ]
        if self.async_processing:
            result["asyncProcessing"] = True
        if self.corrected:
            result["corrected"] = True
        if self.input_value is not None:
            result["inputValue"] = self.input_value
        if self.conversion_error is not None:
            result["conversionError"] = self.conversion_error
        if self.overrides:
            result["overrides"] = dict(self.overrides)
        if self.enabled is not None:
            result["enabled"] = self.enabled
        if self.pending_correction:
            result["pendingCorrection"] = True
        if self.change_counter:
            result["changeCounter"] = self.change_counter
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldState:
        return cls(
            name=data["name"],
            value=data.get("value"),
            status=ValidationStatus(data.get("status", "notAttempted")),
            issues_found=tuple(
                IssueFound.from_dict(i) for i in data.get("issuesFound") or []
            ),
            business_logic_errors=tuple(
                BusinessLogicError.from_dict(e)
                for e in data.get("businessLogicErrors") or []
            ),
            async_processing=data.get("asyncProcessing", False),
            corrected=data.get("corrected", False),
            input_value=data.get("inputValue"),
            conversion_error=data.get("conversionError"),
            overrides=dict(data.get("overrides") or {}),
            enabled=data.get("enabled"),
            pending_correction=data.get("pendingCorrection", False),
            change_counter=data.get("changeCounter", 0),
        )


# =============================================================================
# Options
# =============================================================================


@dataclass
class ValidateOptions:
    """Options for a validation pass.

    Attributes:
        group: Only fields in this group are validated (None means all)
        preliminary: Skip required rules; used before the user has typed anything
        during_edit: Evaluate the raw text being typed with edit-time conditions
        skip_callback: Suppress change callbacks for this call
    """

    group: str | None = None
    preliminary: bool = False
    during_edit: bool = False
    skip_callback: bool = False


@dataclass
class SetValueOptions:
    """Options for changing a field's value.

    Attributes:
        validate: Validate immediately after the change
        reset: Return the field to NOT_ATTEMPTED instead of NEEDS_VALIDATION
        skip_callback: Suppress change callbacks for this call
        conversion_error: Message describing a failed text-to-native conversion
    """

    validate: bool = False
    reset: bool = False
    skip_callback: bool = False
    conversion_error: str | None = None


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class ValidatorValidateResult:
    """Outcome of one validator."""

    condition_result: ConditionEvaluateResult
    issue_found: IssueFound | None = None


@dataclass
class ValueHostValidateResult:
    """Outcome of validating one field.

    Mutable: async validators finishing later update the same
    object, so a caller awaiting ``pending`` sees the final status.
    """

    status: ValidationStatus
    issues_found: list[IssueFound] | None = None
    pending: list[asyncio.Task] = field(default_factory=list)
    corrected: bool = False

    @property
    def async_processing(self) -> bool:
        return bool(self.pending)


@dataclass(frozen=True)
class ValidationState:
    """The manager-wide verdict.

    Attributes:
        is_valid: False when any enabled field has a blocking issue
        do_not_save: True when invalid, unvalidated or still processing
        issues_found: Flat list ordered by field, business-logic pseudo-field last
        async_processing: True while any async condition is in flight
    """

    is_valid: bool
    do_not_save: bool
    issues_found: tuple[IssueFound, ...] = ()
    async_processing: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "doNotSave": self.do_not_save,
            "issuesFound": [i.to_dict() for i in self.issues_found],
            "asyncProcessing": self.async_processing,
        }
