"""FieldCheck validation engine.

This package provides field-level validation orchestration:
- Conditions: tri-state predicates built by a ConditionFactory
- Validators: a condition plus enablement, severity and messages
- Value hosts: stateful fields that run their validators
- ValidationManager: owns the fields and aggregates one verdict
- ConfigMergeService: reconciles new configuration with running fields

Usage:
    from fieldcheck.validation import (
        ConditionConfig,
        FieldConfig,
        RuleConfig,
        ValidationManager,
        create_validation_services,
    )

    services = create_validation_services()
    manager = ValidationManager(services, [
        FieldConfig("Email", validator_configs=(
            RuleConfig(condition_config=ConditionConfig("RequireText")),
        )),
    ])
    verdict = manager.validate()
"""

from fieldcheck.validation.configs import ConditionConfig, FieldConfig, RuleConfig
from fieldcheck.validation.manager import (
    BUSINESS_LOGIC_ERRORS_NAME,
    ManagerCallbacks,
    ManagerState,
    ValidationManager,
)
from fieldcheck.validation.merge import ChangeAction, ConfigChange, ConfigMergeMode, ConfigMergeService
from fieldcheck.validation.scheduling import AsyncioScheduler, Debouncer, Scheduler
from fieldcheck.validation.services import (
    ComparersResult,
    DataTypeComparer,
    MessageTokenResolver,
    TextLocalizer,
    ValidationServices,
    create_validation_services,
)
from fieldcheck.validation.types import (
    NO_CHANGE,
    BusinessLogicError,
    CodingError,
    ConditionCategory,
    ConditionEvaluateResult,
    FieldState,
    IssueFound,
    MissingCodeBehavior,
    SetValueOptions,
    ValidateOptions,
    ValidationSeverity,
    ValidationState,
    ValidationStatus,
    ValueHostKind,
)
from fieldcheck.validation.validator import Validator
from fieldcheck.validation.value_hosts import (
    CalcValueHost,
    InputValueHost,
    StaticValueHost,
    ValidatableValueHost,
    ValueHost,
)

__all__ = [
    "BUSINESS_LOGIC_ERRORS_NAME",
    "NO_CHANGE",
    "AsyncioScheduler",
    "BusinessLogicError",
    "CalcValueHost",
    "ChangeAction",
    "CodingError",
    "ComparersResult",
    "ConditionCategory",
    "ConditionConfig",
    "ConditionEvaluateResult",
    "ConfigChange",
    "ConfigMergeMode",
    "ConfigMergeService",
    "DataTypeComparer",
    "Debouncer",
    "FieldConfig",
    "FieldState",
    "InputValueHost",
    "IssueFound",
    "ManagerCallbacks",
    "ManagerState",
    "MessageTokenResolver",
    "MissingCodeBehavior",
    "RuleConfig",
    "Scheduler",
    "SetValueOptions",
    "StaticValueHost",
    "TextLocalizer",
    "ValidatableValueHost",
    "ValidateOptions",
    "ValidationManager",
    "ValidationServices",
    "ValidationSeverity",
    "ValidationState",
    "ValidationStatus",
    "Validator",
    "ValueHost",
    "ValueHostKind",
    "create_validation_services",
]
