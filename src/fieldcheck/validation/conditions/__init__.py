"""Condition protocol and factory.

The canned catalogue lives in ``fieldcheck.validation.conditions.canned``
and is registered by ``create_validation_services``.
"""

from fieldcheck.validation.conditions.base import (
    Condition,
    ConditionFactory,
    EditTimeCondition,
    ValueHostResolver,
    supports_edit_time,
)

__all__ = [
    "Condition",
    "ConditionFactory",
    "EditTimeCondition",
    "ValueHostResolver",
    "supports_edit_time",
]
