"""Condition protocol and the condition factory.

Conditions are stateless tri-state predicates. They read other fields only
through the resolver handed to ``evaluate`` and never keep references to
value hosts, so one instance can be reused across evaluations.
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

from fieldcheck.validation.configs import ConditionConfig
from fieldcheck.validation.types import (
    CodingError,
    ConditionCategory,
    ConditionEvaluateResult,
)

if TYPE_CHECKING:
    from fieldcheck.validation.services import ValidationServices
    from fieldcheck.validation.value_hosts import ValueHost


class ValueHostResolver(Protocol):
    """Read access to the fields of a manager."""

    services: ValidationServices

    def get_value_host(self, name: str) -> ValueHost | None:
        ...


class Condition(Protocol):
    """Protocol that all conditions must implement."""

    condition_type: str
    category: ConditionCategory

    def evaluate(
        self,
        value_host: ValueHost | None,
        resolver: ValueHostResolver,
    ) -> ConditionEvaluateResult | Awaitable[ConditionEvaluateResult]:
        """Evaluate against the owning field's native value.

        Args:
            value_host: The field that owns the validator, or None for conditions
                that name their own field
            resolver: Lookup for other fields and services

        Returns:
            The result, or an awaitable resolving to it
        """
        ...


@runtime_checkable
class EditTimeCondition(Protocol):
    """A condition that can also judge the raw text while it is being typed."""

    def evaluate_during_edits(
        self,
        text: str,
        value_host: ValueHost,
        services: ValidationServices,
    ) -> ConditionEvaluateResult:
        ...


# Type-specific builder: ConditionConfig -> Condition
ConditionCreatorFn = Callable[[ConditionConfig], Condition]


def supports_edit_time(condition: Any) -> bool:
    return isinstance(condition, EditTimeCondition)


class ConditionFactory:
    """Registry of condition types.

    Lives in the services bundle rather than at class level so two managers
    can use different catalogues.

    Example:
        factory = ConditionFactory()
        factory.register("Even", lambda config: EvenCondition(config))
        condition = factory.create(ConditionConfig(type="Even"))
    """

    def __init__(self) -> None:
        self._creators: dict[str, ConditionCreatorFn] = {}

    def register(self, condition_type: str, creator: ConditionCreatorFn) -> None:
        """Register a creator by condition type.

        Idempotent - re-registering the same type is a no-op.
        """
        if condition_type in self._creators:
            return
        self._creators[condition_type] = creator

    def create(self, config: ConditionConfig) -> Condition:
        """Create a condition from its configuration.

        Raises:
            CodingError: If the type is not registered
        """
        creator = self._creators.get(config.type)
        if creator is None:
            raise CodingError(
                f"Condition type '{config.type}' is not registered. "
                "Available types: " + ", ".join(self.list_registered())
            )
        return creator(config)

    def is_registered(self, condition_type: str) -> bool:
        return condition_type in self._creators

    def list_registered(self) -> list[str]:
        return sorted(self._creators.keys())

    def clear(self) -> None:
        """Clear all registrations. Primarily for testing."""
        self._creators.clear()
