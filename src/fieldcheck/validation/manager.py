"""ValidationManager: owns the fields and rolls their results into one verdict.

Responsibilities:
1. Build value hosts from FieldConfigs, restoring saved state
2. Run full or group-scoped validation passes
3. Route business-logic errors and imported issues to their fields
4. Tell dependent fields about value changes
5. Coalesce verdict notifications through a Debouncer
6. Apply new configuration through the ConfigMergeService
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from typing import Any, Callable, TypeVar

from fieldcheck.validation.configs import FieldConfig
from fieldcheck.validation.merge import ChangeAction, ConfigChange, ConfigMergeMode, ConfigMergeService
from fieldcheck.validation.scheduling import Debouncer
from fieldcheck.validation.services import ValidationServices
from fieldcheck.validation.types import (
    BusinessLogicError,
    CodingError,
    FieldState,
    IssueFound,
    MissingCodeBehavior,
    SetValueOptions,
    ValidateOptions,
    ValidationState,
    ValidationStatus,
    ValueHostKind,
)
from fieldcheck.validation.value_hosts import (
    CalcValueHost,
    InputValueHost,
    StaticValueHost,
    ValidatableValueHost,
    ValueHost,
    create_value_host,
)

logger = logging.getLogger(__name__)

BUSINESS_LOGIC_ERRORS_NAME = "*"

VH = TypeVar("VH", bound=ValueHost)

Options = ValidateOptions | SetValueOptions | None


# =============================================================================
# Manager types
# =============================================================================


@dataclass(frozen=True)
class ManagerState:
    """Opaque manager-level counters persisted next to the field states."""

    state_change_counter: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"stateChangeCounter": self.state_change_counter}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ManagerState:
        return cls(state_change_counter=(data or {}).get("stateChangeCounter", 0))


@dataclass
class ManagerCallbacks:
    """Optional change callbacks.

    Attributes:
        on_value_host_state_changed: (value_host, state) after a field's state changed
        on_validation_state_changed: (manager, verdict), coalesced
        on_value_changed: (value_host, old_value) after a field's value changed
        on_configs_changed: (manager, configs) after a configuration change
        on_manager_state_changed: (manager, manager_state)
    """

    on_value_host_state_changed: Callable[[ValueHost, FieldState], None] | None = None
    on_validation_state_changed: Callable[[ValidationManager, ValidationState], None] | None = None
    on_value_changed: Callable[[ValueHost, Any], None] | None = None
    on_configs_changed: Callable[[ValidationManager, list[FieldConfig]], None] | None = None
    on_manager_state_changed: Callable[[ValidationManager, ManagerState], None] | None = None


def _skipped(options: Options) -> bool:
    return options is not None and options.skip_callback


def _to_field_state(state: FieldState | Mapping[str, Any]) -> FieldState:
    if isinstance(state, FieldState):
        return state
    return FieldState.from_dict(dict(state))


def _settled(state: FieldState) -> FieldState:
    """Demote a state whose async evaluation belongs to a value host that is gone."""
    if not state.async_processing:
        return state
    return replace(state, async_processing=False, status=ValidationStatus.NEEDS_VALIDATION)


# =============================================================================
# Manager
# =============================================================================


class ValidationManager:
    """Owns the fields of one form or record and aggregates their validation.

    Example:
        services = create_validation_services()
        manager = ValidationManager(services, [
            FieldConfig("Age", validator_configs=(RuleConfig(ConditionConfig("NotNull")),)),
        ])
        manager.set_value("Age", None)
        verdict = manager.validate()
    """

    def __init__(
        self,
        services: ValidationServices,
        value_host_configs: Iterable[FieldConfig] = (),
        snapshot: Mapping[str, Any] | None = None,
        callbacks: ManagerCallbacks | None = None,
        notify_delay_ms: int | None = None,
    ):
        """Initialize the manager.

        Args:
            services: Collaborator services
            value_host_configs: Field configurations, in display order
            snapshot: A dict from ``capture_state()`` to restore
            callbacks: Change callbacks
            notify_delay_ms: Coalescing window for verdict notifications;
                None uses the services default, 0 notifies on every request.
                The default AsyncioScheduler can only wait inside a running
                event loop; without one every request fires at once, so
                synchronous callers get no coalescing.

        Raises:
            CodingError: On invalid configuration
        """
        self.services = services
        self.callbacks = callbacks or ManagerCallbacks()
        self.merge_service = ConfigMergeService()
        self._value_hosts: dict[str, ValueHost] = {}
        self._configs: dict[str, FieldConfig] = {}
        self._disposed = False

        snapshot = snapshot or {}
        self._state = ManagerState.from_dict(snapshot.get("orchestratorState"))
        self._saved_states: dict[str, FieldState] = {}
        for raw in snapshot.get("fieldStates") or []:
            state = _settled(_to_field_state(raw))
            self._saved_states[state.name] = state

        delay = services.notify_delay_ms if notify_delay_ms is None else notify_delay_ms
        self.notify_delay_ms = delay
        self._debouncer: Debouncer | None = None
        if delay > 0:
            self._debouncer = Debouncer(
                self._fire_validation_state_changed, delay, services.scheduler
            )

        for config in value_host_configs:
            if config.name in self._configs:
                raise CodingError(f"Field '{config.name}' is configured more than once")
            self._add(config, self._saved_states.get(config.name))
        saved_bl = self._saved_states.get(BUSINESS_LOGIC_ERRORS_NAME)
        if saved_bl is not None and saved_bl.business_logic_errors:
            self._ensure_business_logic_host(saved_bl)
        self._check_references()

    # =========================================================================
    # Field access
    # =========================================================================

    def get_value_host(self, name: str) -> ValueHost | None:
        return self._value_hosts.get(name)

    def get_validatable_value_host(self, name: str) -> ValidatableValueHost | None:
        return self._typed(name, ValidatableValueHost)

    def get_input_value_host(self, name: str) -> InputValueHost | None:
        return self._typed(name, InputValueHost)

    def get_static_value_host(self, name: str) -> StaticValueHost | None:
        return self._typed(name, StaticValueHost)

    def get_calc_value_host(self, name: str) -> CalcValueHost | None:
        return self._typed(name, CalcValueHost)

    def _typed(self, name: str, cls: type[VH]) -> VH | None:
        value_host = self._value_hosts.get(name)
        return value_host if isinstance(value_host, cls) else None

    @property
    def vh(self) -> ValueHostAccessor:
        """Typed field lookup that raises instead of returning None."""
        return ValueHostAccessor(self)

    @property
    def value_hosts(self) -> list[ValueHost]:
        return list(self._ordered_hosts())

    @property
    def value_host_configs(self) -> list[FieldConfig]:
        return list(self._configs.values())

    def get_value(self, name: str) -> Any:
        return self.vh.any(name).get_value()

    def set_value(self, name: str, value: Any, options: SetValueOptions | None = None) -> None:
        self.vh.any(name).set_value(value, options)

    def _ordered_hosts(self) -> Iterator[ValueHost]:
        pseudo = None
        for name, value_host in self._value_hosts.items():
            if name == BUSINESS_LOGIC_ERRORS_NAME:
                pseudo = value_host
            else:
                yield value_host
        if pseudo is not None:
            yield pseudo

    def _validatables(self) -> Iterator[ValidatableValueHost]:
        for value_host in self._ordered_hosts():
            if isinstance(value_host, ValidatableValueHost):
                yield value_host

    # =========================================================================
    # Verdict
    # =========================================================================

    @property
    def is_valid(self) -> bool:
        return all(vh.is_valid for vh in self._validatables())

    @property
    def do_not_save(self) -> bool:
        return any(vh.do_not_save for vh in self._validatables())

    @property
    def async_processing(self) -> bool:
        return any(vh.async_processing for vh in self._validatables())

    @property
    def validation_state(self) -> ValidationState:
        return self.get_validation_state()

    def get_validation_state(self, group: str | None = None) -> ValidationState:
        return ValidationState(
            is_valid=self.is_valid,
            do_not_save=self.do_not_save,
            issues_found=tuple(self.get_issues_found(group)),
            async_processing=self.async_processing,
        )

    def get_issues_found(self, group: str | None = None) -> list[IssueFound]:
        """All issues, ordered by field with the business-logic pseudo-field last."""
        issues: list[IssueFound] = []
        for value_host in self._validatables():
            issues.extend(value_host.get_issues_found(group))
        return issues

    def get_issues_for(self, name: str) -> list[IssueFound]:
        value_host = self.get_validatable_value_host(name)
        return value_host.get_issues_found() if value_host is not None else []

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, options: ValidateOptions | None = None) -> ValidationState:
        """Validate every field (or one group) and notify immediately.

        Async conditions keep running after this returns; use
        ``validate_async`` to wait for them.
        """
        options = options or ValidateOptions()
        self._validate_all(options)
        verdict = self.get_validation_state(options.group)
        self.notify_validation_state_changed(verdict, options, force=True)
        return verdict

    async def validate_async(self, options: ValidateOptions | None = None) -> ValidationState:
        """Validate and wait for async conditions.

        Raises:
            Exception: Whatever a failing async condition raised
        """
        options = options or ValidateOptions()
        pending = self._validate_all(options)
        if pending:
            await asyncio.gather(*pending)
        verdict = self.get_validation_state(options.group)
        self.notify_validation_state_changed(verdict, options, force=True)
        return verdict

    def _validate_all(self, options: ValidateOptions) -> list[asyncio.Task]:
        pending: list[asyncio.Task] = []
        for value_host in self._validatables():
            result = value_host.validate(options)
            if result is not None:
                pending.extend(result.pending)
        return pending

    def clear_validation(self, options: ValidateOptions | None = None) -> bool:
        changed = False
        for value_host in self._validatables():
            changed = value_host.clear_validation(options) or changed
        self.notify_validation_state_changed(None, options, force=True)
        return changed

    # =========================================================================
    # Business logic errors and imported issues
    # =========================================================================

    def set_business_logic_errors(
        self,
        errors: Iterable[BusinessLogicError] | None,
        options: ValidateOptions | None = None,
    ) -> bool:
        """Replace all business-logic errors.

        Errors are routed to the field named by ``associated_value_host_name``;
        the rest go to the pseudo-field ``"*"``, which exists only while it
        holds errors. None or an empty list clears everything.

        Returns:
            True when any field's state changed
        """
        changed = False
        for value_host in list(self._validatables()):
            changed = value_host.clear_business_logic_errors(options) or changed
        for error in errors or []:
            changed = self._route_business_logic_error(error, options) or changed
        self._drop_empty_business_logic_host()
        self.notify_validation_state_changed(None, options, force=True)
        return changed

    def set_business_logic_error(
        self, error: BusinessLogicError, options: ValidateOptions | None = None
    ) -> bool:
        """Add one business-logic error, keeping the others."""
        changed = self._route_business_logic_error(error, options)
        self.notify_validation_state_changed(None, options, force=True)
        return changed

    def _route_business_logic_error(
        self, error: BusinessLogicError, options: ValidateOptions | None
    ) -> bool:
        name = error.associated_value_host_name
        value_host = self.get_validatable_value_host(name) if name else None
        if value_host is None:
            if name:
                logger.warning(
                    "Business logic error for unknown field '%s' moved to '%s'",
                    name, BUSINESS_LOGIC_ERRORS_NAME,
                )
            value_host = self._ensure_business_logic_host()
        return value_host.set_business_logic_error(error, options)

    def _ensure_business_logic_host(
        self, state: FieldState | None = None
    ) -> ValidatableValueHost:
        value_host = self.get_validatable_value_host(BUSINESS_LOGIC_ERRORS_NAME)
        if value_host is None:
            config = FieldConfig(
                name=BUSINESS_LOGIC_ERRORS_NAME, kind=ValueHostKind.BUSINESS_LOGIC
            )
            value_host = create_value_host(self, config, state)
            self._value_hosts[BUSINESS_LOGIC_ERRORS_NAME] = value_host
        return value_host

    def _drop_empty_business_logic_host(self) -> None:
        value_host = self.get_validatable_value_host(BUSINESS_LOGIC_ERRORS_NAME)
        if value_host is not None and not value_host.state.business_logic_errors:
            del self._value_hosts[BUSINESS_LOGIC_ERRORS_NAME]

    def set_issues_found(
        self,
        issues: Iterable[IssueFound],
        missing_code_behavior: MissingCodeBehavior = MissingCodeBehavior.KEEP,
        options: ValidateOptions | None = None,
    ) -> bool:
        """Import issues computed elsewhere, e.g. by a server.

        Args:
            issues: Issues to merge, routed by ``value_host_name``
            missing_code_behavior: KEEP accepts issues whose error code has no
                validator on the field; OMIT drops them
            options: skip_callback suppresses notifications

        Returns:
            True when any field's state changed
        """
        by_host: dict[str, list[IssueFound]] = {}
        changed = False
        for issue in issues:
            name = issue.value_host_name
            if name == BUSINESS_LOGIC_ERRORS_NAME:
                error = BusinessLogicError(
                    error_message=issue.error_message,
                    summary_message=issue.summary_message,
                    error_code=issue.error_code,
                    severity=issue.severity,
                )
                changed = self._route_business_logic_error(error, options) or changed
                continue
            value_host = self.get_validatable_value_host(name)
            if value_host is None:
                logger.warning("Ignoring issue '%s' for unknown field '%s'", issue.error_code, name)
                continue
            if (
                missing_code_behavior == MissingCodeBehavior.OMIT
                and value_host.get_validator(issue.error_code) is None
            ):
                logger.debug(
                    "Omitting issue '%s' on '%s': no such validator", issue.error_code, name
                )
                continue
            by_host.setdefault(name, []).append(issue)

        for name, host_issues in by_host.items():
            value_host = self._value_hosts[name]
            changed = value_host.set_issues_found(host_issues, options) or changed
        self.notify_validation_state_changed(None, options, force=True)
        return changed

    # =========================================================================
    # Notifications from value hosts
    # =========================================================================

    def value_host_state_changed(self, value_host: ValueHost, options: Options = None) -> None:
        self._state = replace(self._state, state_change_counter=self._state.state_change_counter + 1)
        if _skipped(options):
            return
        if self.callbacks.on_value_host_state_changed is not None:
            self.callbacks.on_value_host_state_changed(value_host, value_host.state)
        if self.callbacks.on_manager_state_changed is not None:
            self.callbacks.on_manager_state_changed(self, self._state)

    def value_changed(
        self, value_host: ValueHost, old_value: Any, options: SetValueOptions | None = None
    ) -> None:
        """Fire on_value_changed and let dependent fields react."""
        if not _skipped(options) and self.callbacks.on_value_changed is not None:
            self.callbacks.on_value_changed(value_host, old_value)
        revalidate = options is not None and options.validate
        for other in list(self._ordered_hosts()):
            if other is not value_host:
                other.other_value_host_changed(value_host.name, revalidate)

    def notify_validation_state_changed(
        self,
        validation_state: ValidationState | None = None,
        options: Options = None,
        force: bool = False,
    ) -> None:
        """Request a verdict notification.

        Requests are coalesced within the notify delay; ``force`` fires now
        without cancelling a coalesced notification already waiting.
        """
        if self._disposed or _skipped(options):
            return
        if self.callbacks.on_validation_state_changed is None:
            return
        if force or self._debouncer is None:
            self._fire_validation_state_changed(validation_state)
            return
        self._debouncer.run(validation_state)

    def _fire_validation_state_changed(self, validation_state: ValidationState | None) -> None:
        if self._disposed or self.callbacks.on_validation_state_changed is None:
            return
        self.callbacks.on_validation_state_changed(
            self, validation_state or self.validation_state
        )

    # =========================================================================
    # Configuration
    # =========================================================================

    def add_value_host(
        self, config: FieldConfig, initial_state: FieldState | None = None
    ) -> ValueHost:
        """Add a new field.

        Raises:
            CodingError: If the name is already in use
        """
        if config.name in self._configs:
            raise CodingError(f"Field '{config.name}' already exists")
        return self.add_or_merge_value_host(config, initial_state)

    def add_or_merge_value_host(
        self, config: FieldConfig, initial_state: FieldState | None = None
    ) -> ValueHost:
        """Add a field, or merge ``config`` into the existing one."""
        initial_states = {config.name: initial_state} if initial_state is not None else None
        changes = self.merge_service.plan(self._configs, [config], ConfigMergeMode.MERGE)
        return self._apply_changes(changes, initial_states)[0]

    def apply_configs(
        self,
        configs: Iterable[FieldConfig],
        mode: ConfigMergeMode = ConfigMergeMode.MERGE,
        remove: Mapping[str, Iterable[str]] | None = None,
        initial_states: Mapping[str, FieldState | Mapping[str, Any]] | None = None,
        options: ValidateOptions | None = None,
    ) -> list[ValueHost]:
        """Reconcile a list of configs with the running fields.

        New names are added; a changed kind rebuilds the field with fresh
        state; otherwise REPLACE or MERGE the config and keep the field's
        state (fitted to the new rules) unless ``initial_states`` supplies one.
        Each affected field is a new value host object.

        Args:
            configs: Incoming configs, in order
            mode: REPLACE or MERGE
            remove: Field name -> error codes of old rules to drop when merging
            initial_states: Field name -> state to use instead of the current one
            options: skip_callback suppresses on_configs_changed

        Returns:
            The new value hosts, in the order of ``configs``

        Raises:
            CodingError: On invalid configuration, including references to
                fields that do not exist
        """
        changes = self.merge_service.plan(self._configs, configs, mode, remove)
        value_hosts = self._apply_changes(changes, initial_states, options)
        self._check_references()
        return value_hosts

    def delete_value_host(self, name: str, options: ValidateOptions | None = None) -> bool:
        """Remove a field.

        Raises:
            CodingError: If another field's rules still read this field
        """
        if name not in self._value_hosts:
            return False
        for other in self._validatables():
            if other.name != name and name in other.dependencies:
                raise CodingError(
                    f"Field '{other.name}' refers to field '{name}'; reconfigure it first"
                )
        previous = self._value_hosts.pop(name)
        if isinstance(previous, ValidatableValueHost):
            previous.detach()
        self._configs.pop(name, None)
        self._saved_states.pop(name, None)
        self._configs_changed(options)
        self.notify_validation_state_changed(None, options)
        return True

    def _apply_changes(
        self,
        changes: list[ConfigChange],
        initial_states: Mapping[str, FieldState | Mapping[str, Any]] | None,
        options: ValidateOptions | None = None,
    ) -> list[ValueHost]:
        initial_states = initial_states or {}
        value_hosts = []
        for change in changes:
            name = change.config.name
            initial = initial_states.get(name)
            state = _settled(_to_field_state(initial)) if initial is not None else None
            previous = self._value_hosts.get(name)
            if isinstance(previous, ValidatableValueHost):
                previous.detach()
            if change.action == ChangeAction.ADD:
                value_hosts.append(self._add(change.config, state or self._saved_states.get(name)))
            elif change.action == ChangeAction.RECREATE:
                value_hosts.append(self._add(change.config, state))
            elif state is not None:
                value_hosts.append(self._add(change.config, state))
            else:
                value_host = self._add(change.config, _settled(previous.state))
                if isinstance(value_host, ValidatableValueHost):
                    value_host.adopt_state(self.merge_service.cleanup_state)
                value_hosts.append(value_host)
        if changes:
            self._configs_changed(options)
            self.notify_validation_state_changed(None, options)
        return value_hosts

    def _add(self, config: FieldConfig, state: FieldState | None) -> ValueHost:
        if config.name == BUSINESS_LOGIC_ERRORS_NAME:
            raise CodingError(f"'{BUSINESS_LOGIC_ERRORS_NAME}' is reserved for business logic errors")
        value_host = create_value_host(self, config, state)
        self._value_hosts[config.name] = value_host
        self._configs[config.name] = config
        return value_host

    def _configs_changed(self, options: ValidateOptions | None) -> None:
        if not _skipped(options) and self.callbacks.on_configs_changed is not None:
            self.callbacks.on_configs_changed(self, self.value_host_configs)

    def _check_references(self) -> None:
        for value_host in self._validatables():
            for name in sorted(value_host.dependencies):
                if name not in self._value_hosts:
                    raise CodingError(
                        f"Field '{value_host.name}' refers to unknown field '{name}'"
                    )

    # =========================================================================
    # Persistence and teardown
    # =========================================================================

    def capture_state(self) -> dict[str, Any]:
        """Snapshot for persistence; pass it back as ``snapshot`` to restore."""
        return {
            "orchestratorState": self._state.to_dict(),
            "fieldStates": [vh.state.to_dict() for vh in self._ordered_hosts()],
        }

    @property
    def manager_state(self) -> ManagerState:
        return self._state

    def dispose(self) -> None:
        """Cancel any waiting notification; later notifications are dropped."""
        self._disposed = True
        if self._debouncer is not None:
            self._debouncer.dispose()


class ValueHostAccessor:
    """Narrowly typed field lookup.

    Example:
        manager.vh.input("Email").set_input_value("a@b")
    """

    def __init__(self, manager: ValidationManager):
        self._manager = manager

    def any(self, name: str) -> ValueHost:
        value_host = self._manager.get_value_host(name)
        if value_host is None:
            raise CodingError(f"Field '{name}' does not exist")
        return value_host

    def input(self, name: str) -> InputValueHost:
        return self._expect(name, InputValueHost)

    def validatable(self, name: str) -> ValidatableValueHost:
        return self._expect(name, ValidatableValueHost)

    def property(self, name: str) -> ValidatableValueHost:
        value_host = self._expect(name, ValidatableValueHost)
        if value_host.kind != ValueHostKind.PROPERTY:
            raise CodingError(f"Field '{name}' is not a property field")
        return value_host

    def static(self, name: str) -> StaticValueHost:
        return self._expect(name, StaticValueHost)

    def calc(self, name: str) -> CalcValueHost:
        return self._expect(name, CalcValueHost)

    def _expect(self, name: str, cls: type[VH]) -> VH:
        value_host = self.any(name)
        if not isinstance(value_host, cls):
            raise CodingError(f"Field '{name}' is not a {cls.__name__}")
        return value_host
