"""Configuration merge engine.

Reconciles a new list of FieldConfigs with the configuration a manager is
already running, deciding for each field whether it is added, rebuilt from
scratch, or updated while keeping its accumulated state.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields, replace
from enum import Enum

from fieldcheck.validation.configs import FieldConfig, RuleConfig
from fieldcheck.validation.types import FieldState, ValidationSeverity, ValidationStatus

logger = logging.getLogger(__name__)

_OVERRIDE_KEY = re.compile(r"^_IV\[(?P<code>[^\]]*)\]\.")

# FieldConfig properties a merge never takes from the incoming config
_LOCKED_FIELD_PROPERTIES = ("name", "kind", "validator_configs")

_MERGEABLE_RULE_PROPERTIES = (
    "enabled",
    "severity",
    "error_message",
    "error_message_l10n",
    "summary_message",
    "summary_message_l10n",
)


class ConfigMergeMode(Enum):
    """How an incoming config for an existing field of the same kind is applied.

    REPLACE: The incoming config supersedes the old one
    MERGE: Incoming properties overwrite old ones; rules are merged by error code
    """

    REPLACE = "replace"
    MERGE = "merge"


class ChangeAction(Enum):
    ADD = "add"
    RECREATE = "recreate"
    UPDATE = "update"


@dataclass(frozen=True)
class ConfigChange:
    """One step of a merge plan.

    Attributes:
        action: ADD a new field, RECREATE one whose kind changed (state is
            discarded), or UPDATE one in place (state is preserved)
        config: The config to build the field from
        previous: The config being replaced, if any
    """

    action: ChangeAction
    config: FieldConfig
    previous: FieldConfig | None = None


class ConfigMergeService:
    """Merges field and rule configurations.

    Example:
        service = ConfigMergeService()
        changes = service.plan(current_configs, new_configs, ConfigMergeMode.MERGE)
    """

    def plan(
        self,
        existing: Mapping[str, FieldConfig],
        incoming: Iterable[FieldConfig],
        mode: ConfigMergeMode = ConfigMergeMode.MERGE,
        remove: Mapping[str, Iterable[str]] | None = None,
    ) -> list[ConfigChange]:
        """Decide what happens to each incoming config.

        Args:
            existing: Current configs by field name
            incoming: New configs, in order
            mode: REPLACE or MERGE for fields whose kind is unchanged
            remove: Field name -> error codes of old rules to drop during a merge

        Returns:
            One ConfigChange per incoming config, in order
        """
        remove = remove or {}
        changes: list[ConfigChange] = []
        for config in incoming:
            previous = existing.get(config.name)
            if previous is None:
                changes.append(ConfigChange(ChangeAction.ADD, config))
            elif previous.kind != config.kind:
                logger.debug(
                    "Field '%s' changed kind from %s to %s; rebuilding",
                    config.name, previous.kind.value, config.kind.value,
                )
                changes.append(ConfigChange(ChangeAction.RECREATE, config, previous))
            elif mode == ConfigMergeMode.REPLACE:
                changes.append(ConfigChange(ChangeAction.UPDATE, config, previous))
            else:
                merged = self.merge_field_configs(
                    previous, config, remove.get(config.name, ())
                )
                changes.append(ConfigChange(ChangeAction.UPDATE, merged, previous))
        return changes

    def merge_field_configs(
        self,
        existing: FieldConfig,
        incoming: FieldConfig,
        remove: Iterable[str] = (),
    ) -> FieldConfig:
        """Overlay ``incoming`` on ``existing``.

        Name and kind never change; other properties are taken from
        ``incoming`` when it sets them; rules are merged by error code.

        Raises:
            ValueError: If the configs are for different fields or kinds
        """
        if existing.name != incoming.name:
            raise ValueError(
                f"Cannot merge config '{incoming.name}' into '{existing.name}'"
            )
        if existing.kind != incoming.kind:
            raise ValueError(
                f"Cannot merge field '{existing.name}': kind {incoming.kind.value} "
                f"does not match {existing.kind.value}"
            )
        updates = {
            f.name: getattr(incoming, f.name)
            for f in fields(FieldConfig)
            if f.name not in _LOCKED_FIELD_PROPERTIES and getattr(incoming, f.name) is not None
        }
        updates["validator_configs"] = self.merge_rule_configs(
            existing.validator_configs, incoming.validator_configs, remove
        )
        return replace(existing, **updates)

    def merge_rule_configs(
        self,
        existing: Iterable[RuleConfig],
        incoming: Iterable[RuleConfig],
        remove: Iterable[str] = (),
    ) -> tuple[RuleConfig, ...]:
        """Merge rule lists by error code.

        A rule whose code matches an old rule overwrites it in the old position;
        other incoming rules are appended; old rules missing from ``incoming``
        are kept unless their code is in ``remove``.
        """
        remove = set(remove)
        merged = [r for r in existing if r.resolved_error_code() not in remove]
        positions: dict[str, int] = {}
        for index, rule in enumerate(merged):
            code = rule.resolved_error_code()
            if code is not None:
                positions[code] = index
        for rule in incoming:
            code = rule.resolved_error_code()
            if code is not None and code in positions:
                index = positions[code]
                merged[index] = self.merge_rule_config(merged[index], rule)
                continue
            if code is not None:
                positions[code] = len(merged)
            merged.append(rule)
        return tuple(merged)

    def merge_rule_config(self, existing: RuleConfig, incoming: RuleConfig) -> RuleConfig:
        """Overlay one rule on another; the error code never changes."""
        updates: dict[str, object] = {}
        if incoming.condition_config is not None or incoming.condition_creator is not None:
            updates["condition_config"] = incoming.condition_config
            updates["condition_creator"] = incoming.condition_creator
            updates["error_code"] = existing.resolved_error_code()
        if incoming.enabler_config is not None or incoming.enabler_creator is not None:
            updates["enabler_config"] = incoming.enabler_config
            updates["enabler_creator"] = incoming.enabler_creator
        for name in _MERGEABLE_RULE_PROPERTIES:
            value = getattr(incoming, name)
            if value is not None:
                updates[name] = value
        return replace(existing, **updates)

    def cleanup_state(self, state: FieldState, error_codes: Iterable[str]) -> FieldState:
        """Fit a preserved state to a new rule set.

        Drops issues and validator overrides whose error codes no longer exist,
        and leaves INVALID when no blocking issue remains.
        """
        codes = set(error_codes)
        issues = tuple(i for i in state.issues_found if i.error_code in codes)
        overrides = {}
        for key, value in state.overrides.items():
            match = _OVERRIDE_KEY.match(key)
            if match is None or match.group("code") in codes:
                overrides[key] = value
        status = state.status
        if status == ValidationStatus.INVALID and not any(
            i.severity != ValidationSeverity.WARNING for i in issues
        ):
            status = ValidationStatus.VALID if issues else ValidationStatus.NEEDS_VALIDATION
        return replace(state, issues_found=issues, overrides=overrides, status=status)
