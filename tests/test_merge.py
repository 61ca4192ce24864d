"""Tests for fieldcheck.validation.merge."""

import pytest

from conftest import field, rule
from fieldcheck.validation.configs import FieldConfig
from fieldcheck.validation.merge import ChangeAction, ConfigMergeMode, ConfigMergeService
from fieldcheck.validation.types import (
    FieldState,
    IssueFound,
    ValidationSeverity,
    ValidationStatus,
    ValueHostKind,
)


@pytest.fixture
def service():
    return ConfigMergeService()


def codes(config):
    return [r.resolved_error_code() for r in config.validator_configs]


# =============================================================================
# Planning
# =============================================================================


class TestPlan:
    def test_new_field_is_added(self, service):
        [change] = service.plan({}, [field("A")])
        assert change.action == ChangeAction.ADD
        assert change.previous is None

    def test_kind_change_recreates(self, service):
        existing = {"A": field("A")}
        [change] = service.plan(existing, [FieldConfig("A", kind=ValueHostKind.STATIC)])
        assert change.action == ChangeAction.RECREATE
        assert change.config.kind == ValueHostKind.STATIC
        assert change.previous is existing["A"]

    def test_replace_uses_incoming_config(self, service):
        existing = {"A": field("A", rule("RequireText"))}
        incoming = field("A", rule("NotNull"))
        [change] = service.plan(existing, [incoming], ConfigMergeMode.REPLACE)
        assert change.action == ChangeAction.UPDATE
        assert change.config is incoming

    def test_merge_combines(self, service):
        existing = {"A": field("A", rule("RequireText"))}
        [change] = service.plan(existing, [field("A", rule("NotNull"))])
        assert change.action == ChangeAction.UPDATE
        assert codes(change.config) == ["RequireText", "NotNull"]

    def test_merge_honours_remove(self, service):
        existing = {"A": field("A", rule("RequireText"), rule("NotNull"))}
        [change] = service.plan(existing, [field("A")], remove={"A": ["NotNull"]})
        assert codes(change.config) == ["RequireText"]

    def test_keeps_incoming_order(self, service):
        changes = service.plan({"B": field("B")}, [field("C"), field("B"), field("A")])
        assert [c.config.name for c in changes] == ["C", "B", "A"]

    def test_idempotent(self, service):
        config = field("A", rule("RequireText"), rule("StringLength", maximum=3), label="Alpha")
        [change] = service.plan({"A": config}, [config])
        again = service.plan({"A": change.config}, [config])[0]
        assert again.config == change.config
        assert codes(change.config) == ["RequireText", "StringLength"]
        assert change.config.label == "Alpha"


# =============================================================================
# Field and rule merging
# =============================================================================


class TestMergeFieldConfigs:
    def test_incoming_properties_win(self, service):
        merged = service.merge_field_configs(
            field("A", label="Old", data_type="String"), FieldConfig("A", label="New")
        )
        assert merged.label == "New"
        assert merged.data_type == "String"

    def test_different_names_raise(self, service):
        with pytest.raises(ValueError, match="Cannot merge config 'B'"):
            service.merge_field_configs(field("A"), field("B"))

    def test_different_kinds_raise(self, service):
        with pytest.raises(ValueError, match="does not match"):
            service.merge_field_configs(
                field("A"), FieldConfig("A", kind=ValueHostKind.PROPERTY)
            )


class TestMergeRuleConfigs:
    def test_omitted_rule_is_kept(self, service):
        merged = service.merge_rule_configs(
            [rule("RequireText")], [rule("StringLength", maximum=3)]
        )
        assert [r.resolved_error_code() for r in merged] == ["RequireText", "StringLength"]

    def test_omitted_rule_in_remove_is_dropped(self, service):
        merged = service.merge_rule_configs(
            [rule("RequireText")], [rule("StringLength", maximum=3)], remove=["RequireText"]
        )
        assert [r.resolved_error_code() for r in merged] == ["StringLength"]

    def test_matching_rule_overwritten_in_place(self, service):
        merged = service.merge_rule_configs(
            [rule("RequireText"), rule("StringLength", maximum=3)],
            [rule("RequireText", error_message="Needed")],
        )
        assert [r.resolved_error_code() for r in merged] == ["RequireText", "StringLength"]
        assert merged[0].error_message == "Needed"


class TestMergeRuleConfig:
    def test_error_code_survives_condition_swap(self, service):
        merged = service.merge_rule_config(
            rule("StringLength", maximum=3), rule("RegExp", expression="x")
        )
        assert merged.error_code == "StringLength"
        assert merged.condition_config.type == "RegExp"

    def test_unset_properties_are_kept(self, service):
        existing = rule("Range", severity=ValidationSeverity.WARNING, error_message="Out")
        merged = service.merge_rule_config(existing, rule("Range", error_message="Outside"))
        assert merged.severity == ValidationSeverity.WARNING
        assert merged.error_message == "Outside"


# =============================================================================
# State cleanup
# =============================================================================


def issue(code, severity=ValidationSeverity.ERROR):
    return IssueFound("A", code, severity, "msg")


class TestCleanupState:
    def test_drops_issues_for_removed_rules(self, service):
        state = FieldState(
            name="A",
            status=ValidationStatus.INVALID,
            issues_found=(issue("Kept"), issue("Gone")),
        )
        cleaned = service.cleanup_state(state, ["Kept"])
        assert [i.error_code for i in cleaned.issues_found] == ["Kept"]
        assert cleaned.status == ValidationStatus.INVALID

    def test_invalid_without_issues_needs_validation(self, service):
        state = FieldState(name="A", status=ValidationStatus.INVALID, issues_found=(issue("Gone"),))
        cleaned = service.cleanup_state(state, [])
        assert cleaned.status == ValidationStatus.NEEDS_VALIDATION

    def test_only_warnings_left_is_valid(self, service):
        state = FieldState(
            name="A",
            status=ValidationStatus.INVALID,
            issues_found=(issue("Warn", ValidationSeverity.WARNING), issue("Gone")),
        )
        cleaned = service.cleanup_state(state, ["Warn"])
        assert cleaned.status == ValidationStatus.VALID

    def test_drops_overrides_for_removed_rules(self, service):
        state = FieldState(
            name="A",
            overrides={"_IV[Kept].severity": "warning", "_IV[Gone].enabled": False, "custom": 1},
        )
        cleaned = service.cleanup_state(state, ["Kept"])
        assert cleaned.overrides == {"_IV[Kept].severity": "warning", "custom": 1}

    def test_keeps_value(self, service):
        state = FieldState(name="A", value="abc", status=ValidationStatus.VALID)
        cleaned = service.cleanup_state(state, [])
        assert cleaned.value == "abc"
        assert cleaned.status == ValidationStatus.VALID
