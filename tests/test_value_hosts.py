"""Tests for fieldcheck.validation.value_hosts."""

import asyncio

import pytest

from conftest import field, rule
from fieldcheck.validation.configs import FieldConfig, RuleConfig
from fieldcheck.validation.manager import ManagerCallbacks
from fieldcheck.validation.types import (
    BusinessLogicError,
    CodingError,
    ConditionCategory,
    ConditionEvaluateResult,
    SetValueOptions,
    ValidateOptions,
    ValidationSeverity,
    ValidationStatus,
    ValueHostKind,
)
from fieldcheck.validation.value_hosts import CalcValueHost, StaticValueHost, values_differ


class CountingCondition:
    condition_type = "Counting"
    category = ConditionCategory.CONTENTS

    def __init__(self, result=ConditionEvaluateResult.NO_MATCH):
        self.result = result
        self.calls = 0

    def evaluate(self, value_host, resolver):
        self.calls += 1
        return self.result


class GatedCondition:
    """Async condition that finishes when ``gate`` is set."""

    condition_type = "Gated"
    category = ConditionCategory.CONTENTS

    def __init__(self, result=ConditionEvaluateResult.NO_MATCH, exc=None):
        self.gate = asyncio.Event()
        self.result = result
        self.exc = exc

    async def evaluate(self, value_host, resolver):
        await self.gate.wait()
        if self.exc is not None:
            raise self.exc
        return self.result


def creator_rule(condition, **kwargs) -> RuleConfig:
    kwargs.setdefault("error_message", f"{condition.condition_type} failed")
    return RuleConfig(condition_creator=lambda rc: condition, **kwargs)


# =============================================================================
# Helpers
# =============================================================================


class TestValuesDiffer:
    def test_equal(self):
        assert values_differ([1, 2], [1, 2]) is False

    def test_different(self):
        assert values_differ("a", "b") is True

    def test_type_change_counts(self):
        assert values_differ(1, 1.0) is True
        assert values_differ(1, True) is True


# =============================================================================
# Value and state
# =============================================================================


class TestValueAndState:
    def test_initial_value(self, make_manager):
        manager = make_manager(field("A", initial_value=5))
        assert manager.get_value("A") == 5

    def test_change_moves_to_needs_validation(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        manager.set_value("A", "x")
        assert manager.vh.input("A").status == ValidationStatus.NEEDS_VALIDATION

    def test_reset_moves_to_not_attempted(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        manager.vh.input("A").validate()
        manager.set_value("A", "x", SetValueOptions(reset=True))
        assert manager.vh.input("A").status == ValidationStatus.NOT_ATTEMPTED

    def test_state_is_a_copy(self, make_manager):
        manager = make_manager(field("A"))
        state = manager.vh.input("A").state
        state.overrides["x"] = 1
        assert manager.vh.input("A").has_in_state("x") is False

    def test_editing_a_returned_value_needs_set_value(self, make_manager):
        manager = make_manager(field("Tags", rule("NotNull")))
        manager.set_value("Tags", ["a"])
        manager.validate()

        tags = manager.get_value("Tags")
        tags.append("b")
        assert manager.get_value("Tags") == ["a"]
        assert manager.vh.input("Tags").status == ValidationStatus.VALID

        manager.set_value("Tags", tags)
        assert manager.get_value("Tags") == ["a", "b"]
        assert manager.vh.input("Tags").status == ValidationStatus.NEEDS_VALIDATION

    def test_stored_value_is_not_the_callers_object(self, make_manager):
        manager = make_manager(field("Tags"), FieldConfig("Extra", kind=ValueHostKind.STATIC))
        tags = ["a"]
        manager.set_value("Tags", tags)
        manager.set_value("Extra", tags)
        tags.append("b")
        assert manager.get_value("Tags") == ["a"]
        assert manager.get_value("Extra") == ["a"]

    def test_is_changed(self, make_manager):
        manager = make_manager(field("A"), FieldConfig("S", kind=ValueHostKind.STATIC))
        value_host = manager.vh.input("A")
        assert value_host.is_changed is False

        value_host.set_value("x")
        value_host.set_value("x")
        assert value_host.is_changed is True
        assert value_host.state.change_counter == 1

        value_host.set_input_value("xy")
        assert value_host.state.change_counter == 2

        value_host.set_value("y", SetValueOptions(reset=True))
        assert value_host.is_changed is False

        static = manager.vh.static("S")
        static.set_value(1)
        assert static.is_changed is True
        static.set_value(1, SetValueOptions(reset=True))
        assert static.is_changed is False

    def test_change_counter_persists(self, make_manager):
        manager = make_manager(field("A"))
        manager.set_value("A", "x")
        restored = make_manager(field("A"), snapshot=manager.capture_state())
        assert restored.vh.input("A").is_changed is True

    def test_unchanged_value_does_not_notify(self, make_manager):
        changes = []
        manager = make_manager(
            field("A"),
            callbacks=ManagerCallbacks(on_value_host_state_changed=lambda vh, s: changes.append(s)),
        )
        manager.set_value("A", "x")
        manager.set_value("A", "x")
        assert len(changes) == 1
        assert changes[0].value == "x"

    def test_skip_callback(self, make_manager):
        changes = []
        manager = make_manager(
            field("A"),
            callbacks=ManagerCallbacks(on_value_host_state_changed=lambda vh, s: changes.append(s)),
        )
        manager.set_value("A", "x", SetValueOptions(skip_callback=True))
        assert changes == []

    def test_save_into_state_none_removes(self, make_manager):
        manager = make_manager(field("A"))
        value_host = manager.vh.input("A")
        value_host.save_into_state("k", 1)
        assert value_host.get_from_state("k") == 1
        value_host.save_into_state("k", None)
        assert value_host.has_in_state("k") is False

    def test_label(self, make_manager):
        manager = make_manager(field("FirstName"), field("B", label="Custom"))
        assert manager.vh.any("FirstName").get_label() == "First Name"
        assert manager.vh.any("B").get_label() == "Custom"


class TestStaticAndCalc:
    def test_static_holds_value(self, make_manager):
        manager = make_manager(FieldConfig("Rate", kind=ValueHostKind.STATIC, initial_value=3))
        assert isinstance(manager.vh.static("Rate"), StaticValueHost)
        manager.set_value("Rate", 4)
        assert manager.get_value("Rate") == 4

    def test_calc_computes_from_other_fields(self, make_manager):
        manager = make_manager(
            field("A"),
            field("B"),
            FieldConfig(
                "Total",
                kind=ValueHostKind.CALC,
                calc_fn=lambda vh, resolver: (resolver.get_value("A") or 0)
                + (resolver.get_value("B") or 0),
            ),
        )
        manager.set_value("A", 2)
        manager.set_value("B", 3)
        assert isinstance(manager.vh.calc("Total"), CalcValueHost)
        assert manager.get_value("Total") == 5

    def test_calc_rejects_values(self, make_manager):
        manager = make_manager(FieldConfig("Total", kind=ValueHostKind.CALC))
        with pytest.raises(CodingError):
            manager.set_value("Total", 1)

    def test_static_rejects_validators(self, make_manager):
        with pytest.raises(CodingError, match="do not take validators"):
            make_manager(
                FieldConfig(
                    "Rate", kind=ValueHostKind.STATIC, validator_configs=(rule("NotNull"),)
                )
            )


# =============================================================================
# Validation
# =============================================================================


class TestValidate:
    def test_required_field_without_value(self, make_manager):
        manager = make_manager(field("Age", rule("RequireText")))
        value_host = manager.vh.input("Age")
        value_host.set_value(None)
        result = value_host.validate()
        assert result.status == ValidationStatus.INVALID
        assert len(result.issues_found) == 1
        assert result.issues_found[0].severity == ValidationSeverity.SEVERE
        assert value_host.status == ValidationStatus.INVALID

    def test_severe_stops_remaining_validators(self, make_manager):
        counting = CountingCondition()
        manager = make_manager(field("A", rule("RequireText"), creator_rule(counting)))
        manager.vh.input("A").validate()
        assert counting.calls == 0
        assert len(manager.vh.input("A").get_issues_found()) == 1

    def test_errors_do_not_stop_validators(self, make_manager):
        counting = CountingCondition()
        manager = make_manager(field("A", rule("StringLength", maximum=1), creator_rule(counting)))
        manager.set_value("A", "abc")
        manager.vh.input("A").validate()
        assert counting.calls == 1
        assert len(manager.vh.input("A").get_issues_found()) == 2

    def test_warning_only_is_valid(self, make_manager):
        manager = make_manager(
            field("A", rule("StringLength", maximum=2, severity=ValidationSeverity.WARNING))
        )
        manager.set_value("A", "abcd")
        value_host = manager.vh.input("A")
        value_host.validate()
        assert value_host.status == ValidationStatus.VALID
        assert value_host.is_valid is True
        assert value_host.do_not_save is False
        assert value_host.get_issues_found()[0].severity == ValidationSeverity.WARNING

    def test_no_validators_returns_none(self, make_manager):
        manager = make_manager(field("A"))
        assert manager.vh.input("A").validate() is None
        assert manager.vh.input("A").status == ValidationStatus.VALID

    def test_skipped_validators_are_valid(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        value_host = manager.vh.input("A")
        assert value_host.validate(ValidateOptions(preliminary=True)) is None
        assert value_host.status == ValidationStatus.VALID

    def test_undetermined_is_valid(self, make_manager):
        manager = make_manager(field("A", creator_rule(CountingCondition(ConditionEvaluateResult.UNDETERMINED))))
        result = manager.vh.input("A").validate()
        assert result.status == ValidationStatus.VALID
        assert result.issues_found is None

    def test_needs_validation_blocks_save(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        manager.set_value("A", "x")
        assert manager.vh.input("A").do_not_save is True

    def test_outside_group_is_skipped(self, make_manager):
        manager = make_manager(field("A", rule("RequireText"), group="billing"))
        assert manager.vh.input("A").validate(ValidateOptions(group="shipping")) is None
        assert manager.vh.input("A").status == ValidationStatus.NOT_ATTEMPTED

    def test_corrected_after_fixing(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        value_host = manager.vh.input("A")
        value_host.validate()
        assert value_host.corrected is False
        value_host.set_value("fixed")
        result = value_host.validate()
        assert result.status == ValidationStatus.VALID
        assert result.corrected is True
        assert value_host.corrected is True

    def test_not_corrected_when_never_invalid(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        manager.set_value("A", "x")
        assert manager.vh.input("A").validate().corrected is False

    def test_input_value_validates_during_edit(self, make_manager):
        manager = make_manager(field("A", rule("RequireText"), rule("NotNull", error_code="NN")))
        value_host = manager.vh.input("A")
        value_host.set_input_value("", SetValueOptions(validate=True))
        assert value_host.status == ValidationStatus.INVALID
        assert [i.error_code for i in value_host.get_issues_found()] == ["RequireText"]

    def test_clear_validation(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        value_host = manager.vh.input("A")
        value_host.validate()
        assert value_host.clear_validation() is True
        assert value_host.status == ValidationStatus.NOT_ATTEMPTED
        assert value_host.get_issues_found() == []


class TestEnabled:
    def test_disabled_field_reports_nothing(self, make_manager):
        manager = make_manager(field("A", rule("RequireText"), enabled=False))
        value_host = manager.vh.input("A")
        assert value_host.validate() is None
        assert value_host.status == ValidationStatus.DISABLED
        assert value_host.is_valid is True
        assert value_host.do_not_save is False
        assert value_host.get_issues_found() == []

    def test_disabling_clears_validation(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        value_host = manager.vh.input("A")
        value_host.validate()
        value_host.set_enabled(False)
        assert value_host.get_issues_found() == []
        value_host.set_enabled(None)
        assert value_host.status == ValidationStatus.NOT_ATTEMPTED


# =============================================================================
# Business logic errors
# =============================================================================


class TestBusinessLogicErrors:
    def test_generated_code(self, make_manager):
        manager = make_manager(field("A"))
        value_host = manager.vh.input("A")
        value_host.set_business_logic_error(BusinessLogicError("Server rejected"))
        issue = value_host.get_issues_found()[0]
        assert issue.error_code == "GENERATED_0"
        assert issue.error_message == "Server rejected"
        assert value_host.status == ValidationStatus.INVALID

    def test_replaces_rule_issue_with_same_code(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        value_host = manager.vh.input("A")
        value_host.validate()
        value_host.set_business_logic_error(
            BusinessLogicError(
                "Server says fill it", error_code="RequireText", severity=ValidationSeverity.WARNING
            )
        )
        issues = value_host.get_issues_found()
        assert len(issues) == 1
        assert issues[0].error_message == "Server says fill it"
        assert value_host.status == ValidationStatus.VALID

    def test_kept_by_clear_validation(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        value_host = manager.vh.input("A")
        value_host.set_business_logic_error(BusinessLogicError("Nope", error_code="Server"))
        value_host.clear_validation()
        assert [i.error_code for i in value_host.get_issues_found()] == ["Server"]

    def test_clear(self, make_manager):
        manager = make_manager(field("A"))
        value_host = manager.vh.input("A")
        value_host.set_business_logic_error(BusinessLogicError("Nope"))
        assert value_host.clear_business_logic_errors() is True
        assert value_host.get_issues_found() == []


# =============================================================================
# Dependencies
# =============================================================================


class TestDependencies:
    @pytest.fixture
    def manager(self, make_manager):
        return make_manager(
            field("Password"),
            field("ConfirmPassword", rule("EqualTo", secondValueHostName="Password")),
        )

    def test_dependencies(self, manager):
        assert manager.vh.input("ConfirmPassword").dependencies == frozenset({"Password"})

    def test_other_change_demotes_validated_field(self, manager):
        manager.set_value("Password", "abc")
        manager.set_value("ConfirmPassword", "abc")
        confirm = manager.vh.input("ConfirmPassword")
        confirm.validate()
        assert confirm.status == ValidationStatus.VALID
        manager.set_value("Password", "xyz")
        assert confirm.status == ValidationStatus.NEEDS_VALIDATION

    def test_other_change_with_validate_revalidates(self, manager):
        manager.set_value("Password", "abc")
        manager.set_value("ConfirmPassword", "abc")
        manager.vh.input("ConfirmPassword").validate()
        manager.set_value("Password", "xyz", SetValueOptions(validate=True))
        assert manager.vh.input("ConfirmPassword").status == ValidationStatus.INVALID

    def test_unvalidated_field_ignores_changes(self, manager):
        manager.set_value("Password", "abc")
        assert manager.vh.input("ConfirmPassword").status == ValidationStatus.NOT_ATTEMPTED


# =============================================================================
# Async validation
# =============================================================================


class TestAsyncValidation:
    @pytest.mark.asyncio
    async def test_pending_then_invalid(self, make_manager):
        gated = GatedCondition()
        manager = make_manager(field("A", creator_rule(gated)))
        value_host = manager.vh.input("A")
        result = value_host.validate()
        assert result.async_processing is True
        assert value_host.status == ValidationStatus.UNDETERMINED
        assert value_host.async_processing is True
        assert value_host.do_not_save is True

        tasks = list(result.pending)
        gated.gate.set()
        await asyncio.gather(*tasks)
        assert value_host.status == ValidationStatus.INVALID
        assert value_host.async_processing is False
        assert result.status == ValidationStatus.INVALID
        assert result.issues_found[0].error_code == "Gated"

    @pytest.mark.asyncio
    async def test_validate_async_waits(self, make_manager):
        gated = GatedCondition(ConditionEvaluateResult.MATCH)
        manager = make_manager(field("A", creator_rule(gated)))
        gated.gate.set()
        result = await manager.vh.input("A").validate_async()
        assert result.status == ValidationStatus.VALID
        assert manager.vh.input("A").async_processing is False

    @pytest.mark.asyncio
    async def test_stale_result_is_discarded(self, make_manager):
        gated = GatedCondition()
        manager = make_manager(field("A", creator_rule(gated)))
        value_host = manager.vh.input("A")
        tasks = list(value_host.validate().pending)
        value_host.set_value("changed")
        gated.gate.set()
        await asyncio.gather(*tasks)
        assert value_host.status == ValidationStatus.NEEDS_VALIDATION
        assert value_host.get_issues_found() == []

    @pytest.mark.asyncio
    async def test_rejection_propagates(self, make_manager, caplog):
        gated = GatedCondition(exc=ValueError("lookup failed"))
        manager = make_manager(field("A", creator_rule(gated)))
        gated.gate.set()
        with pytest.raises(ValueError, match="lookup failed"):
            await manager.vh.input("A").validate_async()
        assert manager.vh.input("A").async_processing is False
        assert "Async condition 'Gated'" in caplog.text

    def test_async_without_event_loop_is_coding_error(self, make_manager):
        manager = make_manager(field("A", creator_rule(GatedCondition())))
        with pytest.raises(CodingError, match="event loop"):
            manager.vh.input("A").validate()
