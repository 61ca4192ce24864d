"""Tests for fieldcheck.validation.validator."""

import logging

import pytest

from conftest import field, rule
from fieldcheck.validation.configs import ConditionConfig, RuleConfig
from fieldcheck.validation.types import (
    NO_CHANGE,
    BusinessLogicError,
    CodingError,
    ConditionCategory,
    ConditionEvaluateResult,
    ValidateOptions,
    ValidationSeverity,
)


class FixedCondition:
    """Returns a fixed result."""

    category = ConditionCategory.CONTENTS

    def __init__(self, result, condition_type="Fixed"):
        self.result = result
        self.condition_type = condition_type
        self.calls = 0

    def evaluate(self, value_host, resolver):
        self.calls += 1
        return self.result


class ExplodingCondition:
    condition_type = "Exploding"
    category = ConditionCategory.CONTENTS

    def __init__(self, exc):
        self.exc = exc

    def evaluate(self, value_host, resolver):
        raise self.exc


class AsyncEnabler:
    condition_type = "AsyncEnabler"
    category = ConditionCategory.UNDETERMINED

    async def evaluate(self, value_host, resolver):
        return ConditionEvaluateResult.MATCH


def creator_rule(condition, **kwargs) -> RuleConfig:
    return RuleConfig(condition_creator=lambda rc: condition, **kwargs)


def only_validator(manager, name="A"):
    return manager.vh.validatable(name).validators[0]


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    def test_both_config_and_creator_is_coding_error(self, make_manager):
        bad = RuleConfig(
            condition_config=ConditionConfig("RequireText"),
            condition_creator=lambda rc: FixedCondition(ConditionEvaluateResult.MATCH),
        )
        with pytest.raises(CodingError, match="not both"):
            make_manager(field("A", bad))

    def test_missing_condition_is_coding_error(self, make_manager):
        with pytest.raises(CodingError, match="needs condition_config"):
            make_manager(field("A", RuleConfig()))

    def test_creator_returning_none_is_coding_error(self, make_manager):
        with pytest.raises(CodingError, match="returned None"):
            make_manager(field("A", RuleConfig(condition_creator=lambda rc: None)))

    def test_unknown_condition_type_is_coding_error(self, make_manager):
        with pytest.raises(CodingError, match="not registered"):
            make_manager(field("A", rule("Nope")))

    def test_duplicate_error_codes_is_coding_error(self, make_manager):
        with pytest.raises(CodingError, match="duplicate error codes"):
            make_manager(field("A", rule("RequireText"), rule("RequireText")))

    def test_required_rules_sort_first(self, make_manager):
        manager = make_manager(
            field("A", rule("StringLength", maximum=3), rule("DataTypeCheck"), rule("RequireText"))
        )
        codes = [v.error_code for v in manager.vh.validatable("A").validators]
        assert codes == ["RequireText", "DataTypeCheck", "StringLength"]


# =============================================================================
# Settings
# =============================================================================


class TestSeverity:
    def test_required_defaults_to_severe(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        assert only_validator(manager).severity == ValidationSeverity.SEVERE

    def test_other_categories_default_to_error(self, make_manager):
        manager = make_manager(field("A", rule("Range", minimum=1)))
        assert only_validator(manager).severity == ValidationSeverity.ERROR

    def test_configured(self, make_manager):
        manager = make_manager(field("A", rule("Range", severity=ValidationSeverity.WARNING)))
        assert only_validator(manager).severity == ValidationSeverity.WARNING

    def test_function(self, make_manager):
        manager = make_manager(
            field("A", rule("Range", severity=lambda validator: ValidationSeverity.SEVERE))
        )
        assert only_validator(manager).severity == ValidationSeverity.SEVERE

    def test_override_and_revert(self, make_manager):
        manager = make_manager(field("A", rule("Range")))
        validator = only_validator(manager)
        validator.set_severity(ValidationSeverity.WARNING)
        assert validator.severity == ValidationSeverity.WARNING
        assert manager.vh.validatable("A").state.overrides == {"_IV[Range].severity": "warning"}
        validator.set_severity(NO_CHANGE)
        assert validator.severity == ValidationSeverity.WARNING
        validator.set_severity(None)
        assert validator.severity == ValidationSeverity.ERROR


class TestErrorCode:
    def test_defaults_to_condition_type(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        assert only_validator(manager).error_code == "RequireText"

    def test_configured(self, make_manager):
        manager = make_manager(field("A", rule("RequireText", error_code="Needed")))
        assert manager.vh.validatable("A").get_validator("Needed") is not None


class TestMessages:
    def test_default_message_from_localizer(self, make_manager):
        manager = make_manager(field("FirstName", rule("RequireText")))
        issue = only_validator(manager, "FirstName").create_issue_found()
        assert issue.error_message == "Requires a value."
        assert issue.summary_message == "First Name requires a value."

    def test_data_type_specific_default(self, make_manager):
        manager = make_manager(field("Age", rule("DataTypeCheck"), data_type="Integer"))
        issue = only_validator(manager, "Age").create_issue_found()
        assert issue.error_message == "Enter a whole number."

    def test_tokens(self, make_manager):
        manager = make_manager(
            field(
                "Code",
                rule("StringLength", minimum=2, maximum=4, error_message="{Label}: {Minimum}-{Maximum}"),
                label="Postal code",
            )
        )
        issue = only_validator(manager, "Code").create_issue_found()
        assert issue.error_message == "Postal code: 2-4"

    def test_summary_falls_back_to_error_message(self, make_manager):
        condition = FixedCondition(ConditionEvaluateResult.NO_MATCH)
        manager = make_manager(field("A", creator_rule(condition, error_message="Nope")))
        assert only_validator(manager).get_summary_message_template() == "Nope"

    def test_localized_message(self, services, make_manager):
        services.text_localizer.register("tooShort", {"en": "Too short", "fr": "Trop court"})
        services.culture_id = "fr-CA"
        manager = make_manager(
            field("A", rule("StringLength", minimum=2, error_message="x", error_message_l10n="tooShort"))
        )
        assert only_validator(manager).get_error_message_template() == "Trop court"

    def test_message_override(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        validator = only_validator(manager)
        validator.set_error_message("Fill me in")
        assert validator.get_error_message_template() == "Fill me in"
        validator.set_error_message(None)
        assert validator.get_error_message_template() == "Requires a value."

    def test_no_message_is_coding_error(self, make_manager):
        condition = FixedCondition(ConditionEvaluateResult.NO_MATCH)
        manager = make_manager(field("A", creator_rule(condition)))
        with pytest.raises(CodingError, match="no error message"):
            only_validator(manager).validate(ValidateOptions())

    def test_business_logic_issue_uses_rule_messages(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        issue = only_validator(manager).create_issue_for_business_logic(
            BusinessLogicError("", error_code="RequireText")
        )
        assert issue.error_message == "Requires a value."
        assert issue.severity == ValidationSeverity.SEVERE


# =============================================================================
# Validate
# =============================================================================


class TestValidate:
    def test_no_match_creates_issue(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        result = only_validator(manager).validate(ValidateOptions())
        assert result.condition_result == ConditionEvaluateResult.NO_MATCH
        assert result.issue_found.error_code == "RequireText"
        assert result.issue_found.value_host_name == "A"

    def test_match_has_no_issue(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        manager.set_value("A", "x")
        result = only_validator(manager).validate(ValidateOptions())
        assert result.condition_result == ConditionEvaluateResult.MATCH
        assert result.issue_found is None

    def test_preliminary_skips_required(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        assert only_validator(manager).validate(ValidateOptions(preliminary=True)) is None

    def test_during_edit_skips_conditions_without_edit_support(self, make_manager):
        manager = make_manager(field("A", rule("NotNull")))
        assert only_validator(manager).validate(ValidateOptions(during_edit=True)) is None

    def test_during_edit_uses_input_text(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        manager.vh.input("A").set_values(None, "typed")
        result = only_validator(manager).validate(ValidateOptions(during_edit=True))
        assert result.condition_result == ConditionEvaluateResult.MATCH

    def test_disabled_rule_is_skipped(self, make_manager):
        manager = make_manager(field("A", rule("RequireText", enabled=False)))
        assert only_validator(manager).validate(ValidateOptions()) is None

    def test_enabled_override(self, make_manager):
        manager = make_manager(field("A", rule("RequireText")))
        validator = only_validator(manager)
        validator.set_enabled(False)
        assert validator.validate(ValidateOptions()) is None
        validator.set_enabled(None)
        assert validator.validate(ValidateOptions()) is not None

    def test_enabler_no_match_skips(self, make_manager):
        condition = FixedCondition(ConditionEvaluateResult.NO_MATCH)
        manager = make_manager(
            field(
                "A",
                RuleConfig(
                    condition_config=ConditionConfig("RequireText"),
                    enabler_creator=lambda rc: condition,
                ),
            )
        )
        assert only_validator(manager).validate(ValidateOptions()) is None
        assert condition.calls == 1

    def test_enabler_reads_other_field(self, make_manager):
        manager = make_manager(
            field("HasPhone"),
            field(
                "Phone",
                RuleConfig(
                    condition_config=ConditionConfig("RequireText"),
                    enabler_config=ConditionConfig("EqualToValue", {"valueHostName": "HasPhone", "secondValue": True}),
                ),
            ),
        )
        validator = only_validator(manager, "Phone")
        assert validator.validate(ValidateOptions()) is None
        manager.set_value("HasPhone", True)
        assert validator.validate(ValidateOptions()).issue_found is not None

    def test_async_enabler_is_coding_error(self, make_manager):
        manager = make_manager(
            field(
                "A",
                RuleConfig(
                    condition_config=ConditionConfig("RequireText"),
                    enabler_creator=lambda rc: AsyncEnabler(),
                ),
            )
        )
        with pytest.raises(CodingError, match="synchronously"):
            only_validator(manager).validate(ValidateOptions())

    def test_condition_exception_is_undetermined_and_logged(self, make_manager, caplog):
        manager = make_manager(field("A", creator_rule(ExplodingCondition(RuntimeError("boom")))))
        with caplog.at_level(logging.ERROR, logger="fieldcheck"):
            result = only_validator(manager).validate(ValidateOptions())
        assert result.condition_result == ConditionEvaluateResult.UNDETERMINED
        assert result.issue_found is None
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "boom" in errors[0].getMessage()

    def test_condition_coding_error_propagates(self, make_manager):
        manager = make_manager(field("A", creator_rule(ExplodingCondition(CodingError("bad config")))))
        with pytest.raises(CodingError, match="bad config"):
            only_validator(manager).validate(ValidateOptions())

    def test_invalid_result_type_is_coding_error(self, make_manager):
        manager = make_manager(field("A", creator_rule(FixedCondition("yes"))))
        with pytest.raises(CodingError, match="expected a ConditionEvaluateResult"):
            only_validator(manager).validate(ValidateOptions())
