"""Collaborator services consumed by the validation engine.

This module provides the narrow services a manager is built from:
1. MessageTokenResolver: Replaces {Token} placeholders in message templates
2. TextLocalizer: Looks up localized labels and default error messages
3. DataTypeComparer: Compares two native values without raising
4. ValidationServices: The bundle handed to every manager, field and validator
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from fieldcheck.config import DEFAULT_NOTIFY_DELAY_MS, EngineSettings
from fieldcheck.validation.conditions.base import ConditionFactory
from fieldcheck.validation.scheduling import AsyncioScheduler, Scheduler


# =============================================================================
# Message Tokens
# =============================================================================


@dataclass(frozen=True)
class TokenLabelAndValue:
    """A value offered for a {Token} placeholder.

    Attributes:
        token: Token name without braces, matched case-insensitively
        associated_value: Native value, formatted on substitution
        purpose: "value" values are formatted; "label" and "message" are used as-is
    """

    token: str
    associated_value: Any
    purpose: str = "value"


class MessageTokenResolver:
    """Replaces tokens in message templates.

    Supports:
    - {Token} - Formatted value
    - {Token:raw} - Raw value
    Unknown tokens are left in place so template mistakes stay visible.
    """

    PATTERN = re.compile(r"\{(?P<token>\w+)(?::(?P<modifier>raw))?\}")

    def resolve_tokens(
        self,
        template: str,
        value_host: Any,
        resolver: Any,
        *token_sources: Any,
    ) -> str:
        """Replace tokens in a template.

        Args:
            template: Message template with {Token} placeholders
            value_host: Field the message is about
            resolver: Lookup for other fields
            token_sources: Objects with ``get_values_for_tokens(value_host, resolver)``

        Returns:
            Message with known placeholders replaced
        """
        values: dict[str, TokenLabelAndValue] = {}
        for source in token_sources:
            get_values = getattr(source, "get_values_for_tokens", None)
            if get_values is None:
                continue
            for tlv in get_values(value_host, resolver) or []:
                values.setdefault(tlv.token.lower(), tlv)

        def replace(match: re.Match) -> str:
            tlv = values.get(match.group("token").lower())
            if tlv is None:
                return match.group(0)
            if match.group("modifier") == "raw" or tlv.purpose != "value":
                return "" if tlv.associated_value is None else str(tlv.associated_value)
            return self.format_value(tlv.associated_value)

        return self.PATTERN.sub(replace, template)

    def format_value(self, value: Any) -> str:
        """Format a value for display."""
        if value is None:
            return ""
        if isinstance(value, bool):
            return "Yes" if value else "No"
        if isinstance(value, datetime):
            return value.strftime("%B %d, %Y %I:%M %p")
        if isinstance(value, date):
            return value.strftime("%B %d, %Y")
        if isinstance(value, (Decimal, float)):
            return f"{value:,.2f}"
        if isinstance(value, (list, tuple)):
            return ", ".join(str(v) for v in value)
        return str(value)


def to_display_label(name: str) -> str:
    """Convert camelCase or PascalCase to Title Case."""
    result = re.sub(r"(?<=[a-z0-9])([A-Z])", r" \1", name)
    return result.strip().title()


# =============================================================================
# Localization
# =============================================================================


class TextLocalizer:
    """Localized text lookup with culture fallback.

    A culture like "en-US" falls back to "en" and then to the fallback culture.
    Default error messages are registered per error code, optionally narrowed
    by data type.
    """

    def __init__(self, fallback_culture: str = "en"):
        self.fallback_culture = fallback_culture
        self._texts: dict[str, dict[str, str]] = {}
        self._error_messages: dict[str, dict[str, str]] = {}
        self._summary_messages: dict[str, dict[str, str]] = {}

    def register(self, l10n_key: str, translations: dict[str, str]) -> None:
        self._texts.setdefault(l10n_key, {}).update(translations)

    def register_error_message(
        self,
        error_code: str,
        translations: dict[str, str],
        summary_translations: dict[str, str] | None = None,
        data_type: str | None = None,
    ) -> None:
        """Register the default messages for an error code.

        Args:
            error_code: Usually the condition type
            translations: culture -> error message template
            summary_translations: culture -> summary message template
            data_type: Only use these messages for fields of this data type
        """
        key = self._message_key(error_code, data_type)
        self._error_messages.setdefault(key, {}).update(translations)
        if summary_translations:
            self._summary_messages.setdefault(key, {}).update(summary_translations)

    def culture_chain(self, culture_id: str) -> list[str]:
        chain = [culture_id]
        if "-" in culture_id:
            chain.append(culture_id.split("-")[0])
        if self.fallback_culture not in chain:
            chain.append(self.fallback_culture)
        return chain

    def localize(
        self, culture_id: str, l10n_key: str | None, fallback: str | None
    ) -> str | None:
        """Look up a localized text, returning ``fallback`` when there is none."""
        if not l10n_key:
            return fallback
        return self._lookup(self._texts.get(l10n_key), culture_id) or fallback

    def get_error_message(
        self, culture_id: str, error_code: str, data_type: str | None = None
    ) -> str | None:
        return self._lookup_message(self._error_messages, culture_id, error_code, data_type)

    def get_summary_message(
        self, culture_id: str, error_code: str, data_type: str | None = None
    ) -> str | None:
        return self._lookup_message(self._summary_messages, culture_id, error_code, data_type)

    def _lookup_message(
        self,
        table: dict[str, dict[str, str]],
        culture_id: str,
        error_code: str,
        data_type: str | None,
    ) -> str | None:
        if data_type:
            found = self._lookup(table.get(self._message_key(error_code, data_type)), culture_id)
            if found:
                return found
        return self._lookup(table.get(self._message_key(error_code, None)), culture_id)

    def _lookup(self, translations: dict[str, str] | None, culture_id: str) -> str | None:
        if not translations:
            return None
        for culture in self.culture_chain(culture_id):
            if culture in translations:
                return translations[culture]
        return None

    @staticmethod
    def _message_key(error_code: str, data_type: str | None) -> str:
        return f"{error_code}|{data_type}" if data_type else error_code


# =============================================================================
# Comparison
# =============================================================================


class ComparersResult(Enum):
    """Result of comparing two native values."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    LESS_THAN = "lessThan"
    GREATER_THAN = "greaterThan"
    UNDETERMINED = "undetermined"


# Returns None to let the next comparer (or the default) decide
CustomComparer = Callable[[Any, Any], "ComparersResult | None"]


class DataTypeComparer:
    """Compares native values; incomparable types give UNDETERMINED instead of raising."""

    def __init__(self, case_insensitive: bool = False):
        self.case_insensitive = case_insensitive
        self._comparers: list[CustomComparer] = []

    def register(self, comparer: CustomComparer) -> None:
        self._comparers.append(comparer)

    def compare(self, left: Any, right: Any) -> ComparersResult:
        if left is None or right is None:
            return ComparersResult.UNDETERMINED
        for comparer in self._comparers:
            result = comparer(left, right)
            if result is not None:
                return result
        if isinstance(left, bool) != isinstance(right, bool):
            return ComparersResult.UNDETERMINED
        if self.case_insensitive and isinstance(left, str) and isinstance(right, str):
            left, right = left.casefold(), right.casefold()
        try:
            if left == right:
                return ComparersResult.EQUALS
            if left < right:
                return ComparersResult.LESS_THAN
            if left > right:
                return ComparersResult.GREATER_THAN
        except TypeError:
            return ComparersResult.UNDETERMINED
        return ComparersResult.NOT_EQUALS


# =============================================================================
# Services bundle
# =============================================================================


@dataclass
class ValidationServices:
    """Everything a manager, its fields and their validators consume.

    Passed explicitly to every component; there is no global lookup.

    Attributes:
        condition_factory: Builds conditions from ConditionConfig
        logger: Receives condition faults and data-fault diagnostics
        message_token_resolver: Renders message templates
        text_localizer: Localized labels and default messages
        data_type_comparer: Comparison used by comparison conditions
        scheduler: Timer source for debounced notifications
        culture_id: Culture used for localized text
        notify_delay_ms: Default coalescing window for verdict notifications
    """

    condition_factory: ConditionFactory = field(default_factory=ConditionFactory)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("fieldcheck"))
    message_token_resolver: MessageTokenResolver = field(default_factory=MessageTokenResolver)
    text_localizer: TextLocalizer = field(default_factory=TextLocalizer)
    data_type_comparer: DataTypeComparer = field(default_factory=DataTypeComparer)
    scheduler: Scheduler = field(default_factory=AsyncioScheduler)
    culture_id: str = "en"
    notify_delay_ms: int = DEFAULT_NOTIFY_DELAY_MS


def create_validation_services(
    settings: EngineSettings | None = None,
    **overrides: Any,
) -> ValidationServices:
    """Create a services bundle with the canned conditions and messages registered.

    Args:
        settings: Engine settings; read from the environment when omitted
        overrides: Replace individual services (e.g. ``scheduler=FakeScheduler()``)

    Returns:
        A ready-to-use ValidationServices
    """
    from fieldcheck.validation.conditions.canned import (
        register_canned_conditions,
        register_canned_messages,
    )

    settings = settings or EngineSettings.from_env()
    overrides.setdefault("culture_id", settings.culture_id)
    overrides.setdefault("notify_delay_ms", settings.notify_delay_ms)
    services = ValidationServices(**overrides)
    register_canned_conditions(services.condition_factory)
    register_canned_messages(services.text_localizer)
    return services
