"""Shared fixtures for fieldcheck tests."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import pytest

from fieldcheck.config import EngineSettings
from fieldcheck.validation.configs import ConditionConfig, FieldConfig, RuleConfig
from fieldcheck.validation.manager import ManagerCallbacks, ValidationManager
from fieldcheck.validation.services import ValidationServices, create_validation_services


@dataclass
class FakeTimer:
    due: int
    fn: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manual clock: timers only fire on ``advance``."""

    def __init__(self) -> None:
        self.now = 0
        self.timers: list[FakeTimer] = []

    def schedule(self, delay_ms: int, fn: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay_ms, fn)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for t in self.timers if not t.cancelled)

    def advance(self, ms: int) -> None:
        self.now += ms
        due = [t for t in self.timers if not t.cancelled and t.due <= self.now]
        self.timers = [t for t in self.timers if not t.cancelled and t.due > self.now]
        for timer in due:
            timer.fn()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def services(scheduler) -> ValidationServices:
    return create_validation_services(
        EngineSettings(notify_delay_ms=100, culture_id="en"), scheduler=scheduler
    )


def rule(condition_type: str, **kwargs) -> RuleConfig:
    """Shorthand for a RuleConfig with a declarative condition.

    Keyword arguments that are RuleConfig fields go to the rule; the rest
    become condition params.
    """
    rule_fields = set(RuleConfig.__dataclass_fields__)
    rule_kwargs = {k: v for k, v in kwargs.items() if k in rule_fields}
    params = {k: v for k, v in kwargs.items() if k not in rule_fields}
    return RuleConfig(condition_config=ConditionConfig(condition_type, params), **rule_kwargs)


def field(name: str, *rules: RuleConfig, **kwargs) -> FieldConfig:
    return FieldConfig(name=name, validator_configs=tuple(rules), **kwargs)


@pytest.fixture
def make_manager(services):
    """Build a manager over the shared services; extra kwargs go to the constructor."""
    managers: list[ValidationManager] = []

    def _make(*configs: FieldConfig, **kwargs) -> ValidationManager:
        kwargs.setdefault("callbacks", ManagerCallbacks())
        manager = ValidationManager(services, configs, **kwargs)
        managers.append(manager)
        return manager

    yield _make
    for manager in managers:
        manager.dispose()
