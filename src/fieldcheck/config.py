"""Engine settings read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_NOTIFY_DELAY_MS = 100
DEFAULT_CULTURE = "en"
DEFAULT_LOG_LEVEL = "WARNING"


@dataclass
class EngineSettings:
    """Process-wide defaults for new managers.

    Attributes:
        notify_delay_ms: Coalescing window for verdict notifications
        culture_id: Culture used for messages and labels
        log_level: Level name for the ``fieldcheck`` logger tree
    """

    notify_delay_ms: int = DEFAULT_NOTIFY_DELAY_MS
    culture_id: str = DEFAULT_CULTURE
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls) -> EngineSettings:
        """Create settings from environment variables.

        Reads FIELDCHECK_NOTIFY_DELAY_MS, FIELDCHECK_CULTURE and
        FIELDCHECK_LOG_LEVEL; unset variables keep their defaults.

        Raises:
            ValueError: For a non-integer or negative delay, or an unknown
                log level
        """
        delay = os.environ.get("FIELDCHECK_NOTIFY_DELAY_MS")
        notify_delay_ms = DEFAULT_NOTIFY_DELAY_MS
        if delay:
            try:
                notify_delay_ms = int(delay)
            except ValueError:
                raise ValueError(
                    f"FIELDCHECK_NOTIFY_DELAY_MS must be an integer, got {delay!r}"
                ) from None
            if notify_delay_ms < 0:
                raise ValueError("FIELDCHECK_NOTIFY_DELAY_MS cannot be negative")

        log_level = os.environ.get("FIELDCHECK_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ValueError(f"Unknown FIELDCHECK_LOG_LEVEL: {log_level}")

        return cls(
            notify_delay_ms=notify_delay_ms,
            culture_id=os.environ.get("FIELDCHECK_CULTURE") or DEFAULT_CULTURE,
            log_level=log_level,
        )

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)
