"""Tunable thresholds for matching, scoring and routing."""
from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


@dataclass(frozen=True)
class VerificationSettings:
    """Calibration knobs of the verification subsystem.

    ``match_threshold`` and the two decision thresholds are the values most
    worth re-fitting against labelled data.
    """

    match_threshold: float = 0.6
    match_window_days: int = 1
    corroboration_factor: float = 0.1
    corroboration_cap: float = 0.3
    confidence_ceiling: float = 0.99
    auto_approve_threshold: float = 0.85
    review_threshold: float = 0.60
    flag_threshold: int = 3
    batch_delay_seconds: float = 0.2
    batch_limit: int = 100

    def __post_init__(self) -> None:
        if not 0.0 <= self.review_threshold <= self.auto_approve_threshold <= 1.0:
            raise ValueError("Expected 0 <= review_threshold <= auto_approve_threshold <= 1")
        if self.match_window_days < 0:
            raise ValueError("match_window_days must be non-negative")
        if self.flag_threshold < 1:
            raise ValueError("flag_threshold must be at least 1")

    @classmethod
    def from_env(cls) -> "VerificationSettings":
        """Build settings from ``VERIFY_*``/``FLAG_THRESHOLD`` environment variables."""
        defaults = cls()
        return cls(
            match_threshold=_env_float("VERIFY_MATCH_THRESHOLD", defaults.match_threshold),
            match_window_days=_env_int("VERIFY_MATCH_WINDOW_DAYS", defaults.match_window_days),
            corroboration_factor=_env_float("VERIFY_CORROBORATION_FACTOR", defaults.corroboration_factor),
            corroboration_cap=_env_float("VERIFY_CORROBORATION_CAP", defaults.corroboration_cap),
            confidence_ceiling=_env_float("VERIFY_CONFIDENCE_CEILING", defaults.confidence_ceiling),
            auto_approve_threshold=_env_float("VERIFY_AUTO_APPROVE_THRESHOLD", defaults.auto_approve_threshold),
            review_threshold=_env_float("VERIFY_REVIEW_THRESHOLD", defaults.review_threshold),
            flag_threshold=_env_int("FLAG_THRESHOLD", defaults.flag_threshold),
            batch_delay_seconds=_env_float("VERIFY_BATCH_DELAY", defaults.batch_delay_seconds),
            batch_limit=_env_int("VERIFY_BATCH_LIMIT", defaults.batch_limit),
        )
