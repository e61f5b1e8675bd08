"""
Engine settings schema.

``EngineSettings`` is the runtime artifact: a frozen dataclass produced by
the loader from a YAML document.  Validation happens in ``__post_init__``
so an invalid settings file never yields an instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique


@unique
class ResumePolicy(str, Enum):
    """What ``resume`` does with a next-run date that fell in the past."""

    SKIP_MISSED = "skip_missed"  # Jump to the first occurrence on/after today
    RUN_MISSED_ONCE = "run_missed_once"  # Execute the missed date once, then normal cadence


_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class EngineSettings:
    """Settings for the recurring schedule engine and its sweep."""

    database_url: str = "sqlite:///backoffice.db"
    sweep_interval_seconds: int = 300
    sweep_max_workers: int = 4
    execution_timeout_seconds: float = 60.0
    claim_ttl_seconds: int = 300
    run_now_wait_seconds: float = 5.0
    resume_policy: ResumePolicy = ResumePolicy.SKIP_MISSED
    catch_up_missed: bool = False
    invoice_payment_terms_days: int = 30
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.database_url or not self.database_url.strip():
            raise ValueError("database_url cannot be empty")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")
        if self.sweep_max_workers <= 0:
            raise ValueError("sweep_max_workers must be positive")
        if self.execution_timeout_seconds <= 0:
            raise ValueError("execution_timeout_seconds must be positive")
        if self.claim_ttl_seconds <= 0:
            raise ValueError("claim_ttl_seconds must be positive")
        if self.claim_ttl_seconds < self.execution_timeout_seconds:
            raise ValueError(
                "claim_ttl_seconds must not be shorter than execution_timeout_seconds"
            )
        if self.run_now_wait_seconds < 0:
            raise ValueError("run_now_wait_seconds cannot be negative")
        if not isinstance(self.resume_policy, ResumePolicy):
            raise ValueError(f"resume_policy must be a ResumePolicy, got {self.resume_policy!r}")
        if self.invoice_payment_terms_days < 0:
            raise ValueError("invoice_payment_terms_days cannot be negative")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got '{self.log_level}'")
