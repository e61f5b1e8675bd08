"""
Settings Loader (``backoffice_config.loader``).

Responsibility
--------------
Loads a YAML settings document and parses it into the frozen
``EngineSettings`` dataclass from ``schema.py``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from backoffice_config.schema import EngineSettings, ResumePolicy

_KNOWN_KEYS = frozenset(f.name for f in fields(EngineSettings))


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping, got {type(data).__name__}")
    return data


def parse_resume_policy(value: Any) -> ResumePolicy:
    """Parse a resume policy from its YAML string form."""
    if isinstance(value, ResumePolicy):
        return value
    try:
        return ResumePolicy(str(value))
    except ValueError:
        valid = [p.value for p in ResumePolicy]
        raise ValueError(f"resume_policy must be one of {valid}, got {value!r}") from None


def parse_engine_settings(
    data: dict[str, Any],
    overrides: dict[str, Any] | None = None,
) -> EngineSettings:
    """
    Parse ``EngineSettings`` from a dict, applying non-None ``overrides``.

    Raises:
        ValueError: on unknown keys or invalid values.
    """
    merged = dict(data)
    for key, val in (overrides or {}).items():
        if val is not None:
            merged[key] = val

    unknown = set(merged) - _KNOWN_KEYS
    if unknown:
        raise ValueError(f"Unknown settings keys: {sorted(unknown)}")

    kwargs: dict[str, Any] = {}
    if "database_url" in merged:
        kwargs["database_url"] = str(merged["database_url"])
    for key in (
        "sweep_interval_seconds",
        "sweep_max_workers",
        "claim_ttl_seconds",
        "invoice_payment_terms_days",
    ):
        if key in merged:
            kwargs[key] = int(merged[key])
    for key in ("execution_timeout_seconds", "run_now_wait_seconds"):
        if key in merged:
            kwargs[key] = float(merged[key])
    if "resume_policy" in merged:
        kwargs["resume_policy"] = parse_resume_policy(merged["resume_policy"])
    if "catch_up_missed" in merged:
        if not isinstance(merged["catch_up_missed"], bool):
            raise ValueError(f"catch_up_missed must be a boolean, got {merged['catch_up_missed']!r}")
        kwargs["catch_up_missed"] = merged["catch_up_missed"]
    if "log_level" in merged:
        kwargs["log_level"] = str(merged["log_level"]).upper()

    return EngineSettings(**kwargs)
