"""
backoffice_config -- single public entrypoint for engine settings.

Responsibility:
    ``load_engine_settings()`` is the way services, the sweep runner, and
    the HTTP app obtain ``EngineSettings``.  YAML parsing is internal to
    ``backoffice_config.loader``.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from backoffice_config.loader import load_yaml_file, parse_engine_settings
from backoffice_config.schema import EngineSettings, ResumePolicy

_logger = logging.getLogger("backoffice.config")

# Packaged default settings
DEFAULT_SETTINGS_PATH = Path(__file__).parent / "sets" / "engine.yaml"


def load_engine_settings(
    path: Path | None = None,
    **overrides: Any,
) -> EngineSettings:
    """Load engine settings from ``path`` (default: the packaged engine.yaml).

    Keyword overrides with a non-None value replace the file's values,
    e.g. ``load_engine_settings(database_url=args.database_url)``.
    """
    settings_path = path or DEFAULT_SETTINGS_PATH
    settings = parse_engine_settings(load_yaml_file(settings_path), overrides)

    _logger.info(
        "engine_settings_loaded",
        extra={
            "path": str(settings_path),
            "sweep_interval_seconds": settings.sweep_interval_seconds,
            "resume_policy": settings.resume_policy.value,
            "catch_up_missed": settings.catch_up_missed,
        },
    )
    return settings


__all__ = [
    "DEFAULT_SETTINGS_PATH",
    "EngineSettings",
    "ResumePolicy",
    "load_engine_settings",
]
