"""
Configuration Loader (``workflow_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen dataclasses of
``workflow_config.schema``, then applies environment overrides.  Runtime
callers go through ``workflow_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown top-level or section keys are rejected with ``ValueError``; a typo
  never silently falls back to a default.
* ``compute_checksum`` is a deterministic SHA-256 over the parsed mapping.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shapes or values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from workflow_config.schema import (
    AssignmentConfig,
    DatabaseConfig,
    LoggingConfig,
    WorkflowEngineConfig,
)

ENV_CONFIG_PATH = "WORKFLOW_CONFIG"
ENV_DATABASE_URL = "WORKFLOW_DATABASE_URL"
ENV_DATABASE_URL_FALLBACK = "DATABASE_URL"
ENV_LOG_LEVEL = "WORKFLOW_LOG_LEVEL"

_SECTIONS = {
    "database": DatabaseConfig,
    "logging": LoggingConfig,
    "assignment": AssignmentConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def compute_checksum(data: Mapping[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _parse_section(name: str, raw: Any) -> Any:
    cls = _SECTIONS[name]
    if raw is None:
        return cls()
    if not isinstance(raw, Mapping):
        raise ValueError(f"Config section '{name}' must be a mapping")
    allowed = set(cls.__dataclass_fields__)
    unknown = set(raw) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in config section '{name}': {sorted(unknown)}")
    return cls(**dict(raw))


def parse_engine_config(
    data: Mapping[str, Any],
    source: str | None = None,
) -> WorkflowEngineConfig:
    """Build a ``WorkflowEngineConfig`` from a parsed mapping."""
    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown config sections: {sorted(unknown)}")
    return WorkflowEngineConfig(
        database=_parse_section("database", data.get("database")),
        logging=_parse_section("logging", data.get("logging")),
        assignment=_parse_section("assignment", data.get("assignment")),
        source=source,
        checksum=compute_checksum(data),
    )


def apply_env_overrides(
    config: WorkflowEngineConfig,
    environ: Mapping[str, str],
) -> WorkflowEngineConfig:
    """Environment wins over file values for the database URL and log level."""
    url = environ.get(ENV_DATABASE_URL) or environ.get(ENV_DATABASE_URL_FALLBACK)
    if url:
        config = replace(config, database=replace(config.database, url=url))
    level = environ.get(ENV_LOG_LEVEL)
    if level:
        config = replace(config, logging=LoggingConfig(level=level))
    return config
