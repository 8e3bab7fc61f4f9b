"""
workflow_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain runtime configuration through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration.  Sits above ``workflow_kernel`` and below
    ``workflow_services``.  The kernel MUST NEVER import from
    ``workflow_config``; ``workflow_services.bootstrap`` translates the
    config into kernel calls.

Resolution order:
    1. explicit ``path`` argument, else ``$WORKFLOW_CONFIG``, else defaults;
    2. ``$WORKFLOW_DATABASE_URL`` (or ``$DATABASE_URL``) and
       ``$WORKFLOW_LOG_LEVEL`` override file values.

Failure modes:
    - ``FileNotFoundError`` -- the named file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful call emits a ``workflow_config_loaded`` log entry with
    the source and checksum of the active configuration.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from workflow_config.loader import (
    ENV_CONFIG_PATH,
    apply_env_overrides,
    load_yaml_file,
    parse_engine_config,
)
from workflow_config.schema import (
    AssignmentConfig,
    DatabaseConfig,
    LoggingConfig,
    WorkflowEngineConfig,
)

_logger = logging.getLogger("workflow_kernel.config")


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> WorkflowEngineConfig:
    """The ONLY public configuration entrypoint."""
    env = os.environ if environ is None else environ

    if path is None and env.get(ENV_CONFIG_PATH):
        path = env[ENV_CONFIG_PATH]

    if path is not None:
        config_path = Path(path)
        config = parse_engine_config(load_yaml_file(config_path), source=str(config_path))
    else:
        config = parse_engine_config({}, source=None)

    config = apply_env_overrides(config, env)

    _logger.info(
        "workflow_config_loaded",
        extra={
            "source": config.source,
            "checksum": config.checksum,
            "dialect": config.database.url.split(":", 1)[0],
            "tie_break": config.assignment.tie_break,
        },
    )
    return config


__all__ = [
    "AssignmentConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "WorkflowEngineConfig",
    "get_active_config",
]
