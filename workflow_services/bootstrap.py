"""
workflow_services.bootstrap -- Process wiring.

Turns a ``WorkflowEngineConfig`` into a ready ``WorkflowApi``: logging is
configured, the engine and session factory are installed, and (optionally)
the schema is created.  This is the only place where ``workflow_config``
meets ``workflow_kernel``.
"""

from __future__ import annotations

from workflow_config import WorkflowEngineConfig, get_active_config
from workflow_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from workflow_kernel.domain.clock import Clock
from workflow_kernel.logging_config import configure_logging, get_logger
from workflow_services.workflow_api import OutcomeSink, WorkflowApi

logger = get_logger("services.bootstrap")


def build_workflow_api(
    config: WorkflowEngineConfig | None = None,
    *,
    create_schema: bool = False,
    clock: Clock | None = None,
    outcome_sink: OutcomeSink | None = None,
) -> WorkflowApi:
    """Build a WorkflowApi from configuration.

    Args:
        config: Explicit configuration; ``get_active_config()`` when omitted.
        create_schema: Create any missing tables before returning.
        clock: Injected clock (tests); the system clock otherwise.
        outcome_sink: Receives one record per committed state change.
    """
    if config is None:
        config = get_active_config()

    configure_logging(level=config.logging.level_number)

    db = config.database
    engine = init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
        lock_timeout_ms=db.lock_timeout_ms,
    )
    if create_schema:
        create_tables(engine)

    logger.info(
        "workflow_api_ready",
        extra={
            "dialect": engine.dialect.name,
            "config_checksum": config.checksum,
            "tie_break": config.assignment.tie_break,
        },
    )
    return WorkflowApi(
        get_session_factory(),
        clock=clock,
        tie_break=config.assignment.tie_break,
        outcome_sink=outcome_sink,
    )
