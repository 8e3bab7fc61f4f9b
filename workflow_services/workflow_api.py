"""
workflow_services.workflow_api -- Boundary operations of the workflow engine.

Responsibility:
    The surface an RPC layer calls: create templates, start workflows, take
    actions, and list assigned work.  Each call runs in its own transaction,
    composes the kernel services, and translates storage failures into the
    kernel's typed errors.

Architecture position:
    Services -- stateful orchestration over kernel services and engines.
    The only layer that commits or rolls back.

Invariants enforced:
    - One operation, one transaction: commit on success, rollback on any
      error.  A refused action leaves no trace.
    - Raw storage errors never leak: StaleDataError and lock/serialization
      failures become ConcurrencyConflictError, every other SQLAlchemyError
      becomes InternalError.
    - The outcome sink only sees records of committed transactions.

Failure modes:
    - Every WorkflowKernelError subclass propagates unchanged.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.workflow import (
    ActionOutcome,
    ActionRecord,
    ActionType,
    AssignedWorkflow,
    AssignmentRecord,
    InstanceRecord,
    InstanceStatus,
    TemplateRecord,
    TemplateSummary,
)
from workflow_kernel.exceptions import (
    ConcurrencyConflictError,
    InstanceNotFoundError,
    InternalError,
    TemplateNotFoundError,
    UnauthorizedActionError,
    ValidationError,
    WorkflowKernelError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.selectors.workflow_selector import WorkflowSelector
from workflow_kernel.services.action_recorder import ActionRecorder
from workflow_kernel.services.assignment_resolver import (
    PRIMARY_THEN_LOWEST_ID,
    AssignmentResolver,
)
from workflow_kernel.services.instance_service import InstanceService
from workflow_kernel.services.template_service import TemplateService
from workflow_services.requests import CreateWorkflowTemplateRequest

logger = get_logger("services.workflow_api")

OutcomeSink = Callable[[dict[str, Any]], None]

_LOCK_CONFLICT_MARKERS = (
    "deadlock",
    "lock timeout",
    "lock_timeout",
    "could not obtain lock",
    "could not serialize",
    "database is locked",
)

# Unique keys that only collide when two writers raced on one instance.
_SEQUENCE_CONFLICT_MARKERS = (
    "uq_workflow_actions_instance_seq",
    "uq_workflow_assignments_instance_visit",
    "workflow_actions.instance_id, workflow_actions.sequence",
    "workflow_step_assignments.instance_id, workflow_step_assignments.visit",
)


def _is_lock_conflict(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _LOCK_CONFLICT_MARKERS)


def _is_sequence_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc)
    return any(marker in message for marker in _SEQUENCE_CONFLICT_MARKERS)


def _parse_id(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


@dataclass
class _Scope:
    """Per-operation state: the session and the buffered outcome records."""

    session: Session
    events: list[dict[str, Any]] = field(default_factory=list)


class WorkflowApi:
    """
    Transactional facade over the workflow kernel.

    Contract:
        Every public method opens a session from ``session_factory``, runs
        the kernel services inside one transaction, commits, and returns
        frozen DTOs.

    Guarantees:
        - Errors are WorkflowKernelError subclasses only.
        - ``outcome_sink`` receives one record per committed state change.

    Non-goals:
        - Authentication.  ``user_id`` is trusted as given by the caller.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        tie_break: str = PRIMARY_THEN_LOWEST_ID,
        outcome_sink: OutcomeSink | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._tie_break = tie_break
        self._outcome_sink = outcome_sink

    # ------------------------------------------------------------------
    # Transaction scope
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(
        self,
        operation: str,
        entity_type: str = "WorkflowInstance",
        entity_id: Any = None,
    ) -> Iterator[_Scope]:
        scope = _Scope(session=self._session_factory())
        t0 = time.monotonic()
        with LogContext.bind(correlation_id=uuid4()):
            try:
                yield scope
                scope.session.commit()
            except WorkflowKernelError as exc:
                scope.session.rollback()
                logger.info(
                    "workflow_operation_refused",
                    extra={"operation": operation, "error_code": exc.code},
                )
                raise
            except StaleDataError as exc:
                scope.session.rollback()
                logger.warning(
                    "workflow_concurrency_conflict",
                    extra={"operation": operation, "cause": "stale_version"},
                )
                raise ConcurrencyConflictError(
                    entity_type, str(entity_id) if entity_id else None, "stale version"
                ) from exc
            except OperationalError as exc:
                scope.session.rollback()
                if _is_lock_conflict(exc):
                    logger.warning(
                        "workflow_concurrency_conflict",
                        extra={"operation": operation, "cause": "lock"},
                    )
                    raise ConcurrencyConflictError(
                        entity_type, str(entity_id) if entity_id else None, "lock conflict"
                    ) from exc
                logger.error("workflow_storage_failure", extra={"operation": operation}, exc_info=True)
                raise InternalError(operation, type(exc).__name__) from exc
            except IntegrityError as exc:
                scope.session.rollback()
                if _is_sequence_conflict(exc):
                    logger.warning(
                        "workflow_concurrency_conflict",
                        extra={"operation": operation, "cause": "sequence"},
                    )
                    raise ConcurrencyConflictError(
                        entity_type, str(entity_id) if entity_id else None, "concurrent write"
                    ) from exc
                logger.error("workflow_storage_failure", extra={"operation": operation}, exc_info=True)
                raise InternalError(operation, type(exc).__name__) from exc
            except SQLAlchemyError as exc:
                scope.session.rollback()
                logger.error("workflow_storage_failure", extra={"operation": operation}, exc_info=True)
                raise InternalError(operation, type(exc).__name__) from exc
            finally:
                scope.session.close()

            logger.debug(
                "workflow_operation_committed",
                extra={
                    "operation": operation,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 3),
                    "event_count": len(scope.events),
                },
            )

        if self._outcome_sink is not None:
            for record in scope.events:
                self._outcome_sink(record)

    def _instance_service(self, scope: _Scope) -> InstanceService:
        resolver = AssignmentResolver(scope.session, self._clock, tie_break=self._tie_break)
        return InstanceService(
            scope.session,
            clock=self._clock,
            resolver=resolver,
            recorder=ActionRecorder(scope.session, self._clock),
            outcome_sink=scope.events.append,
        )

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def create_workflow_template(
        self,
        request: CreateWorkflowTemplateRequest | Mapping[str, Any],
    ) -> TemplateRecord:
        if not isinstance(request, CreateWorkflowTemplateRequest):
            request = CreateWorkflowTemplateRequest.from_dict(request)

        with self._transaction("create_workflow_template", "WorkflowTemplate") as scope:
            return TemplateService(scope.session, self._clock).create_template(
                name=request.name,
                description=request.description,
                steps=[s.to_spec() for s in request.steps],
                transitions=[t.to_spec() for t in request.transitions],
            )

    def get_template(self, template_id: UUID | str) -> TemplateRecord:
        tid = _parse_id(template_id)
        if tid is None:
            raise TemplateNotFoundError(str(template_id))
        with self._transaction("get_template", "WorkflowTemplate", tid) as scope:
            return TemplateService(scope.session, self._clock).get_template(tid)

    def deactivate_template(self, template_id: UUID | str) -> TemplateSummary:
        tid = _parse_id(template_id)
        if tid is None:
            raise TemplateNotFoundError(str(template_id))
        with self._transaction("deactivate_template", "WorkflowTemplate", tid) as scope:
            return TemplateService(scope.session, self._clock).deactivate_template(tid)

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def start_workflow(
        self,
        template_id: UUID | str,
        entity_type: str,
        entity_id: str | int,
    ) -> InstanceRecord:
        tid = _parse_id(template_id)
        if tid is None:
            raise TemplateNotFoundError(str(template_id))
        with self._transaction("start_workflow", "WorkflowTemplate", tid) as scope:
            return self._instance_service(scope).start_instance(tid, entity_type, entity_id)

    def submit_action(
        self,
        instance_id: UUID | str,
        user_id: UUID | str,
        action_type: ActionType | str,
        comments: str | None = None,
        data_modifications: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> ActionOutcome:
        """Like ``take_action`` but returns the full outcome (action + decision)."""
        iid = _parse_id(instance_id)
        if iid is None:
            raise InstanceNotFoundError(str(instance_id))
        uid = _parse_id(user_id)
        if uid is None:
            raise UnauthorizedActionError(str(instance_id), str(user_id), None)

        with self._transaction("take_action", "WorkflowInstance", iid) as scope:
            return self._instance_service(scope).apply_action(
                iid,
                uid,
                action_type,
                comments=comments,
                data_modifications=data_modifications,
                context=context,
            )

    def take_action(
        self,
        instance_id: UUID | str,
        user_id: UUID | str,
        action_type: ActionType | str,
        comments: str | None = None,
        data_modifications: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> InstanceRecord:
        return self.submit_action(
            instance_id,
            user_id,
            action_type,
            comments=comments,
            data_modifications=data_modifications,
            context=context,
        ).instance

    def get_instance(self, instance_id: UUID | str) -> InstanceRecord:
        iid = _parse_id(instance_id)
        if iid is None:
            raise InstanceNotFoundError(str(instance_id))
        with self._transaction("get_instance", "WorkflowInstance", iid) as scope:
            record = WorkflowSelector(scope.session).get_instance(iid)
            if record is None:
                raise InstanceNotFoundError(str(iid))
            return record

    def list_actions(self, instance_id: UUID | str) -> list[ActionRecord]:
        iid = _parse_id(instance_id)
        if iid is None:
            raise InstanceNotFoundError(str(instance_id))
        with self._transaction("list_actions", "WorkflowInstance", iid) as scope:
            selector = WorkflowSelector(scope.session)
            if selector.get_instance(iid) is None:
                raise InstanceNotFoundError(str(iid))
            return ActionRecorder(scope.session, self._clock).list_actions(iid)

    def list_assignments(self, instance_id: UUID | str) -> list[AssignmentRecord]:
        iid = _parse_id(instance_id)
        if iid is None:
            raise InstanceNotFoundError(str(instance_id))
        with self._transaction("list_assignments", "WorkflowInstance", iid) as scope:
            selector = WorkflowSelector(scope.session)
            if selector.get_instance(iid) is None:
                raise InstanceNotFoundError(str(iid))
            return selector.list_assignments(iid)

    def get_assigned_workflows(
        self,
        user_id: UUID | str,
        status: InstanceStatus | str | None = None,
    ) -> list[AssignedWorkflow]:
        """Instances currently assigned to ``user_id``, oldest first."""
        if status is not None:
            try:
                status = InstanceStatus(status)
            except ValueError:
                raise ValidationError(
                    "get_assigned_workflows",
                    [{
                        "field": "status",
                        "code": "INVALID_STATUS",
                        "message": "status must be ACTIVE, COMPLETED or REJECTED",
                        "value": str(status),
                    }],
                ) from None

        uid = _parse_id(user_id)
        if uid is None:
            return []
        with self._transaction("get_assigned_workflows", "User", uid) as scope:
            return WorkflowSelector(scope.session).get_assigned_workflows(uid, status)
