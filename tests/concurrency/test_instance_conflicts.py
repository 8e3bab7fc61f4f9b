"""
Concurrent actions on one workflow instance.

Covers:
- a competing writer that commits between our read and our flush turns our
  action into ConcurrencyConflictError, with exactly one action recorded
- the loser writes nothing and the instance reflects only the winner
- a second API process sees the committed state, not a cached one
- PostgreSQL: two threads racing on the row lock produce one winner

The SQLite tests use a file-backed database so that each session owns its
own connection.  The threaded tests need real row locks and only run when
DATABASE_URL points at PostgreSQL.
"""

import os
import threading
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.orm import sessionmaker

from workflow_kernel.db.base import Base
from workflow_kernel.db.engine import build_engine, create_tables
from workflow_kernel.domain.workflow import InstanceStatus
from workflow_kernel.exceptions import (
    ConcurrencyConflictError,
    InstanceClosedError,
    UnauthorizedActionError,
)
from workflow_kernel.models.directory import RoleModel, UserModel, UserRoleModel
from workflow_kernel.models.instance import WorkflowActionModel
from workflow_services.workflow_api import WorkflowApi

SEED_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def seed_two_step(factory):
    """Roles R1/R2 with one holder each and a two-step template over them."""
    r1 = RoleModel(id=uuid4(), name="R1", description=None, created_at=SEED_TIME)
    r2 = RoleModel(id=uuid4(), name="R2", description=None, created_at=SEED_TIME)
    u1 = UserModel(id=uuid4(), name="first", is_active=True)
    u2 = UserModel(id=uuid4(), name="second", is_active=True)
    with factory() as session:
        session.add_all([r1, r2, u1, u2])
        session.flush()
        session.add_all([
            UserRoleModel(id=uuid4(), user_id=u1.id, role_id=r1.id, is_primary=False, created_at=SEED_TIME),
            UserRoleModel(id=uuid4(), user_id=u2.id, role_id=r2.id, is_primary=False, created_at=SEED_TIME),
        ])
        session.commit()

    template = WorkflowApi(factory).create_workflow_template({
        "name": "Race",
        "steps": [
            {"name": "S1", "order": 1, "role_id": str(r1.id), "rejection_step": 1},
            {"name": "S2", "order": 2, "role_id": str(r2.id), "rejection_step": 1},
        ],
        "transitions": [{"from_step": 1, "to_step": 2}],
    })
    return template, u1, u2


def count_actions(factory, instance_id):
    with factory() as session:
        return session.execute(
            select(func.count())
            .select_from(WorkflowActionModel)
            .where(WorkflowActionModel.instance_id == instance_id)
        ).scalar_one()


class RacingSessionFactory:
    """Session factory whose first session runs ``competitor`` on its first flush."""

    def __init__(self, factory, competitor):
        self._factory = factory
        self._competitor = competitor
        self._armed = True

    def __call__(self):
        session = self._factory()
        if self._armed:
            self._armed = False
            event.listen(session, "before_flush", self._race, once=True)
        return session

    def _race(self, session, flush_context, instances):
        self._competitor()


@pytest.fixture
def file_factory(tmp_path):
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'race.db'}")
    create_tables(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


class TestInterleavedWriters:
    def test_late_writer_gets_conflict(self, file_factory):
        template, u1, u2 = seed_two_step(file_factory)
        instance = WorkflowApi(file_factory).start_workflow(template.id, "invoice", 1)

        winner = WorkflowApi(file_factory)
        won = []

        def competitor():
            won.append(winner.take_action(instance.id, u1.id, "APPROVE", comments="winner"))

        loser = WorkflowApi(RacingSessionFactory(file_factory, competitor))
        with pytest.raises(ConcurrencyConflictError) as exc_info:
            loser.take_action(instance.id, u1.id, "APPROVE", comments="loser")

        assert exc_info.value.code == "CONCURRENCY_CONFLICT"
        assert exc_info.value.entity_id == str(instance.id)
        assert len(won) == 1

        reader = WorkflowApi(file_factory)
        actions = reader.list_actions(instance.id)
        assert [a.comments for a in actions] == ["winner"]
        current = reader.get_instance(instance.id)
        assert current.current_step_id == template.steps[1].id
        assert current.current_assignee_id == u2.id
        assert current.version == 2

    def test_conflict_is_logged(self, file_factory, captured_logs):
        template, u1, _ = seed_two_step(file_factory)
        instance = WorkflowApi(file_factory).start_workflow(template.id, "invoice", 1)
        winner = WorkflowApi(file_factory)

        loser = WorkflowApi(RacingSessionFactory(
            file_factory, lambda: winner.take_action(instance.id, u1.id, "APPROVE"),
        ))
        with pytest.raises(ConcurrencyConflictError):
            loser.take_action(instance.id, u1.id, "REJECT")

        conflicts = [r for r in captured_logs() if r["message"] == "workflow_concurrency_conflict"]
        assert conflicts[-1]["operation"] == "take_action"
        assert conflicts[-1]["cause"] == "sequence"


class TestSequentialProcesses:
    def test_second_process_sees_committed_state(self, file_factory):
        template, u1, u2 = seed_two_step(file_factory)
        first = WorkflowApi(file_factory)
        second = WorkflowApi(file_factory)
        instance = first.start_workflow(template.id, "invoice", 1)

        first.take_action(instance.id, u1.id, "APPROVE")
        with pytest.raises(UnauthorizedActionError):
            second.take_action(instance.id, u1.id, "APPROVE")

        second.take_action(instance.id, u2.id, "APPROVE")
        with pytest.raises(InstanceClosedError):
            first.take_action(instance.id, u2.id, "APPROVE")
        assert count_actions(file_factory, instance.id) == 2


# =============================================================================
# PostgreSQL row-lock races
# =============================================================================


def _postgres_url() -> str | None:
    url = os.environ.get("DATABASE_URL", "")
    return url if url.startswith("postgresql") else None


@pytest.fixture
def pg_factory():
    url = _postgres_url()
    if url is None:
        pytest.skip("DATABASE_URL does not point at PostgreSQL")
    engine = build_engine(url, pool_size=10, lock_timeout_ms=5000)
    create_tables(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    engine.dispose()


@pytest.mark.postgres
@pytest.mark.slow_locks
class TestThreadedRace:
    @pytest.mark.parametrize("threads", [2, 8])
    def test_one_winner(self, pg_factory, threads):
        template, u1, _ = seed_two_step(pg_factory)
        api = WorkflowApi(pg_factory)
        instance = api.start_workflow(template.id, "invoice", 1)

        barrier = threading.Barrier(threads)
        results = []
        lock = threading.Lock()

        def act():
            barrier.wait()
            try:
                api.take_action(instance.id, u1.id, "APPROVE")
                outcome = "ok"
            except (ConcurrencyConflictError, UnauthorizedActionError) as exc:
                outcome = exc.code
            with lock:
                results.append(outcome)

        workers = [threading.Thread(target=act) for _ in range(threads)]
        for w in workers:
            w.start()
        for w in workers:
            w.join(timeout=30)

        assert len(results) == threads
        assert results.count("ok") == 1
        assert count_actions(pg_factory, instance.id) == 1
        assert api.get_instance(instance.id).status is InstanceStatus.ACTIVE
