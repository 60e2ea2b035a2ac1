"""Pytest fixtures for the workstream scheduling engine."""
from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from api import app, get_settings, get_uow
from config import Settings
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork
from model import (
    DependencyType,
    MilestoneType,
    Phase,
    Strategy,
    TaskDependency,
    Workstream,
    WorkstreamTask,
)

TODAY = date(2025, 1, 1)

_EPOCH = datetime(2025, 1, 1, tzinfo=timezone.utc)


# --- Builders ----------------------------------------------------------------

def make_task(
    name: str,
    duration: int = 0,
    *,
    workstream_id: Optional[uuid.UUID] = None,
    phase_id: Optional[uuid.UUID] = None,
    milestone_type: Optional[MilestoneType] = None,
    **kwargs,
) -> WorkstreamTask:
    return WorkstreamTask(
        name=name,
        duration_days=duration,
        workstream_id=workstream_id or uuid.UUID(int=1),
        phase_id=phase_id or uuid.UUID(int=2),
        is_milestone=milestone_type is not None,
        milestone_type=milestone_type,
        **kwargs,
    )


def make_dep(
    pred: WorkstreamTask,
    succ: WorkstreamTask,
    kind: DependencyType = DependencyType.FS,
    lag: int = 0,
    *,
    seq: int = 0,
) -> TaskDependency:
    return TaskDependency(
        predecessor_task_id=pred.id,
        successor_task_id=succ.id,
        dependency_type=kind,
        lag_days=lag,
        created_at=_EPOCH + timedelta(seconds=seq),
    )


class Scenario:
    """T1 → T2 (FS), T1 → T3 (FS +2), T2 → T4 (FF), T3 → T4 (SS)."""

    def __init__(self):
        self.t1 = make_task("T1", 5)
        self.t2 = make_task("T2", 3)
        self.t3 = make_task("T3", 4)
        self.t4 = make_task("T4", 0, milestone_type=MilestoneType.WORKSTREAM_GATE)
        self.tasks: List[WorkstreamTask] = [self.t1, self.t2, self.t3, self.t4]
        self.deps: List[TaskDependency] = [
            make_dep(self.t1, self.t2, seq=1),
            make_dep(self.t1, self.t3, lag=2, seq=2),
            make_dep(self.t2, self.t4, DependencyType.FF, seq=3),
            make_dep(self.t3, self.t4, DependencyType.SS, seq=4),
        ]


# --- Fixtures ----------------------------------------------------------------

@pytest.fixture()
def scenario() -> Scenario:
    return Scenario()


@pytest.fixture()
def db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture()
def uow(db) -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork(db)


@pytest.fixture()
def settings() -> Settings:
    return Settings()


@pytest.fixture()
def client(db, settings):
    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork(db)
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def stored_scenario(db, scenario):
    """Persist the worked scenario under one strategy, workstream and phase."""
    strategy = Strategy(title="Scenario")
    ws = Workstream(strategy_id=strategy.id, name="Ops")
    ph = Phase(strategy_id=strategy.id, name="Discovery", sequence=1)
    for t in scenario.tasks:
        t.workstream_id = ws.id
        t.phase_id = ph.id
    uow = InMemoryUnitOfWork(db)
    with uow:
        uow.strategies.save(strategy)
        uow.workstreams.save(ws)
        uow.phases.save(ph)
        for t in scenario.tasks:
            uow.tasks.save(t)
        for d in scenario.deps:
            uow.dependencies.save(d)
    scenario.strategy = strategy
    scenario.workstream = ws
    scenario.phase = ph
    return scenario
