"""
infrastructure.py

In-memory implementation of all repository interfaces and the Unit of Work.

This is a self-contained, zero-dependency backend that stores everything in
plain Python dicts keyed by UUID.  It is intentionally simple — suitable for
local development, demos, and integration testing without needing a real
database.

Writes are staged on the Unit of Work and applied together on commit(),
under the database lock, so a reader taking a snapshot never observes a
half-applied write-back.  rollback() discards whatever is staged.

To swap in a real database (e.g. SQLAlchemy + PostgreSQL) later, implement
the same Abstract* interfaces from application.py and override get_uow() in
api.py:

    app.dependency_overrides[get_uow] = lambda: SqlAlchemyUnitOfWork(session)

Nothing in service.py, application.py, or api.py needs to change.
"""

from __future__ import annotations

import dataclasses
import threading
import uuid
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

from application import (
    AbstractGateCriterionRepository,
    AbstractPhaseRepository,
    AbstractStrategyRepository,
    AbstractTaskDependencyRepository,
    AbstractUnitOfWork,
    AbstractWorkstreamRepository,
    AbstractWorkstreamTaskRepository,
    StrategySnapshot,
)
from model import (
    DependencyType,
    GateCriterion,
    MilestoneType,
    Phase,
    Strategy,
    TaskDependency,
    TaskStatus,
    Workstream,
    WorkstreamTask,
)


# ---------------------------------------------------------------------------
# Generic in-memory store
# ---------------------------------------------------------------------------

class _Store(dict):
    """A plain dict with typed get/save helpers."""

    def fetch(self, key: uuid.UUID):
        return self.get(key)

    def put(self, obj) -> None:
        self[obj.id] = obj

    def all(self) -> list:
        return list(self.values())


# ---------------------------------------------------------------------------
# Shared in-memory database (module-level singleton)
# Persists for the lifetime of the process — restarting uvicorn resets it.
# ---------------------------------------------------------------------------

class InMemoryDatabase:
    def __init__(self):
        self.lock = threading.RLock()
        self.strategies:    _Store = _Store()
        self.workstreams:   _Store = _Store()
        self.phases:        _Store = _Store()
        self.tasks:         _Store = _Store()
        self.dependencies:  _Store = _Store()
        self.gate_criteria: _Store = _Store()


# Module-level singleton — shared across all requests
_db = InMemoryDatabase()


# ---------------------------------------------------------------------------
# Repository implementations
# ---------------------------------------------------------------------------

class _Repository:
    def __init__(self, store: _Store, staged: List[Callable[[], None]]):
        self._s = store
        self._staged = staged

    def save(self, obj) -> None:
        self._staged.append(lambda: self._s.put(obj))


class InMemoryStrategyRepository(_Repository, AbstractStrategyRepository):
    def get(self, strategy_id):       return self._s.fetch(strategy_id)


class InMemoryWorkstreamRepository(_Repository, AbstractWorkstreamRepository):
    def list_for_strategy(self, strategy_id):
        return [w for w in self._s.all() if w.strategy_id == strategy_id]


class InMemoryPhaseRepository(_Repository, AbstractPhaseRepository):
    def list_for_strategy(self, strategy_id):
        return [p for p in self._s.all() if p.strategy_id == strategy_id]


class InMemoryWorkstreamTaskRepository(_Repository, AbstractWorkstreamTaskRepository):
    def get(self, task_id):           return self._s.fetch(task_id)
    def list_for_cells(self, workstream_ids, phase_ids):
        return [
            t for t in self._s.all()
            if t.workstream_id in workstream_ids and t.phase_id in phase_ids
        ]

    def save_schedule(self, task_id, fields: Dict[str, Any]) -> None:
        def apply() -> None:
            current = self._s.fetch(task_id)
            if current is not None:     # deleted since the snapshot
                self._s.put(dataclasses.replace(current, **fields))
        self._staged.append(apply)


class InMemoryTaskDependencyRepository(_Repository, AbstractTaskDependencyRepository):
    def list_touching(self, task_ids):
        return [
            d for d in self._s.all()
            if d.predecessor_task_id in task_ids or d.successor_task_id in task_ids
        ]


class InMemoryGateCriterionRepository(_Repository, AbstractGateCriterionRepository):
    def list_for_gates(self, gate_task_ids):
        return [c for c in self._s.all() if c.gate_task_id in gate_task_ids]


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Wraps all in-memory repositories.  save() and save_schedule() calls are
    staged; commit() applies them atomically under the database lock and
    rollback() drops them.  save_schedule() is applied to the row as stored
    at commit time, so edits made after the snapshot survive it.
    """

    def __init__(self, db: InMemoryDatabase = _db):
        self._db = db
        self._staged: List[Callable[[], None]] = []
        self.strategies    = InMemoryStrategyRepository(db.strategies, self._staged)
        self.workstreams   = InMemoryWorkstreamRepository(db.workstreams, self._staged)
        self.phases        = InMemoryPhaseRepository(db.phases, self._staged)
        self.tasks         = InMemoryWorkstreamTaskRepository(db.tasks, self._staged)
        self.dependencies  = InMemoryTaskDependencyRepository(db.dependencies, self._staged)
        self.gate_criteria = InMemoryGateCriterionRepository(db.gate_criteria, self._staged)

    def snapshot(self, strategy_id: uuid.UUID) -> Optional[StrategySnapshot]:
        with self._db.lock:
            return super().snapshot(strategy_id)

    def commit(self) -> None:
        with self._db.lock:
            for apply in self._staged:
                apply()
        self._staged.clear()

    def rollback(self) -> None:
        self._staged.clear()


# ---------------------------------------------------------------------------
# Demo data
# ---------------------------------------------------------------------------

def seed_demo_strategy(uow: AbstractUnitOfWork, start: Optional[date] = None) -> Strategy:
    """
    Write a small two-workstream, two-phase plan and return its strategy.

    Discovery holds the scenario T1 → T2 (FS) and T1 → T3 (FS +2) feeding a
    workstream gate (FF on T2, SS on T3), which makes T1 → T3 the critical
    path.  Delivery continues from the gate and closes with a program gate.
    """
    start = start or date.today()
    strategy = Strategy(title="Demo transformation programme")
    ops = Workstream(strategy_id=strategy.id, name="Operations", lead="Ops lead", sort_order=1)
    tech = Workstream(strategy_id=strategy.id, name="Technology", lead="Tech lead", sort_order=2)
    discovery = Phase(strategy_id=strategy.id, name="Discovery", sequence=1)
    delivery = Phase(strategy_id=strategy.id, name="Delivery", sequence=2)

    def task(name, ws, ph, duration, offset, **kwargs) -> WorkstreamTask:
        return WorkstreamTask(
            workstream_id=ws.id,
            phase_id=ph.id,
            name=name,
            duration_days=duration,
            planned_start=start + timedelta(days=offset),
            planned_end=start + timedelta(days=offset + duration),
            **kwargs,
        )

    t1 = task("Current-state assessment", ops, discovery, 5, 0, status=TaskStatus.IN_PROGRESS)
    t2 = task("Stakeholder interviews", ops, discovery, 3, 5)
    t3 = task("Systems inventory", tech, discovery, 4, 7)
    gate = task(
        "Discovery sign-off", ops, discovery, 0, 8,
        is_milestone=True, milestone_type=MilestoneType.WORKSTREAM_GATE,
    )
    t5 = task("Process redesign", ops, delivery, 10, 11)
    t6 = task("Platform build", tech, delivery, 12, 11)
    launch = task(
        "Go-live decision", ops, delivery, 0, 23,
        is_milestone=True, milestone_type=MilestoneType.PROGRAM_GATE,
    )

    def link(pred, succ, kind=DependencyType.FS, lag=0) -> TaskDependency:
        return TaskDependency(
            predecessor_task_id=pred.id,
            successor_task_id=succ.id,
            dependency_type=kind,
            lag_days=lag,
        )

    with uow:
        uow.strategies.save(strategy)
        for ws in (ops, tech):
            uow.workstreams.save(ws)
        for ph in (discovery, delivery):
            uow.phases.save(ph)
        for t in (t1, t2, t3, gate, t5, t6, launch):
            uow.tasks.save(t)
        for dep in (
            link(t1, t2),
            link(t1, t3, lag=2),
            link(t2, gate, DependencyType.FF),
            link(t3, gate, DependencyType.SS),
            link(gate, t5),
            link(t3, t6),
            link(t5, launch),
            link(t6, launch),
        ):
            uow.dependencies.save(dep)
        uow.gate_criteria.save(
            GateCriterion(gate_task_id=gate.id, description="Findings reviewed", is_met=True)
        )
        uow.gate_criteria.save(
            GateCriterion(gate_task_id=launch.id, description="Cutover plan approved")
        )
        uow.commit()
    return strategy
