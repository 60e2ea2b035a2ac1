"""
application.py

Application layer for the Workstream Scheduling & Gate-Status Engine.

Overview
--------
The application layer sits between the presentation layer (API) and the
domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) that carry only the data the
     presentation layer needs — no raw domain objects are leaked upward.
  2. Declaring abstract Repository interfaces so that the application layer
     remains fully persistence-agnostic (implementations live in
     infrastructure.py).
  3. Declaring the UnitOfWork abstraction, which provides the single batched
     snapshot read a computation starts from and wraps the cached-field
     write-back in one atomic transaction.
  4. Implementing Use Case handlers — one class per user-facing operation —
     that load a snapshot, run the scheduling engine, and assemble results.

Structure
---------
DTOs
    TaskScheduleDTO, ScheduleDTO, GateReadinessDTO
    (the calculation contract itself is emitted as a plain dict)

Repository interfaces
    AbstractStrategyRepository
    AbstractWorkstreamRepository
    AbstractPhaseRepository
    AbstractWorkstreamTaskRepository
    AbstractTaskDependencyRepository
    AbstractGateCriterionRepository

Unit of Work
    AbstractUnitOfWork

Use Cases
    ComputeWorkstreamCalculationsUseCase
    GetScheduleUseCase
    GetGateReadinessUseCase

Design notes
------------
- The reference date (`as_of`) is resolved by the caller and handed down;
  nothing below this layer reads the clock for RAG purposes.
- A CycleDetected failure propagates unchanged and happens before any
  write-back, so a rejected graph never leaves a half-written schedule.
- Errors bubble up as ApplicationError (business), SchedulingError (engine)
  or ValueError (validation).
"""

from __future__ import annotations

import abc
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from model import (
    GateCriterion,
    Phase,
    Strategy,
    TaskDependency,
    Workstream,
    WorkstreamTask,
)
from service import (
    CalculationResult,
    GateReadiness,
    RagPolicy,
    ScheduleWriteBackService,
    SchedulingEngine,
    UnknownEndpoint,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Raised when a use case cannot complete due to a business rule violation."""


class NotFoundError(ApplicationError):
    """Raised when a requested entity does not exist."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

@dataclass
class TaskScheduleDTO:
    task_id: str
    workstream_id: str
    phase_id: str
    name: str
    early_start: int
    early_finish: int
    late_start: int
    late_finish: int
    total_float: int
    is_critical: bool
    early_start_date: Optional[str]
    early_finish_date: Optional[str]
    rag: str


@dataclass
class ScheduleDTO:
    """Full CPM detail for a strategy."""
    strategy_id: str
    anchor_date: Optional[str]
    project_finish: int
    project_finish_date: Optional[str]
    critical_task_ids: List[str]
    tasks: List[TaskScheduleDTO]
    dropped_dependency_ids: List[str]


@dataclass
class GateReadinessDTO:
    task_id: str
    name: str
    gate_type: str
    workstream_id: str
    phase_id: str
    criteria_total: int
    criteria_met: int
    readiness_pct: Optional[float]
    rag: str


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts engine results into DTOs and the calculation contract."""

    @staticmethod
    def calculation(result: CalculationResult) -> Dict[str, Any]:
        return {
            "taskRag": {str(tid): rag.value for tid, rag in result.task_rag.items()},
            "workstreamGateRag": {
                str(ws_id): {str(ph_id): rag.value for ph_id, rag in phases.items()}
                for ws_id, phases in result.workstream_gate_rag.items()
            },
            "programGateRag": {
                str(ph_id): rag.value for ph_id, rag in result.program_gate_rag.items()
            },
            "criticalPath": {
                str(tid): {"isCritical": s.is_critical, "totalFloat": s.total_float}
                for tid, s in result.schedules.items()
            },
        }

    @staticmethod
    def schedule(
        strategy_id: uuid.UUID,
        result: CalculationResult,
        tasks: List[WorkstreamTask],
    ) -> ScheduleDTO:
        rows = []
        for t in tasks:
            s = result.schedules[t.id]
            rows.append(
                TaskScheduleDTO(
                    task_id=str(t.id),
                    workstream_id=str(t.workstream_id),
                    phase_id=str(t.phase_id),
                    name=t.name,
                    early_start=s.early_start,
                    early_finish=s.early_finish,
                    late_start=s.late_start,
                    late_finish=s.late_finish,
                    total_float=s.total_float,
                    is_critical=s.is_critical,
                    early_start_date=_fmt_date(result.calendar_date(s.early_start)),
                    early_finish_date=_fmt_date(result.calendar_date(s.early_finish)),
                    rag=result.task_rag[t.id].value,
                )
            )
        rows.sort(key=lambda r: (r.early_start, r.early_finish, r.task_id))
        return ScheduleDTO(
            strategy_id=str(strategy_id),
            anchor_date=_fmt_date(result.anchor),
            project_finish=result.project_finish,
            project_finish_date=_fmt_date(result.calendar_date(result.project_finish)),
            critical_task_ids=[str(tid) for tid in result.critical_task_ids],
            tasks=rows,
            dropped_dependency_ids=[
                str(a.dependency_id) for a in result.anomalies if isinstance(a, UnknownEndpoint)
            ],
        )

    @staticmethod
    def gate_readiness(g: GateReadiness, task: WorkstreamTask) -> GateReadinessDTO:
        return GateReadinessDTO(
            task_id=str(g.task_id),
            name=task.name,
            gate_type=g.gate_type.value,
            workstream_id=str(g.workstream_id),
            phase_id=str(g.phase_id),
            criteria_total=g.criteria_total,
            criteria_met=g.criteria_met,
            readiness_pct=g.readiness_pct,
            rag=g.rag.value,
        )


# ===========================================================================
# REPOSITORY INTERFACES
# ===========================================================================

class AbstractStrategyRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, strategy_id: uuid.UUID) -> Optional[Strategy]: ...
    @abc.abstractmethod
    def save(self, strategy: Strategy) -> None: ...


class AbstractWorkstreamRepository(abc.ABC):
    @abc.abstractmethod
    def list_for_strategy(self, strategy_id: uuid.UUID) -> List[Workstream]: ...
    @abc.abstractmethod
    def save(self, workstream: Workstream) -> None: ...


class AbstractPhaseRepository(abc.ABC):
    @abc.abstractmethod
    def list_for_strategy(self, strategy_id: uuid.UUID) -> List[Phase]: ...
    @abc.abstractmethod
    def save(self, phase: Phase) -> None: ...


class AbstractWorkstreamTaskRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, task_id: uuid.UUID) -> Optional[WorkstreamTask]: ...
    @abc.abstractmethod
    def list_for_cells(
        self, workstream_ids: set, phase_ids: set
    ) -> List[WorkstreamTask]: ...
    @abc.abstractmethod
    def save(self, task: WorkstreamTask) -> None: ...
    @abc.abstractmethod
    def save_schedule(self, task_id: uuid.UUID, fields: Dict[str, Any]) -> None:
        """Set cached schedule fields on the stored task, leaving the rest of the row as stored."""


class AbstractTaskDependencyRepository(abc.ABC):
    @abc.abstractmethod
    def list_touching(self, task_ids: set) -> List[TaskDependency]:
        """Dependencies with a predecessor or a successor in `task_ids`."""
    @abc.abstractmethod
    def save(self, dependency: TaskDependency) -> None: ...


class AbstractGateCriterionRepository(abc.ABC):
    @abc.abstractmethod
    def list_for_gates(self, gate_task_ids: set) -> List[GateCriterion]: ...
    @abc.abstractmethod
    def save(self, criterion: GateCriterion) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

@dataclass
class StrategySnapshot:
    """Everything a schedule computation reads, captured in one pass."""
    strategy: Strategy
    workstreams: List[Workstream]
    phases: List[Phase]
    tasks: List[WorkstreamTask]
    dependencies: List[TaskDependency]
    criteria: List[GateCriterion]


class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single transactional boundary.
    Use as a context manager:

        with uow:
            uow.tasks.save(task)
            uow.commit()
    """
    strategies: AbstractStrategyRepository
    workstreams: AbstractWorkstreamRepository
    phases: AbstractPhaseRepository
    tasks: AbstractWorkstreamTaskRepository
    dependencies: AbstractTaskDependencyRepository
    gate_criteria: AbstractGateCriterionRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    def snapshot(self, strategy_id: uuid.UUID) -> Optional[StrategySnapshot]:
        """
        Read a strategy's workstreams, phases, tasks, dependencies and gate
        criteria.  Returns None when the strategy does not exist.
        Implementations should make this one consistent read.
        """
        strategy = self.strategies.get(strategy_id)
        if strategy is None:
            return None
        workstreams = self.workstreams.list_for_strategy(strategy_id)
        phases = self.phases.list_for_strategy(strategy_id)
        tasks = self.tasks.list_for_cells(
            {w.id for w in workstreams}, {p.id for p in phases}
        )
        return StrategySnapshot(
            strategy=strategy,
            workstreams=workstreams,
            phases=phases,
            tasks=tasks,
            dependencies=self.dependencies.list_touching({t.id for t in tasks}),
            criteria=self.gate_criteria.list_for_gates({t.id for t in tasks if t.is_gate}),
        )

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_engine = SchedulingEngine()
_write_back_svc = ScheduleWriteBackService()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

@dataclass
class ScheduleQuery:
    strategy_id: uuid.UUID
    as_of: date
    policy: RagPolicy = RagPolicy()
    write_back: bool = False


def _get_snapshot_or_raise(
    uow: AbstractUnitOfWork, strategy_id: uuid.UUID
) -> StrategySnapshot:
    snapshot = uow.snapshot(strategy_id)
    if snapshot is None:
        raise NotFoundError(f"Strategy {strategy_id} not found.")
    return snapshot


def _compute(
    uow: AbstractUnitOfWork, query: ScheduleQuery
) -> Tuple[StrategySnapshot, CalculationResult]:
    """
    Snapshot, compute and (optionally) write back inside the caller's
    unit of work.  Returns (snapshot, result).
    """
    snapshot = _get_snapshot_or_raise(uow, query.strategy_id)
    result = _engine.compute(
        snapshot.tasks,
        snapshot.dependencies,
        today=query.as_of,
        policy=query.policy,
        phases=snapshot.phases,
        workstreams=snapshot.workstreams,
        criteria=snapshot.criteria,
    )
    if query.write_back:
        updated = _write_back_svc.changed_fields(snapshot.tasks, result.schedules)
        for task_id, fields in updated.items():
            uow.tasks.save_schedule(task_id, fields)
        uow.commit()
        if updated:
            logger.info(
                "Cached schedule refreshed for %d task(s) of strategy %s",
                len(updated), query.strategy_id,
            )
    return snapshot, result


# ===========================================================================
# USE CASES — SCHEDULE
# ===========================================================================

class ComputeWorkstreamCalculationsUseCase:
    """taskRag / workstreamGateRag / programGateRag / criticalPath for a strategy."""

    def execute(self, query: ScheduleQuery, uow: AbstractUnitOfWork) -> Dict[str, Any]:
        with uow:
            _, result = _compute(uow, query)
            return _Assembler.calculation(result)


class GetScheduleUseCase:
    def execute(self, query: ScheduleQuery, uow: AbstractUnitOfWork) -> ScheduleDTO:
        with uow:
            snapshot, result = _compute(uow, query)
            return _Assembler.schedule(query.strategy_id, result, snapshot.tasks)


class GetGateReadinessUseCase:
    def execute(self, query: ScheduleQuery, uow: AbstractUnitOfWork) -> List[GateReadinessDTO]:
        with uow:
            snapshot, result = _compute(uow, query)
            by_id = {t.id: t for t in snapshot.tasks}
            return [
                _Assembler.gate_readiness(g, by_id[g.task_id])
                for g in result.gate_readiness
            ]
