"""
model.py

Domain models for the Workstream Scheduling & Gate-Status Engine.

Entities
--------
- Strategy
- Workstream
- Phase
- WorkstreamTask
- TaskDependency
- GateCriterion

All models use Python dataclasses for clean, framework-agnostic definitions.
UUID primary keys are used throughout for portability.
Timestamps are always stored in UTC.

Workstreams and phases form a matrix: every task sits in exactly one
(workstream, phase) cell.  Tasks are linked by typed, lagged precedence
dependencies; a dependency has no strategy of its own and is scoped by
the tasks it links.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TaskStatus(str, Enum):
    """Lifecycle status of an individual workstream task."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    BLOCKED = "blocked"


class MilestoneType(str, Enum):
    """
    Classification of a milestone task.

    WORKSTREAM_GATE – Go/no-go checkpoint for a single (workstream, phase) cell.
    PROGRAM_GATE    – Go/no-go checkpoint for a whole phase across workstreams.
    GENERAL         – Informational milestone; does not feed any gate.
    """
    WORKSTREAM_GATE = "workstream_gate"
    PROGRAM_GATE = "program_gate"
    GENERAL = "general"


class DependencyType(str, Enum):
    """
    Precedence relationship between two tasks.

    FS – successor starts after predecessor finishes (default)
    SS – successor starts after predecessor starts
    FF – successor finishes after predecessor finishes
    SF – successor finishes after predecessor starts
    """
    FS = "FS"
    SS = "SS"
    FF = "FF"
    SF = "SF"


class RagStatus(str, Enum):
    """Red / Amber / Green status signal.  Compare severity with `rank`."""
    GREEN = "GREEN"
    AMBER = "AMBER"
    RED = "RED"

    @property
    def rank(self) -> int:
        return _RAG_RANK[self]


_RAG_RANK = {RagStatus.GREEN: 1, RagStatus.AMBER: 2, RagStatus.RED: 3}


# ---------------------------------------------------------------------------
# Organisational Entities
# ---------------------------------------------------------------------------


@dataclass
class Strategy:
    """
    Scoping root for a workstream plan.

    Strategies are owned by the surrounding planning tool; the engine only
    needs to know that one exists before computing its schedule.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    title: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Workstream:
    """
    A row of the workstream × phase matrix.

    Purely organisational: a workstream never takes part in scheduling
    itself, it only groups tasks.  `sort_order` controls display sequence.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    strategy_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → Strategy.id
    name: str = ""
    lead: Optional[str] = None
    sort_order: int = 0

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Phase:
    """
    A column of the workstream × phase matrix, ordered by `sequence`.

    The planned dates are display context only; they are never used as
    scheduling input.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    strategy_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → Strategy.id
    name: str = ""
    sequence: int = 0
    planned_start: Optional[date] = None
    planned_end: Optional[date] = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Scheduling Entities
# ---------------------------------------------------------------------------


@dataclass
class WorkstreamTask:
    """
    A unit of work placed in exactly one (workstream, phase) cell.

    Milestones carry `duration_days = 0`.  A milestone flagged as a
    workstream or program gate feeds the corresponding gate rollup.

    The early/late/float fields are a write-back cache of the last schedule
    computation.  They are never read as input: every computation starts
    again from tasks and dependencies.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    workstream_id: uuid.UUID = field(default_factory=uuid.uuid4)  # FK → Workstream.id
    phase_id: uuid.UUID = field(default_factory=uuid.uuid4)       # FK → Phase.id
    name: str = ""
    description: str = ""
    owner: Optional[str] = None
    sort_order: int = 0

    # Planned schedule
    planned_start: Optional[date] = None
    planned_end: Optional[date] = None
    duration_days: int = 0

    # Actuals
    actual_start: Optional[date] = None
    actual_end: Optional[date] = None

    # Progress & status
    percent_complete: float = 0.0       # 0.0 – 100.0
    status: TaskStatus = TaskStatus.NOT_STARTED

    is_milestone: bool = False
    milestone_type: Optional[MilestoneType] = None

    # Cached schedule (computed; not source-of-truth)
    early_start: Optional[int] = None
    early_finish: Optional[int] = None
    late_start: Optional[int] = None
    late_finish: Optional[int] = None
    total_float: Optional[int] = None
    is_critical: bool = False

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_gate(self) -> bool:
        return self.is_milestone and self.milestone_type in (
            MilestoneType.WORKSTREAM_GATE,
            MilestoneType.PROGRAM_GATE,
        )

    @property
    def is_done(self) -> bool:
        return self.actual_end is not None or self.status == TaskStatus.COMPLETED


@dataclass
class TaskDependency:
    """
    A predecessor → successor precedence link between two tasks.

    `lag_days` may be negative (a lead).  A link belongs to whichever strategy
    its endpoint tasks belong to; when one endpoint lies outside the strategy
    being scheduled, the link is dropped when the schedule graph is built.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    predecessor_task_id: uuid.UUID = field(default_factory=uuid.uuid4)  # FK → WorkstreamTask.id
    successor_task_id: uuid.UUID = field(default_factory=uuid.uuid4)    # FK → WorkstreamTask.id
    dependency_type: DependencyType = DependencyType.FS
    lag_days: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class GateCriterion:
    """
    A readiness check attached to a gate milestone.

    Criteria never enter the schedule math; they only inform the gate's
    readiness and, when enabled by policy, its RAG.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    gate_task_id: uuid.UUID = field(default_factory=uuid.uuid4)   # FK → WorkstreamTask.id
    description: str = ""
    is_met: bool = False
    evidence: Optional[str] = None
    owner: Optional[str] = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
