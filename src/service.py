"""
service.py

Service layer for the Workstream Scheduling & Gate-Status Engine.

Responsibilities
----------------
Each service class encapsulates one stage of the schedule computation.
Services receive domain model instances (from model.py) and return plain
result objects.  No persistence is handled here — callers are responsible
for loading a strategy snapshot and for writing back cached fields.

Services
--------
- GraphBuilderService     – Arena-indexed task graph from tasks + dependencies
- TopologyService         – Topological order; cycle detection
- CriticalPathService     – Forward pass, backward pass, float classification
- RagService              – Task-level RED / AMBER / GREEN classification
- GateRollupService       – Workstream-gate and program-gate rollups
- GateReadinessService    – Gate criteria readiness per gate milestone
- ScheduleWriteBackService – Changed cached schedule fields per task
- SchedulingEngine        – Runs the stages above in order

Design notes
------------
- The computation is pure: inputs are never mutated, and the same inputs
  always produce the same result regardless of dependency iteration order.
- Day offsets are integers relative to the project start (day 0).
  Durations are calendar days.
- The reference date for overdue checks is always passed in explicitly.
- A cyclic graph aborts the whole computation with CycleDetected.
  Dependencies pointing outside the strategy are dropped and logged.
"""

from __future__ import annotations

import heapq
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from model import (
    DependencyType,
    GateCriterion,
    MilestoneType,
    Phase,
    RagStatus,
    TaskDependency,
    TaskStatus,
    Workstream,
    WorkstreamTask,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SchedulingError(Exception):
    """Base class for schedule computation failures."""


class CycleDetected(SchedulingError):
    """The dependency graph contains a cycle; no schedule can be computed."""

    def __init__(self, task_ids: Sequence[uuid.UUID]):
        self.task_ids = list(task_ids)
        chain = " -> ".join(str(t) for t in self.task_ids + self.task_ids[:1])
        super().__init__(f"Dependency cycle detected: {chain}")


class UnknownEndpoint(SchedulingError):
    """A dependency references a task outside the loaded strategy."""

    def __init__(self, dependency_id: uuid.UUID, task_id: uuid.UUID):
        self.dependency_id = dependency_id
        self.task_id = task_id
        super().__init__(
            f"Dependency {dependency_id} references task {task_id}, "
            "which is not part of this strategy."
        )


class InconsistentFloat(SchedulingError):
    """Start-side and finish-side float disagree for a task (internal defect)."""

    def __init__(self, task_id: uuid.UUID, start_float: int, finish_float: int):
        self.task_id = task_id
        self.start_float = start_float
        self.finish_float = finish_float
        super().__init__(
            f"Task {task_id} has start float {start_float} "
            f"but finish float {finish_float}."
        )


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScheduleEdge:
    """A typed, lagged precedence edge between two node indices."""
    source: int         # predecessor node index
    target: int         # successor node index
    dependency_type: DependencyType
    lag_days: int
    dependency_id: uuid.UUID


@dataclass
class ScheduleGraph:
    """
    Arena-indexed task graph.

    Nodes are positions in `tasks`; edges refer to nodes by index only, so
    traversal never follows object references.
    """
    tasks: List[WorkstreamTask]
    durations: List[int]
    index: Dict[uuid.UUID, int]
    outgoing: List[List[ScheduleEdge]]
    incoming: List[List[ScheduleEdge]]
    anomalies: List[SchedulingError] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.tasks)

    def roots(self) -> List[int]:
        return [i for i, edges in enumerate(self.incoming) if not edges]

    def terminals(self) -> List[int]:
        return [i for i, edges in enumerate(self.outgoing) if not edges]


@dataclass(frozen=True)
class TaskSchedule:
    """CPM timing for one task, in day offsets from the project start."""
    task_id: uuid.UUID
    early_start: int
    early_finish: int
    late_start: int
    late_finish: int
    total_float: int
    is_critical: bool


@dataclass(frozen=True)
class RagPolicy:
    """
    Thresholds for the task RAG classifier.

    amber_threshold_days   – open tasks with float at or below this are AMBER.
    progress_lag_amber_pct – in-progress tasks trailing linear planned progress
                             by more than this many points are AMBER
                             (None disables the check).
    unmet_criteria_amber   – open gate milestones with unmet criteria are AMBER.
    """
    amber_threshold_days: int = 3
    progress_lag_amber_pct: Optional[float] = None
    unmet_criteria_amber: bool = False


@dataclass(frozen=True)
class GateReadiness:
    task_id: uuid.UUID
    gate_type: MilestoneType
    workstream_id: uuid.UUID
    phase_id: uuid.UUID
    criteria_total: int
    criteria_met: int
    rag: RagStatus

    @property
    def readiness_pct(self) -> Optional[float]:
        if self.criteria_total == 0:
            return None
        return round(self.criteria_met / self.criteria_total * 100.0, 1)


@dataclass(frozen=True)
class CalculationResult:
    """Everything one schedule computation produces for a strategy."""
    task_rag: Dict[uuid.UUID, RagStatus]
    workstream_gate_rag: Dict[uuid.UUID, Dict[uuid.UUID, RagStatus]]
    program_gate_rag: Dict[uuid.UUID, RagStatus]
    schedules: Dict[uuid.UUID, TaskSchedule]
    project_finish: int
    anchor: Optional[date]
    critical_task_ids: Tuple[uuid.UUID, ...]
    gate_readiness: Tuple[GateReadiness, ...] = ()
    anomalies: Tuple[SchedulingError, ...] = ()

    def calendar_date(self, offset: int) -> Optional[date]:
        """Convert a day offset to a calendar date through the schedule anchor."""
        if self.anchor is None:
            return None
        return self.anchor + timedelta(days=offset)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

# Predecessor side of the relation is its finish (otherwise its start).
_FROM_FINISH = {DependencyType.FS, DependencyType.FF}
# Successor side of the relation is its finish (otherwise its start).
_TO_FINISH = {DependencyType.FF, DependencyType.SF}


def worst(*values: Optional[RagStatus]) -> Optional[RagStatus]:
    """Combine RAG values so that the most severe wins; None means absent."""
    present = [v for v in values if v is not None]
    if not present:
        return None
    return max(present, key=lambda r: r.rank)


# ---------------------------------------------------------------------------
# GraphBuilderService
# ---------------------------------------------------------------------------

class GraphBuilderService:
    """
    Builds the schedule graph for one strategy.
    """

    def build(
        self,
        tasks: Iterable[WorkstreamTask],
        dependencies: Iterable[TaskDependency],
        phases: Iterable[Phase] = (),
        workstreams: Iterable[Workstream] = (),
    ) -> ScheduleGraph:
        """
        Index tasks and attach every dependency whose endpoints are both known.

        Node order follows the matrix layout (phase sequence, workstream sort
        order, task sort order, id) so traversal ties resolve the same way on
        every call.  Dependencies referencing unknown tasks, and repeated
        edges for an ordered pair, are dropped with a warning.  Self-loops are
        kept so that the topological sort reports them as cycles.
        """
        phase_sequence = {p.id: p.sequence for p in phases}
        workstream_order = {w.id: w.sort_order for w in workstreams}

        ordered = sorted(
            tasks,
            key=lambda t: (
                phase_sequence.get(t.phase_id, 0),
                workstream_order.get(t.workstream_id, 0),
                t.sort_order,
                str(t.id),
            ),
        )
        index: Dict[uuid.UUID, int] = {}
        for i, task in enumerate(ordered):
            if task.id in index:
                raise ValueError(f"Task {task.id} appears more than once.")
            index[task.id] = i

        graph = ScheduleGraph(
            tasks=ordered,
            durations=[self._duration(t) for t in ordered],
            index=index,
            outgoing=[[] for _ in ordered],
            incoming=[[] for _ in ordered],
        )

        seen_pairs: set = set()
        for dep in sorted(dependencies, key=lambda d: (d.created_at, str(d.id))):
            missing = next(
                (
                    tid
                    for tid in (dep.predecessor_task_id, dep.successor_task_id)
                    if tid not in index
                ),
                None,
            )
            if missing is not None:
                anomaly = UnknownEndpoint(dep.id, missing)
                graph.anomalies.append(anomaly)
                logger.warning("%s Edge dropped.", anomaly)
                continue

            pair = (dep.predecessor_task_id, dep.successor_task_id)
            if pair in seen_pairs:
                logger.warning(
                    "Duplicate dependency %s for %s -> %s dropped.",
                    dep.id, pair[0], pair[1],
                )
                continue
            seen_pairs.add(pair)

            edge = ScheduleEdge(
                source=index[dep.predecessor_task_id],
                target=index[dep.successor_task_id],
                dependency_type=DependencyType(dep.dependency_type),
                lag_days=int(dep.lag_days),
                dependency_id=dep.id,
            )
            graph.outgoing[edge.source].append(edge)
            graph.incoming[edge.target].append(edge)

        return graph

    @staticmethod
    def _duration(task: WorkstreamTask) -> int:
        if task.is_milestone:
            if task.duration_days:
                logger.warning(
                    "Milestone %s has duration %s; scheduled as zero-duration.",
                    task.id, task.duration_days,
                )
            return 0
        if task.duration_days < 0:
            raise ValueError(f"Task {task.id} has a negative duration.")
        return int(task.duration_days)


# ---------------------------------------------------------------------------
# TopologyService
# ---------------------------------------------------------------------------

class TopologyService:
    """
    Kahn's algorithm with a min-index ready queue.
    """

    def order(self, graph: ScheduleGraph) -> List[int]:
        """
        Return node indices with every predecessor ahead of its successors.

        Raises CycleDetected naming the tasks of one concrete cycle.
        """
        indegree = [len(edges) for edges in graph.incoming]
        ready = [i for i, d in enumerate(indegree) if d == 0]
        heapq.heapify(ready)

        order: List[int] = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for edge in graph.outgoing[node]:
                indegree[edge.target] -= 1
                if indegree[edge.target] == 0:
                    heapq.heappush(ready, edge.target)

        if len(order) != len(graph):
            remaining = {i for i, d in enumerate(indegree) if d > 0}
            cycle = self._find_cycle(graph, remaining)
            raise CycleDetected([graph.tasks[i].id for i in cycle])
        return order

    @staticmethod
    def _find_cycle(graph: ScheduleGraph, remaining: set) -> List[int]:
        """
        Walk predecessor links inside the unsorted remainder until a node
        repeats.  Every remaining node still has a remaining predecessor, so
        the walk always closes a cycle.
        """
        node = min(remaining)
        path: List[int] = []
        position: Dict[int, int] = {}
        while node not in position:
            position[node] = len(path)
            path.append(node)
            node = min(e.source for e in graph.incoming[node] if e.source in remaining)
        cycle = path[position[node]:]
        cycle.reverse()     # walked backwards; report in precedence order
        return cycle


# ---------------------------------------------------------------------------
# CriticalPathService
# ---------------------------------------------------------------------------

class CriticalPathService:
    """
    Forward pass, backward pass and float classification.
    """

    def forward_pass(
        self, graph: ScheduleGraph, order: Sequence[int]
    ) -> Tuple[List[int], List[int]]:
        """
        Earliest start / finish per node.

        Every incoming edge yields a floor on the successor's start (FS, SS)
        or finish (FF, SF).  Finish floors are converted to start floors by
        subtracting the duration, so a zero-duration task ends up with
        start = finish = the largest floor.  No task starts before day 0.
        """
        es = [0] * len(graph)
        ef = [0] * len(graph)
        for node in order:
            duration = graph.durations[node]
            start = 0
            for edge in graph.incoming[node]:
                anchor = ef[edge.source] if edge.dependency_type in _FROM_FINISH else es[edge.source]
                bound = anchor + edge.lag_days
                if edge.dependency_type in _TO_FINISH:
                    bound -= duration
                start = max(start, bound)
            es[node] = start
            ef[node] = start + duration
        return es, ef

    def backward_pass(
        self, graph: ScheduleGraph, order: Sequence[int], project_finish: int
    ) -> Tuple[List[int], List[int]]:
        """
        Latest start / finish per node, anchored at `project_finish`.

        Mirrors the forward pass: every outgoing edge yields a ceiling on the
        predecessor's finish (FS, FF) or start (SS, SF); start ceilings are
        converted to finish ceilings by adding the duration.
        """
        ls = [project_finish] * len(graph)
        lf = [project_finish] * len(graph)
        for node in reversed(order):
            duration = graph.durations[node]
            finish = project_finish
            for edge in graph.outgoing[node]:
                anchor = lf[edge.target] if edge.dependency_type in _TO_FINISH else ls[edge.target]
                bound = anchor - edge.lag_days
                if edge.dependency_type not in _FROM_FINISH:
                    bound += duration
                finish = min(finish, bound)
            lf[node] = finish
            ls[node] = finish - duration
        return ls, lf

    def classify(
        self,
        graph: ScheduleGraph,
        es: Sequence[int],
        ef: Sequence[int],
        ls: Sequence[int],
        lf: Sequence[int],
    ) -> Dict[uuid.UUID, TaskSchedule]:
        """Derive total float and criticality; raise InconsistentFloat on mismatch."""
        schedules: Dict[uuid.UUID, TaskSchedule] = {}
        for node, task in enumerate(graph.tasks):
            start_float = ls[node] - es[node]
            finish_float = lf[node] - ef[node]
            if start_float != finish_float:
                raise InconsistentFloat(task.id, start_float, finish_float)
            schedules[task.id] = TaskSchedule(
                task_id=task.id,
                early_start=es[node],
                early_finish=ef[node],
                late_start=ls[node],
                late_finish=lf[node],
                total_float=start_float,
                is_critical=start_float == 0,
            )
        return schedules


# ---------------------------------------------------------------------------
# RagService
# ---------------------------------------------------------------------------

class RagService:
    """
    Task-level RAG classification.

    Rules, first match wins:
      1. blocked                                   → RED
      2. completed on/before due date              → GREEN, late → AMBER
      3. open and past due date                    → RED
      4. open and float ≤ amber threshold          → AMBER
      5. in progress and trailing planned progress → AMBER (optional)
      6. open gate with unmet criteria             → AMBER (optional)
      7. otherwise                                 → GREEN
    """

    def schedule_anchor(self, graph: ScheduleGraph) -> Optional[date]:
        """
        Calendar date of day 0: the earliest planned start among root tasks,
        else the earliest planned start of any task, else None.
        """
        root_starts = [
            graph.tasks[i].planned_start
            for i in graph.roots()
            if graph.tasks[i].planned_start is not None
        ]
        if root_starts:
            return min(root_starts)
        any_starts = [t.planned_start for t in graph.tasks if t.planned_start is not None]
        return min(any_starts) if any_starts else None

    def due_date(
        self, task: WorkstreamTask, schedule: TaskSchedule, anchor: Optional[date]
    ) -> Optional[date]:
        """
        The planned end.  Milestones without one fall back to their early
        finish on the calendar; other tasks without one have no due date.
        """
        if task.planned_end is not None:
            return task.planned_end
        if not task.is_milestone or anchor is None:
            return None
        return anchor + timedelta(days=schedule.early_finish)

    def classify_task(
        self,
        task: WorkstreamTask,
        schedule: TaskSchedule,
        today: date,
        policy: RagPolicy,
        anchor: Optional[date] = None,
        unmet_criteria: int = 0,
    ) -> RagStatus:
        if task.status == TaskStatus.BLOCKED:
            return RagStatus.RED

        due = self.due_date(task, schedule, anchor)
        if task.is_done:
            if task.actual_end is None or due is None:
                return RagStatus.GREEN
            return RagStatus.GREEN if task.actual_end <= due else RagStatus.AMBER

        if due is not None and today > due:
            return RagStatus.RED
        if schedule.total_float <= policy.amber_threshold_days:
            return RagStatus.AMBER
        if policy.progress_lag_amber_pct is not None and self._trails_plan(
            task, today, policy.progress_lag_amber_pct
        ):
            return RagStatus.AMBER
        if policy.unmet_criteria_amber and task.is_gate and unmet_criteria > 0:
            return RagStatus.AMBER
        return RagStatus.GREEN

    @staticmethod
    def _trails_plan(task: WorkstreamTask, today: date, tolerance_pct: float) -> bool:
        if task.status != TaskStatus.IN_PROGRESS:
            return False
        if task.planned_start is None or task.planned_end is None:
            return False
        span = (task.planned_end - task.planned_start).days
        if span <= 0:
            return False
        elapsed = max((today - task.planned_start).days, 0)
        expected_pct = min(elapsed / span * 100.0, 100.0)
        return expected_pct - task.percent_complete > tolerance_pct


# ---------------------------------------------------------------------------
# GateRollupService
# ---------------------------------------------------------------------------

class GateRollupService:
    """
    Worst-status-wins aggregation from tasks to gates.

    A (workstream, phase) cell takes its non-milestone tasks and its
    workstream-gate milestones.  A phase takes every cell in that column and
    its program-gate milestones.  Cells and phases with nothing feeding them
    are left out rather than reported GREEN.
    """

    def rollup(
        self,
        tasks: Iterable[WorkstreamTask],
        task_rag: Dict[uuid.UUID, RagStatus],
    ) -> Tuple[Dict[uuid.UUID, Dict[uuid.UUID, RagStatus]], Dict[uuid.UUID, RagStatus]]:
        cells: Dict[Tuple[uuid.UUID, uuid.UUID], RagStatus] = {}
        program_gates: Dict[uuid.UUID, RagStatus] = {}

        for task in tasks:
            rag = task_rag[task.id]
            if not task.is_milestone or task.milestone_type == MilestoneType.WORKSTREAM_GATE:
                key = (task.workstream_id, task.phase_id)
                cells[key] = worst(cells.get(key), rag)
            elif task.milestone_type == MilestoneType.PROGRAM_GATE:
                program_gates[task.phase_id] = worst(program_gates.get(task.phase_id), rag)

        workstream_gate_rag: Dict[uuid.UUID, Dict[uuid.UUID, RagStatus]] = {}
        program_gate_rag: Dict[uuid.UUID, RagStatus] = dict(program_gates)
        for (workstream_id, phase_id), rag in cells.items():
            workstream_gate_rag.setdefault(workstream_id, {})[phase_id] = rag
            program_gate_rag[phase_id] = worst(program_gate_rag.get(phase_id), rag)

        return workstream_gate_rag, program_gate_rag


# ---------------------------------------------------------------------------
# GateReadinessService
# ---------------------------------------------------------------------------

class GateReadinessService:

    def assess(
        self,
        tasks: Iterable[WorkstreamTask],
        criteria: Iterable[GateCriterion],
        task_rag: Dict[uuid.UUID, RagStatus],
    ) -> List[GateReadiness]:
        by_gate: Dict[uuid.UUID, List[GateCriterion]] = {}
        for c in criteria:
            by_gate.setdefault(c.gate_task_id, []).append(c)

        readiness = []
        for task in tasks:
            if not task.is_gate:
                continue
            gate_criteria = by_gate.get(task.id, [])
            readiness.append(
                GateReadiness(
                    task_id=task.id,
                    gate_type=MilestoneType(task.milestone_type),
                    workstream_id=task.workstream_id,
                    phase_id=task.phase_id,
                    criteria_total=len(gate_criteria),
                    criteria_met=sum(1 for c in gate_criteria if c.is_met),
                    rag=task_rag[task.id],
                )
            )
        return readiness


# ---------------------------------------------------------------------------
# ScheduleWriteBackService
# ---------------------------------------------------------------------------

class ScheduleWriteBackService:
    """
    Works out which cached schedule fields changed, per task.

    Only the six cached fields are returned, never a whole task.
    """

    def changed_fields(
        self,
        tasks: Iterable[WorkstreamTask],
        schedules: Dict[uuid.UUID, TaskSchedule],
    ) -> Dict[uuid.UUID, Dict[str, Any]]:
        changed: Dict[uuid.UUID, Dict[str, Any]] = {}
        for task in tasks:
            schedule = schedules.get(task.id)
            if schedule is None:
                continue
            fields: Dict[str, Any] = {
                "early_start": schedule.early_start,
                "early_finish": schedule.early_finish,
                "late_start": schedule.late_start,
                "late_finish": schedule.late_finish,
                "total_float": schedule.total_float,
                "is_critical": schedule.is_critical,
            }
            if all(getattr(task, name) == value for name, value in fields.items()):
                continue
            changed[task.id] = fields
        return changed


# ---------------------------------------------------------------------------
# SchedulingEngine
# ---------------------------------------------------------------------------

class SchedulingEngine:
    """
    Runs graph build → topological sort → forward/backward pass → float
    classification → task RAG → gate rollup → gate readiness, and packages
    the outputs into a CalculationResult.
    """

    def __init__(self) -> None:
        self._graph_svc = GraphBuilderService()
        self._topology_svc = TopologyService()
        self._cpm_svc = CriticalPathService()
        self._rag_svc = RagService()
        self._rollup_svc = GateRollupService()
        self._readiness_svc = GateReadinessService()

    def compute(
        self,
        tasks: Iterable[WorkstreamTask],
        dependencies: Iterable[TaskDependency],
        today: date,
        policy: Optional[RagPolicy] = None,
        phases: Iterable[Phase] = (),
        workstreams: Iterable[Workstream] = (),
        criteria: Iterable[GateCriterion] = (),
    ) -> CalculationResult:
        policy = policy or RagPolicy()
        criteria = list(criteria)

        graph = self._graph_svc.build(tasks, dependencies, phases, workstreams)
        try:
            order = self._topology_svc.order(graph)
        except CycleDetected as exc:
            logger.info("Schedule rejected: %s", exc)
            raise

        es, ef = self._cpm_svc.forward_pass(graph, order)
        project_finish = max(ef, default=0)
        ls, lf = self._cpm_svc.backward_pass(graph, order, project_finish)
        try:
            schedules = self._cpm_svc.classify(graph, es, ef, ls, lf)
        except InconsistentFloat:
            logger.exception("Float invariant violated")
            raise

        anchor = self._rag_svc.schedule_anchor(graph)
        unmet: Dict[uuid.UUID, int] = {}
        for c in criteria:
            if not c.is_met:
                unmet[c.gate_task_id] = unmet.get(c.gate_task_id, 0) + 1

        task_rag = {
            task.id: self._rag_svc.classify_task(
                task,
                schedules[task.id],
                today,
                policy,
                anchor=anchor,
                unmet_criteria=unmet.get(task.id, 0),
            )
            for task in graph.tasks
        }
        workstream_gate_rag, program_gate_rag = self._rollup_svc.rollup(graph.tasks, task_rag)
        readiness = self._readiness_svc.assess(graph.tasks, criteria, task_rag)
        critical = tuple(
            graph.tasks[i].id for i in order if schedules[graph.tasks[i].id].is_critical
        )

        logger.debug(
            "Computed schedule: %d tasks, finish day %d, %d critical, %d dropped edges",
            len(graph), project_finish, len(critical), len(graph.anomalies),
        )
        return CalculationResult(
            task_rag=task_rag,
            workstream_gate_rag=workstream_gate_rag,
            program_gate_rag=program_gate_rag,
            schedules=schedules,
            project_finish=project_finish,
            anchor=anchor,
            critical_task_ids=critical,
            gate_readiness=tuple(readiness),
            anomalies=tuple(graph.anomalies),
        )
