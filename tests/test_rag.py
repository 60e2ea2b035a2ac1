# tests/test_rag.py
from __future__ import annotations

import uuid
from datetime import date, timedelta

import pytest

from conftest import TODAY, make_dep, make_task
from model import MilestoneType, RagStatus, TaskStatus
from service import GraphBuilderService, RagPolicy, RagService, SchedulingEngine, TaskSchedule

POLICY = RagPolicy()


def _sched(float_days: int = 10, early_finish: int = 5) -> TaskSchedule:
    return TaskSchedule(
        task_id=uuid.uuid4(),
        early_start=early_finish,
        early_finish=early_finish,
        late_start=early_finish + float_days,
        late_finish=early_finish + float_days,
        total_float=float_days,
        is_critical=float_days == 0,
    )


@pytest.fixture()
def rag() -> RagService:
    return RagService()


# --- Rule order --------------------------------------------------------------

def test_blocked_is_red_even_when_done(rag):
    task = make_task("t", 2, status=TaskStatus.BLOCKED, actual_end=TODAY)
    assert rag.classify_task(task, _sched(), TODAY, POLICY) is RagStatus.RED


def test_completed_on_time_is_green(rag):
    task = make_task("t", 2, planned_end=TODAY, actual_end=TODAY)
    assert rag.classify_task(task, _sched(0), TODAY + timedelta(days=30), POLICY) is RagStatus.GREEN


def test_completed_late_is_amber(rag):
    task = make_task("t", 2, planned_end=TODAY, actual_end=TODAY + timedelta(days=1))
    assert rag.classify_task(task, _sched(), TODAY, POLICY) is RagStatus.AMBER


def test_completed_status_without_dates_is_green(rag):
    task = make_task("t", 2, status=TaskStatus.COMPLETED)
    assert rag.classify_task(task, _sched(0), TODAY, POLICY) is RagStatus.GREEN


def test_open_and_overdue_is_red(rag):
    task = make_task("t", 2, planned_end=TODAY - timedelta(days=1))
    assert rag.classify_task(task, _sched(), TODAY, POLICY) is RagStatus.RED


def test_due_today_is_not_overdue(rag):
    task = make_task("t", 2, planned_end=TODAY)
    assert rag.classify_task(task, _sched(), TODAY, POLICY) is RagStatus.GREEN


@pytest.mark.parametrize("float_days, expected", [
    (0, RagStatus.AMBER),
    (3, RagStatus.AMBER),
    (4, RagStatus.GREEN),
])
def test_float_threshold(rag, float_days, expected):
    task = make_task("t", 2, planned_end=TODAY + timedelta(days=30))
    assert rag.classify_task(task, _sched(float_days), TODAY, POLICY) is expected


def test_float_threshold_is_configurable(rag):
    task = make_task("t", 2)
    policy = RagPolicy(amber_threshold_days=0)
    assert rag.classify_task(task, _sched(1), TODAY, policy) is RagStatus.GREEN


# --- Due date fallback -------------------------------------------------------

def test_milestone_without_planned_end_uses_anchored_early_finish(rag):
    gate = make_task("gate", milestone_type=MilestoneType.WORKSTREAM_GATE)
    anchor = TODAY - timedelta(days=10)

    assert rag.due_date(gate, _sched(early_finish=8), anchor) == TODAY - timedelta(days=2)
    assert rag.classify_task(gate, _sched(early_finish=8), TODAY, POLICY, anchor=anchor) is RagStatus.RED


def test_without_anchor_overdue_check_is_skipped(rag):
    gate = make_task("gate", milestone_type=MilestoneType.WORKSTREAM_GATE)
    assert rag.due_date(gate, _sched(), None) is None
    assert rag.classify_task(gate, _sched(), TODAY, POLICY) is RagStatus.GREEN


def test_ordinary_task_without_planned_end_has_no_due_date(rag):
    task = make_task("t", 2)
    anchor = TODAY - timedelta(days=5)
    schedule = _sched(float_days=8, early_finish=2)

    assert rag.due_date(task, schedule, anchor) is None
    assert rag.classify_task(task, schedule, TODAY, POLICY, anchor=anchor) is RagStatus.GREEN


def test_anchor_prefers_root_tasks(rag):
    root = make_task("root", 2, planned_start=date(2025, 3, 1))
    late = make_task("late", 2, planned_start=date(2025, 2, 1))
    graph = GraphBuilderService().build([root, late], [make_dep(root, late)])

    assert rag.schedule_anchor(graph) == date(2025, 3, 1)


def test_anchor_falls_back_to_any_task(rag):
    root = make_task("root", 2)
    late = make_task("late", 2, planned_start=date(2025, 2, 1))
    graph = GraphBuilderService().build([root, late], [make_dep(root, late)])

    assert rag.schedule_anchor(graph) == date(2025, 2, 1)


# --- Optional rules ----------------------------------------------------------

def test_progress_lag_rule(rag):
    task = make_task(
        "t", 10,
        status=TaskStatus.IN_PROGRESS,
        planned_start=TODAY - timedelta(days=5),
        planned_end=TODAY + timedelta(days=5),
        percent_complete=20.0,
    )
    assert rag.classify_task(task, _sched(), TODAY, POLICY) is RagStatus.GREEN
    assert rag.classify_task(
        task, _sched(), TODAY, RagPolicy(progress_lag_amber_pct=25.0)
    ) is RagStatus.AMBER
    assert rag.classify_task(
        task, _sched(), TODAY, RagPolicy(progress_lag_amber_pct=35.0)
    ) is RagStatus.GREEN


def test_unmet_criteria_rule_only_applies_to_gates(rag):
    gate = make_task("gate", milestone_type=MilestoneType.PROGRAM_GATE)
    plain = make_task("plain", milestone_type=MilestoneType.GENERAL)
    policy = RagPolicy(unmet_criteria_amber=True)

    assert rag.classify_task(gate, _sched(), TODAY, POLICY, unmet_criteria=1) is RagStatus.GREEN
    assert rag.classify_task(gate, _sched(), TODAY, policy, unmet_criteria=1) is RagStatus.AMBER
    assert rag.classify_task(gate, _sched(), TODAY, policy, unmet_criteria=0) is RagStatus.GREEN
    assert rag.classify_task(plain, _sched(), TODAY, policy, unmet_criteria=1) is RagStatus.GREEN


# --- Through the engine ------------------------------------------------------

def test_engine_uses_explicit_reference_date(scenario):
    start = date(2025, 1, 1)
    scenario.t1.planned_start = start
    scenario.t2.planned_end = start + timedelta(days=8)
    engine = SchedulingEngine()

    before = engine.compute(scenario.tasks, scenario.deps, today=start)
    after = engine.compute(scenario.tasks, scenario.deps, today=start + timedelta(days=9))

    assert before.task_rag[scenario.t2.id] is RagStatus.AMBER     # float 3
    assert after.task_rag[scenario.t2.id] is RagStatus.RED
    assert before.task_rag[scenario.t1.id] is RagStatus.AMBER     # critical
    assert after.task_rag[scenario.t4.id] is RagStatus.RED        # due day 8 via anchor
