import json
from datetime import datetime, timezone

import pytest

from dagci import DependencyGraph
from dagci.errors import InvalidTransition
from dagci.model import JobStatus, Verdict
from dagci.report import aggregate, verdict_of

from conftest import noop

S, F, K, C = JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED, JobStatus.CANCELLED
NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _finish(inst, *path):
    for status in path:
        inst.transition(status)


@pytest.mark.parametrize(
    "statuses, expected",
    [
        ([S, S], Verdict.SUCCESS),
        ([S, K, K], Verdict.SUCCESS),
        ([], Verdict.SUCCESS),
        ([S, F], Verdict.FAILURE),
        ([S, C], Verdict.FAILURE),
        ([K, C], Verdict.FAILURE),
    ],
)
def test_verdict_of(statuses, expected):
    assert verdict_of(statuses) is expected


def test_aggregate_refuses_unfinished_runs():
    graph = DependencyGraph([noop("a"), noop("b")])
    _finish(graph.instance("a"), JobStatus.READY, JobStatus.RUNNING, S)

    with pytest.raises(ValueError, match="non-terminal"):
        aggregate("r1", "ci", graph, started_at=NOW, finished_at=NOW)


def test_aggregate_collects_failures_in_declaration_order():
    graph = DependencyGraph([noop("lint"), noop("test", matrix={"py": ["3.10", "3.11"]}), noop("docs")])
    _finish(graph.instance("lint"), JobStatus.READY, JobStatus.RUNNING, F)
    _finish(graph.instance("test[py=3.10]"), JobStatus.READY, JobStatus.RUNNING, S)
    _finish(graph.instance("test[py=3.11]"), JobStatus.READY, C)
    _finish(graph.instance("docs"), JobStatus.BLOCKED, K)

    report = aggregate("r1", "ci", graph, started_at=NOW, finished_at=NOW)

    assert report.verdict is Verdict.FAILURE
    assert report.failures == ["lint", "test[py=3.11]"]
    assert report.jobs["test[py=3.10]"].matrix == {"py": "3.10"}
    assert report.jobs["test[py=3.10]"].job == "test"
    assert not report.cancelled


def test_report_json_can_leave_out_logs():
    graph = DependencyGraph([noop("a")])
    inst = graph.instance("a")
    _finish(inst, JobStatus.READY, JobStatus.RUNNING, S)
    inst.logs = "lots of output"
    inst.exit_code = 0

    report = aggregate("r1", "ci", graph, started_at=NOW, finished_at=NOW, cancel_reason="stop")

    full = json.loads(report.to_json())
    slim = json.loads(report.to_json(include_logs=False))

    assert full["jobs"]["a"]["logs"] == "lots of output"
    assert "logs" not in slim["jobs"]["a"]
    assert slim["verdict"] == "success"
    assert slim["cancelled"] is True
    assert slim["jobs"]["a"]["status"] == "success"


def test_job_duration():
    graph = DependencyGraph([noop("a")])
    inst = graph.instance("a")
    _finish(inst, JobStatus.READY, JobStatus.RUNNING, S)
    inst.started_at = NOW
    inst.finished_at = NOW.replace(second=3)

    report = aggregate("r1", "ci", graph, started_at=NOW, finished_at=NOW)

    assert report.jobs["a"].duration == 3.0


def test_terminal_states_are_final():
    graph = DependencyGraph([noop("a")])
    inst = graph.instance("a")
    _finish(inst, JobStatus.BLOCKED, K)

    with pytest.raises(InvalidTransition):
        inst.transition(JobStatus.RUNNING)


def test_pending_cannot_jump_to_running():
    inst = DependencyGraph([noop("a")]).instance("a")

    with pytest.raises(InvalidTransition) as exc:
        inst.transition(JobStatus.RUNNING)

    assert exc.value.current == "pending"
    assert inst.status is JobStatus.PENDING
