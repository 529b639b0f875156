# report.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .model import JobInstance, JobStatus, Verdict


# -------------------- Schemas --------------------

class JobReport(BaseModel):
    id: str
    job: str
    status: JobStatus
    exit_code: Optional[int] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    matrix: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    logs: str = ""

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class RunReport(BaseModel):
    run_id: str
    workflow: str
    verdict: Verdict
    started_at: datetime
    finished_at: datetime
    cancelled: bool = False
    cancel_reason: Optional[str] = None
    jobs: Dict[str, JobReport] = Field(default_factory=dict)
    failures: List[str] = Field(default_factory=list)

    @property
    def statuses(self) -> Dict[str, JobStatus]:
        return {k: v.status for k, v in self.jobs.items()}

    @property
    def succeeded(self) -> bool:
        return self.verdict is Verdict.SUCCESS

    def to_json(self, *, include_logs: bool = True, indent: int | None = 2) -> str:
        exclude = None if include_logs else {"jobs": {"__all__": {"logs"}}}
        return self.model_dump_json(indent=indent, exclude=exclude)


# -------------------- Aggregation --------------------

FAILING = frozenset({JobStatus.FAILED, JobStatus.CANCELLED})


def verdict_of(statuses: Iterable[JobStatus]) -> Verdict:
    """Failure iff any instance Failed or was Cancelled; Skipped is not a failure."""
    return Verdict.FAILURE if any(s in FAILING for s in statuses) else Verdict.SUCCESS


def job_report(inst: JobInstance) -> JobReport:
    return JobReport(
        id=inst.id,
        job=inst.job_name,
        status=inst.status,
        exit_code=inst.exit_code,
        started_at=inst.started_at,
        finished_at=inst.finished_at,
        matrix=dict(inst.bindings),
        error=inst.error,
        logs=inst.logs,
    )


def aggregate(
    run_id: str,
    workflow: str,
    instances: Iterable[JobInstance],
    *,
    started_at: datetime,
    finished_at: datetime,
    cancel_reason: Optional[str] = None,
) -> RunReport:
    """
    Compute the overall verdict once every instance is terminal.

    Mirrors a terminal status job whose own failure condition is "any of its
    dependencies failed", whether or not that status job itself ran.
    """
    instances = list(instances)
    pending = [i.id for i in instances if not i.terminal]
    if pending:
        raise ValueError(f"Cannot aggregate a run with non-terminal jobs: {pending}")

    return RunReport(
        run_id=run_id,
        workflow=workflow,
        verdict=verdict_of(i.status for i in instances),
        started_at=started_at,
        finished_at=finished_at,
        cancelled=cancel_reason is not None,
        cancel_reason=cancel_reason,
        jobs={i.id: job_report(i) for i in instances},
        failures=[i.id for i in instances if i.status in FAILING],
    )
