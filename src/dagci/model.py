# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import InvalidTransition


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None
    condition: str | None = None   # step-level `if`, evaluated by the executor


@dataclass(frozen=True)
class Axis:
    """One matrix axis: a name and its ordered values."""
    name: str
    values: Tuple[Any, ...]


# A job condition is either a Condition object (see conditions.py), an
# expression string, or a predicate over a DependencyView.
ConditionSpec = Union[None, str, Callable[..., bool], Any]
MatrixSpec = Union[Mapping[str, Sequence[Any]], Sequence[Axis]]


@dataclass
class Job:
    """
    A CI job template: steps + dependencies + run condition + matrix axes.

    A template with matrix axes expands into one JobInstance per point of the
    cartesian product of its axes.
    """
    name: str
    steps: list[Step]

    # Names of jobs that must reach a terminal state BEFORE this job
    needs: list[str] = field(default_factory=list)

    condition: ConditionSpec = None
    matrix: MatrixSpec = field(default_factory=dict)
    exclude: list[Dict[str, Any]] = field(default_factory=list)
    fail_fast: bool = False

    env: Dict[str, str] = field(default_factory=dict)
    display_name: Optional[str] = None
    timeout: Optional[float] = None   # seconds per instance

    def axes(self) -> List[Axis]:
        """Matrix axes in declared order (duplicates preserved for validation)."""
        if isinstance(self.matrix, Mapping):
            return [Axis(k, tuple(v)) for k, v in self.matrix.items()]
        return [a if isinstance(a, Axis) else Axis(a[0], tuple(a[1])) for a in self.matrix]

    @property
    def title(self) -> str:
        return self.display_name or self.name


@dataclass
class Workflow:
    """A parsed workflow: job templates plus workflow-level env."""
    name: str
    jobs: list[Job]
    env: Dict[str, str] = field(default_factory=dict)


class JobStatus(str, Enum):
    PENDING = "pending"
    BLOCKED = "blocked"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "success"
    FAILED = "failure"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED, JobStatus.CANCELLED})

_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.PENDING: frozenset({
        JobStatus.BLOCKED, JobStatus.READY, JobStatus.SKIPPED,
        JobStatus.FAILED,  # fail-closed condition errors
        JobStatus.CANCELLED,
    }),
    JobStatus.BLOCKED: frozenset({JobStatus.SKIPPED, JobStatus.CANCELLED}),
    JobStatus.READY: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED}),
}


class Verdict(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class JobInstance:
    """
    One concrete execution of a Job template, bound to one matrix point.

    Only the scheduler loop mutates status, timestamps and exit code.
    """
    id: str
    template: Job
    bindings: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    index: int = 0   # position among the template's instances

    status: JobStatus = JobStatus.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    logs: str = ""
    error: Optional[str] = None

    @property
    def job_name(self) -> str:
        return self.template.name

    @property
    def needs(self) -> List[str]:
        return list(self.template.needs)

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    def transition(self, target: JobStatus) -> None:
        if target not in _TRANSITIONS.get(self.status, frozenset()):
            raise InvalidTransition(job=self.id, current=self.status.value, target=target.value)
        self.status = target
