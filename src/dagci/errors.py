# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


class WorkflowError(Exception):
    """Base class for every error raised by dagci."""


# ----------------------------------------------------------------------
# Construction time: the run never starts
# ----------------------------------------------------------------------

class GraphError(WorkflowError):
    """A structural problem found while building the job graph."""


@dataclass(eq=False)
class DuplicateJob(GraphError):
    names: List[str]

    def __str__(self) -> str:
        return f"Duplicate job names found: {self.names}"


@dataclass(eq=False)
class InvalidMatrix(GraphError):
    job: str
    reason: str

    def __str__(self) -> str:
        return f"Job '{self.job}' has an invalid matrix: {self.reason}"


@dataclass(eq=False)
class DuplicateAxis(GraphError):
    job: str
    axis: str

    def __str__(self) -> str:
        return f"Job '{self.job}' declares matrix axis '{self.axis}' more than once"


@dataclass(eq=False)
class UnknownDependency(GraphError):
    job: str
    dependency: str
    known: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"Job '{self.job}' needs missing job '{self.dependency}'. "
            f"Known jobs: {self.known}"
        )


@dataclass(eq=False)
class SelfDependency(GraphError):
    job: str

    def __str__(self) -> str:
        return f"Job '{self.job}' needs itself"


@dataclass(eq=False)
class CyclicDependency(GraphError):
    cycle: List[str]

    def __str__(self) -> str:
        return f"DAG has a cycle: {' -> '.join(self.cycle)}"


@dataclass(eq=False)
class InvalidExpression(GraphError):
    expression: str
    reason: str
    position: Optional[int] = None

    def __str__(self) -> str:
        where = f" at offset {self.position}" if self.position is not None else ""
        return f"Invalid expression {self.expression!r}{where}: {self.reason}"


# ----------------------------------------------------------------------
# Run time: isolated to one instance (and its dependents)
# ----------------------------------------------------------------------

@dataclass(eq=False)
class UnresolvedReference(WorkflowError):
    reference: str
    available: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        msg = f"Unresolved reference '{self.reference}'"
        if self.available:
            msg += f" (available: {', '.join(self.available)})"
        return msg


@dataclass(eq=False)
class ExecutorError(WorkflowError):
    """The Job Unit raised instead of returning an exit code."""
    job: str
    cause: BaseException

    def __str__(self) -> str:
        return f"[{self.job}] executor error: {type(self.cause).__name__}: {self.cause}"


@dataclass(eq=False)
class StepFailure(WorkflowError):
    job: str
    step: str
    cmd: str
    exit_code: int

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass(eq=False)
class RunCancelled(WorkflowError):
    reason: str = "cancelled"

    def __str__(self) -> str:
        return f"Run cancelled: {self.reason}"


@dataclass(eq=False)
class InvalidTransition(WorkflowError):
    job: str
    current: str
    target: str

    def __str__(self) -> str:
        return f"Job '{self.job}' cannot move from {self.current} to {self.target}"
