# conditions.py
"""
Run conditions: decide whether a job instance runs once its dependencies
are terminal.

Conditions are a small closed set of policies sharing one method,
`evaluate(view) -> bool`:

  - Default        run only if every dependency succeeded (skip otherwise)
  - Always         run regardless of how the dependencies ended
  - AnySucceeded   run if at least one dependency succeeded
  - Custom         a predicate over the DependencyView, either a Python
                   callable or a parsed expression

New policies are new classes here; the scheduler only calls evaluate().
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence, Union

from .errors import UnresolvedReference
from .expressions import EvaluationContext, Expression, parse
from .model import JobStatus


@dataclass(frozen=True)
class DependencyResult:
    status: JobStatus
    exit_code: Optional[int] = None


def template_result(statuses: Iterable[JobStatus]) -> JobStatus:
    """Fold the statuses of every instance of one template into one result."""
    statuses = list(statuses)
    if any(s is JobStatus.FAILED for s in statuses):
        return JobStatus.FAILED
    if any(s is JobStatus.CANCELLED for s in statuses):
        return JobStatus.CANCELLED
    if statuses and all(s is JobStatus.SKIPPED for s in statuses):
        return JobStatus.SKIPPED
    return JobStatus.SUCCEEDED


def _template_exit_code(results: Sequence[DependencyResult]) -> Optional[int]:
    codes = [r.exit_code for r in results if r.exit_code is not None]
    if not codes:
        return None
    return next((c for c in codes if c != 0), 0)


class DependencyView:
    """
    Read-only view of a job instance's finished dependencies.

    Indexable by dependency instance id or by dependency template name; a
    template lookup returns the folded result of all its instances.
    """

    def __init__(
        self,
        results: Mapping[str, DependencyResult],
        templates: Mapping[str, Sequence[str]],
        *,
        matrix: Optional[Mapping[str, Any]] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        self._results = MappingProxyType(dict(results))
        self._templates = MappingProxyType({k: tuple(v) for k, v in templates.items()})
        self.matrix = MappingProxyType(dict(matrix or {}))
        self.env = MappingProxyType(dict(env or {}))

    @property
    def results(self) -> Mapping[str, DependencyResult]:
        return self._results

    @property
    def templates(self) -> Sequence[str]:
        return tuple(self._templates)

    def __contains__(self, name: str) -> bool:
        return name in self._templates or name in self._results

    def __getitem__(self, name: str) -> DependencyResult:
        if name in self._templates:
            return self._template(name)
        if name in self._results:
            return self._results[name]
        raise UnresolvedReference(name, sorted(self._templates))

    def _template(self, name: str) -> DependencyResult:
        members = [self._results[i] for i in self._templates[name]]
        return DependencyResult(
            status=template_result(r.status for r in members),
            exit_code=_template_exit_code(members),
        )

    def result(self, name: str) -> JobStatus:
        return self[name].status

    # ---- aggregates ----
    @property
    def all_succeeded(self) -> bool:
        return all(r.status is JobStatus.SUCCEEDED for r in self._results.values())

    @property
    def any_failed(self) -> bool:
        return any(r.status is JobStatus.FAILED for r in self._results.values())

    @property
    def any_cancelled(self) -> bool:
        return any(r.status is JobStatus.CANCELLED for r in self._results.values())

    @property
    def any_succeeded(self) -> bool:
        return any(r.status is JobStatus.SUCCEEDED for r in self._results.values())

    @property
    def any_skipped(self) -> bool:
        return any(r.status is JobStatus.SKIPPED for r in self._results.values())

    # ---- expression support ----
    def needs_context(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for name, ids in self._templates.items():
            folded = self._template(name)
            out[name] = {
                "result": folded.status.value,
                "exit_code": folded.exit_code,
                "instances": {
                    i: {"result": self._results[i].status.value, "exit_code": self._results[i].exit_code}
                    for i in ids
                },
            }
        return out

    def expression_context(self, **extra: Any) -> EvaluationContext:
        values: Dict[str, Any] = {
            "needs": self.needs_context(),
            "matrix": dict(self.matrix),
            "env": dict(self.env),
        }
        values.update(extra)
        return EvaluationContext(
            values=values,
            success=self.all_succeeded,
            failure=self.any_failed,
            cancelled=self.any_cancelled,
        )


# ---------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------

class Condition:
    label = "?"

    def evaluate(self, view: DependencyView) -> bool:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class Default(Condition):
    label = "success()"

    def evaluate(self, view: DependencyView) -> bool:
        return view.all_succeeded


@dataclass(frozen=True)
class Always(Condition):
    label = "always()"

    def evaluate(self, view: DependencyView) -> bool:
        return True


@dataclass(frozen=True)
class AnySucceeded(Condition):
    label = "any-success()"

    def evaluate(self, view: DependencyView) -> bool:
        return not view.results or view.any_succeeded


@dataclass(frozen=True)
class Custom(Condition):
    predicate: Union[Expression, Callable[[DependencyView], Any]]
    source: str = ""

    @property
    def label(self) -> str:  # type: ignore[override]
        return self.source or getattr(self.predicate, "__name__", "<predicate>")

    def evaluate(self, view: DependencyView) -> bool:
        if isinstance(self.predicate, Expression):
            ctx = view.expression_context()
            self.predicate.resolve(ctx)
            # an expression with no status function means `success() && (expr)`
            if not self.predicate.status_functions and not ctx.success:
                return False
            return self.predicate.test(ctx)
        return bool(self.predicate(view))


DEFAULT = Default()
ALWAYS = Always()


def condition_from(value: Any) -> Condition:
    """
    Normalize what a Job declares as its condition.

    Raises InvalidExpression for an expression string that does not parse.
    """
    if value is None:
        return DEFAULT
    if isinstance(value, Condition):
        return value
    if isinstance(value, str):
        expr = parse(value)
        compact = "".join(expr.source.split())
        if compact == "always()":
            return ALWAYS
        if compact == "success()":
            return DEFAULT
        return Custom(expr, expr.source)
    if callable(value):
        return Custom(value, getattr(value, "__name__", ""))
    raise TypeError(f"Unsupported job condition: {value!r}")
