# src/dagci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from .model import Axis, ConditionSpec, Job, Step, Workflow


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, condition: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, condition=condition)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(key: str, values: Iterable[Any]) -> Axis:
    """
    One matrix axis.

    Example:
        job("test", sh(...), matrix=[matrix("python", ["3.10", "3.11"])])
    """
    return Axis(key, tuple(values))


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    condition: ConditionSpec = None,
    matrix: Any = None,
    exclude: Optional[List[Dict[str, Any]]] = None,
    fail_fast: bool = False,
    env: Optional[Dict[str, str]] = None,
    display_name: Optional[str] = None,
    timeout: Optional[float] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        condition=condition,
        matrix=matrix if matrix is not None else {},
        exclude=list(exclude or []),
        fail_fast=fail_fast,
        env=dict(env or {}),
        display_name=display_name,
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._axes: list[Axis] = []
        self._exclude: list[dict[str, Any]] = []
        self._fail_fast = False
        self._condition: ConditionSpec = None
        self._display_name: Optional[str] = None
        self._timeout: Optional[float] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, condition: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd, condition=condition))
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_axis(self, key: str, *values: Any):
        self._axes.append(Axis(key, tuple(values)))
        return self

    def excluding(self, **point: Any):
        self._exclude.append(point)
        return self

    def when(self, condition: ConditionSpec):
        self._condition = condition
        return self

    def always(self):
        return self.when("always()")

    def fail_fast(self, enabled: bool = True):
        self._fail_fast = enabled
        return self

    def named(self, display_name: str):
        self._display_name = display_name
        return self

    def timeout(self, seconds: float):
        self._timeout = seconds
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return Job(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            condition=self._condition,
            matrix=list(self._axes),
            exclude=list(self._exclude),
            fail_fast=self._fail_fast,
            env=dict(self._env),
            display_name=self._display_name,
            timeout=self._timeout,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: Job, name: str = "workflow", env: Optional[Dict[str, Any]] = None) -> Workflow:
    """
    Workflow definition helper.

    Users can write:
        from dagci import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
                name="CI",
                env={"PYTHON_VERSION": "3.11"},
            )

    Or use JOBS directly:
        JOBS = wf(job(...), job(...))
    """
    return Workflow(name=name, jobs=list(jobs), env={k: str(v) for k, v in (env or {}).items()})
