# executor.py
from __future__ import annotations

import io
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol, Tuple, runtime_checkable

from .errors import StepFailure
from .expressions import EvaluationContext, interpolate, parse
from .model import Step

TIMEOUT_EXIT = 124
CANCELLED_EXIT = 130


@dataclass(frozen=True)
class UnitRequest:
    """Everything a Job Unit gets to see about the instance it executes."""
    job_id: str
    job_name: str
    steps: Tuple[Step, ...]
    bindings: Mapping[str, Any] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    needs: Mapping[str, Any] = field(default_factory=dict)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    timeout: Optional[float] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def expression_context(self, *, job_status: str = "success") -> EvaluationContext:
        return EvaluationContext(
            values={
                "needs": self.needs,
                "matrix": dict(self.bindings),
                "env": dict(self.env),
                "job": {"status": job_status},
            },
            success=job_status == "success",
            failure=job_status == "failure",
            cancelled=self.cancelled,
        )


@dataclass(frozen=True)
class UnitResult:
    exit_code: int
    logs: str = ""


@runtime_checkable
class JobExecutor(Protocol):
    """
    The Job Unit boundary.

    exit_code 0 means success, anything else failure. Raising is reported
    as an ExecutorError and also fails the instance.
    """

    def execute(self, request: UnitRequest) -> UnitResult: ...


class FunctionExecutor:
    """
    Adapt a plain callable into a JobExecutor.

    The callable may return a UnitResult, an int exit code, a bool
    (True = success) or None (success).
    """

    def __init__(self, fn: Callable[[UnitRequest], Any]):
        self.fn = fn

    def execute(self, request: UnitRequest) -> UnitResult:
        rv = self.fn(request)
        if isinstance(rv, UnitResult):
            return rv
        if rv is None:
            return UnitResult(0)
        if isinstance(rv, bool):
            return UnitResult(0 if rv else 1)
        return UnitResult(int(rv))


# ----------------------------------------------------------------------
# Shell execution
# ----------------------------------------------------------------------

class ShellExecutor:
    """
    Run each step as a shell command, in order, inside repo_root.

    A step runs only if no earlier step failed, unless its own condition
    says otherwise (`always()`, `failure()`, ...). The first failing step's
    exit code becomes the job's exit code.
    """

    def __init__(
        self,
        repo_root: str | Path = ".",
        *,
        poll_interval: float = 0.1,
        kill_grace: float = 5.0,
    ):
        self.repo_root = Path(repo_root).resolve()
        self.poll_interval = poll_interval
        self.kill_grace = kill_grace

    def execute(self, request: UnitRequest) -> UnitResult:
        out = io.StringIO()
        exit_code = 0
        deadline = time.monotonic() + request.timeout if request.timeout else None

        for step in request.steps:
            if request.cancelled:
                out.write(f"[{request.job_id}] cancelled before step '{step.name}'\n")
                return UnitResult(exit_code or CANCELLED_EXIT, out.getvalue())

            ctx = request.expression_context(job_status="failure" if exit_code else "success")
            name = interpolate(step.name, ctx)
            if not self._should_run(step, ctx, failed=bool(exit_code)):
                out.write(f"[{request.job_id}] ⏭ {name}\n")
                continue

            cmd = interpolate(step.run, ctx)
            out.write(f"[{request.job_id}] ▶ {name}\n")
            rc, text = self._run_step(request, step, cmd, deadline)
            out.write(text)

            if rc != 0:
                out.write(f"{StepFailure(job=request.job_id, step=name, cmd=cmd, exit_code=rc)}\n")
                exit_code = exit_code or rc
                if rc in (TIMEOUT_EXIT, CANCELLED_EXIT) and (request.cancelled or _expired(deadline)):
                    break

        return UnitResult(exit_code, out.getvalue())

    @staticmethod
    def _should_run(step: Step, ctx: EvaluationContext, *, failed: bool) -> bool:
        if step.condition is None:
            return not failed
        expr = parse(step.condition)
        expr.resolve(ctx)
        if not expr.status_functions and failed:
            return False
        return expr.test(ctx)

    def _run_step(
        self,
        request: UnitRequest,
        step: Step,
        cmd: str,
        deadline: Optional[float],
    ) -> Tuple[int, str]:
        cwd = (self.repo_root / (step.cwd or ".")).resolve()
        if not cwd.exists():
            raise FileNotFoundError(f"[{request.job_id}] step '{step.name}' cwd not found: {cwd}")

        env = os.environ.copy()
        env.update({k: str(v) for k, v in request.env.items()})

        proc = subprocess.Popen(
            cmd,
            shell=True,
            cwd=str(cwd),
            env=env,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=os.name == "posix",   # lets us signal the whole process group
        )

        while True:
            try:
                stdout, _ = proc.communicate(timeout=self.poll_interval)
                return proc.returncode, stdout or ""
            except subprocess.TimeoutExpired:
                if request.cancelled:
                    reason, code = "cancelled", CANCELLED_EXIT
                elif _expired(deadline):
                    reason, code = "timed out", TIMEOUT_EXIT
                else:
                    continue

            self._stop(proc)
            stdout, _ = proc.communicate()
            return code, f"{stdout or ''}[{request.job_id}] step '{step.name}' {reason}\n"

    def _stop(self, proc: subprocess.Popen) -> None:
        _signal(proc, signal.SIGTERM)
        try:
            proc.wait(timeout=self.kill_grace)
        except subprocess.TimeoutExpired:
            _signal(proc, signal.SIGKILL if os.name == "posix" else signal.SIGTERM)
            proc.wait()


def _expired(deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() >= deadline


def _signal(proc: subprocess.Popen, sig: int) -> None:
    if os.name == "posix":
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
    elif sig == signal.SIGTERM:
        proc.terminate()
    else:
        proc.kill()
