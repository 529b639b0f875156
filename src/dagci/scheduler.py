# scheduler.py
"""
The scheduling loop.

One coordinating thread owns every JobInstance and is the only writer of
their status. Job Units run on a ThreadPoolExecutor; the loop waits on
their futures with FIRST_COMPLETED and reacts to one completion at a time.

    Pending -> Ready -> Running -> Succeeded | Failed | Cancelled
    Pending -> Blocked -> Skipped
    Pending -> Failed                 (condition could not be evaluated)
    Pending | Blocked | Ready -> Cancelled
"""

from __future__ import annotations

import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from . import settings
from .conditions import DependencyResult, DependencyView
from .dag import DependencyGraph
from .errors import ExecutorError, RunCancelled
from .executor import FunctionExecutor, JobExecutor, ShellExecutor, UnitRequest, UnitResult
from .model import Job, JobInstance, JobStatus, Workflow
from .report import RunReport, aggregate
from .ui.console import Console, get_console


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Outcome:
    result: Optional[UnitResult]
    error: Optional[BaseException]
    finished: float   # monotonic


@dataclass
class _Flight:
    """Bookkeeping for one running instance."""
    instance_id: str
    cancel_event: threading.Event
    started: float
    timeout: Optional[float]
    signalled_at: Optional[float] = None
    signal_kind: Optional[str] = None   # "cancel" | "timeout" | "fail-fast"
    signal_reason: str = ""

    def signal(self, kind: str, reason: str, at: float) -> None:
        if self.signal_kind is None:
            self.signal_kind = kind
            self.signal_reason = reason
            self.signalled_at = at
        self.cancel_event.set()


class Scheduler:
    def __init__(
        self,
        graph: DependencyGraph,
        executor: JobExecutor,
        *,
        max_workers: Optional[int] = None,
        cancel_grace: Optional[float] = None,
        poll_interval: Optional[float] = None,
        run_timeout: Optional[float] = None,
        job_timeout: Optional[float] = None,
        console: Optional[Console] = None,
    ):
        self.graph = graph
        self.executor = executor
        self.max_workers = max(1, max_workers or settings.WORKERS)
        self.cancel_grace = settings.CANCEL_GRACE if cancel_grace is None else cancel_grace
        self.poll_interval = poll_interval or settings.POLL_INTERVAL
        self.run_timeout = run_timeout
        self.job_timeout = job_timeout if job_timeout is not None else settings.JOB_TIMEOUT
        self.console = console or get_console()
        self.run_id = uuid.uuid4().hex[:12]

        self._ready: List[str] = []
        self._cancel_requested = threading.Event()
        self._cancel_reason: Optional[str] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Cancellation (safe to call from any thread)
    # ------------------------------------------------------------------

    def request_cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._cancel_reason is None:
                self._cancel_reason = reason
        self._cancel_requested.set()

    @property
    def cancel_reason(self) -> Optional[str]:
        with self._lock:
            return self._cancel_reason

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> RunReport:
        started_at = now_utc()
        start = time.monotonic()
        cancelling = False
        in_flight: Dict[Future, _Flight] = {}
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=f"dagci-{self.run_id}")

        try:
            while True:
                if self.run_timeout is not None and time.monotonic() - start >= self.run_timeout:
                    self.request_cancel(f"run timed out after {self.run_timeout}s")

                if self._cancel_requested.is_set() and not cancelling:
                    cancelling = True
                    self._cancel_queued()
                    now = time.monotonic()
                    for flight in in_flight.values():
                        flight.signal("cancel", self.cancel_reason or "cancelled", now)

                if not cancelling:
                    self._evaluate_pending()
                    self._launch_ready(pool, in_flight)

                if not in_flight:
                    stalled = [i.id for i in self.graph if not i.terminal]
                    if stalled:
                        raise RuntimeError(f"Scheduler stalled with non-terminal jobs: {stalled}")
                    break

                done, _ = wait(list(in_flight), timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for fut in done:
                    self._complete(in_flight.pop(fut), fut.result(), in_flight)

                self._enforce_deadlines(in_flight)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        return aggregate(
            self.run_id,
            self.graph.name,
            self.graph,
            started_at=started_at,
            finished_at=now_utc(),
            cancel_reason=self.cancel_reason,
        )

    # ------------------------------------------------------------------
    # Pending -> Ready | Blocked -> Skipped | Failed
    # ------------------------------------------------------------------

    def _view(self, inst: JobInstance) -> DependencyView:
        results: Dict[str, DependencyResult] = {}
        templates: Dict[str, Sequence[str]] = {}
        for dep in dict.fromkeys(inst.template.needs):
            ids = self.graph.instances_of(dep)
            templates[dep] = ids
            for i in ids:
                d = self.graph.instance(i)
                results[i] = DependencyResult(d.status, d.exit_code)
        return DependencyView(results, templates, matrix=inst.bindings, env=self._env_for(inst))

    def _env_for(self, inst: JobInstance) -> Dict[str, str]:
        env = {k: str(v) for k, v in self.graph.env.items()}
        env.update({k: str(v) for k, v in inst.template.env.items()})
        return env

    def _evaluate_pending(self) -> None:
        # a skip can unblock dependents in the same pass, so iterate to a fixpoint
        changed = True
        while changed:
            changed = False
            for inst in sorted(self.graph, key=lambda i: self.graph.launch_key(i.id)):
                if inst.status is not JobStatus.PENDING:
                    continue
                if not all(self.graph.instance(d).terminal for d in self.graph.dependencies_of(inst.id)):
                    continue
                self._decide(inst)
                changed = True

    def _decide(self, inst: JobInstance) -> None:
        view = self._view(inst)
        condition = self.graph.condition_of(inst.id)
        self.console.print_debug(f"{inst.id}: evaluating condition {condition}")
        try:
            run = condition.evaluate(view)
        except Exception as e:
            # fail closed
            inst.error = f"condition {condition} could not be evaluated: {e}"
            inst.transition(JobStatus.FAILED)
            inst.finished_at = now_utc()
            self.console.print_failure(inst.id, inst.error)
            return

        if run:
            inst.transition(JobStatus.READY)
            self._ready.append(inst.id)
            return

        inst.transition(JobStatus.BLOCKED)
        inst.transition(JobStatus.SKIPPED)
        inst.finished_at = now_utc()
        self.console.print_job_skipped(inst.id, _skip_reason(view, condition))

    # ------------------------------------------------------------------
    # Ready -> Running
    # ------------------------------------------------------------------

    def _launch_ready(self, pool: ThreadPoolExecutor, in_flight: Dict[Future, _Flight]) -> None:
        self._ready.sort(key=self.graph.launch_key)
        while self._ready and len(in_flight) < self.max_workers:
            inst = self.graph.instance(self._ready.pop(0))
            timeout = inst.template.timeout if inst.template.timeout is not None else self.job_timeout
            request = UnitRequest(
                job_id=inst.id,
                job_name=inst.job_name,
                steps=tuple(inst.template.steps),
                bindings=dict(inst.bindings),
                env=self._env_for(inst),
                needs=self._view(inst).needs_context(),
                cancel_event=threading.Event(),
                timeout=timeout,
            )
            inst.transition(JobStatus.RUNNING)
            inst.started_at = now_utc()
            self.console.print_job_start(inst.id)
            fut = pool.submit(self._call, request)
            in_flight[fut] = _Flight(inst.id, request.cancel_event, time.monotonic(), timeout)

    def _call(self, request: UnitRequest) -> _Outcome:
        # runs on a worker thread: never touches instance state
        try:
            result = self.executor.execute(request)
        except KeyboardInterrupt:
            raise
        except BaseException as e:
            # SystemExit and friends from a unit end that unit, not the run
            return _Outcome(None, e, time.monotonic())
        return _Outcome(result, None, time.monotonic())

    # ------------------------------------------------------------------
    # Running -> terminal
    # ------------------------------------------------------------------

    def _complete(self, flight: _Flight, outcome: _Outcome, in_flight: Dict[Future, _Flight]) -> None:
        inst = self.graph.instance(flight.instance_id)
        inst.finished_at = now_utc()

        if outcome.result is not None:
            inst.exit_code = outcome.result.exit_code
            inst.logs = outcome.result.logs
            status = JobStatus.SUCCEEDED if outcome.result.exit_code == 0 else JobStatus.FAILED
        else:
            inst.error = str(ExecutorError(inst.id, outcome.error))
            status = JobStatus.FAILED

        # an outcome produced after the unit was told to stop reflects the stop
        if flight.signalled_at is not None and outcome.finished >= flight.signalled_at:
            if flight.signal_kind == "timeout":
                status = JobStatus.FAILED
                inst.error = f"timed out after {flight.timeout}s"
            else:
                status = JobStatus.CANCELLED
                inst.error = str(RunCancelled(flight.signal_reason))

        inst.transition(status)
        self._report_finished(inst)

        if status is JobStatus.FAILED and inst.template.fail_fast:
            self._fail_fast(inst, in_flight)

    def _report_finished(self, inst: JobInstance) -> None:
        duration = None
        if inst.started_at and inst.finished_at:
            duration = (inst.finished_at - inst.started_at).total_seconds()
        self.console.print_job_finished(inst.id, inst.status.value, inst.exit_code, duration)
        if inst.status is JobStatus.FAILED and inst.error:
            self.console.print_failure(inst.id, inst.error, inst.exit_code)
        self.console.print_logs(inst.id, inst.logs)

    def _fail_fast(self, failed: JobInstance, in_flight: Dict[Future, _Flight]) -> None:
        reason = f"fail-fast: {failed.id} failed"
        siblings = set(self.graph.instances_of(failed.job_name)) - {failed.id}
        for sid in sorted(siblings & set(self._ready), key=self.graph.launch_key):
            self._ready.remove(sid)
            self._cancel(self.graph.instance(sid), reason)
        now = time.monotonic()
        for flight in in_flight.values():
            if flight.instance_id in siblings:
                flight.signal("fail-fast", reason, now)

    # ------------------------------------------------------------------
    # Cancellation and deadlines
    # ------------------------------------------------------------------

    def _cancel(self, inst: JobInstance, reason: str) -> None:
        inst.transition(JobStatus.CANCELLED)
        inst.error = str(RunCancelled(reason))
        inst.finished_at = now_utc()
        self.console.print_job_finished(inst.id, inst.status.value)

    def _cancel_queued(self) -> None:
        reason = self.cancel_reason or "cancelled"
        queued = (JobStatus.PENDING, JobStatus.BLOCKED, JobStatus.READY)
        for inst in sorted(self.graph, key=lambda i: self.graph.launch_key(i.id)):
            if inst.status in queued:
                self._cancel(inst, reason)
        self._ready.clear()

    def _enforce_deadlines(self, in_flight: Dict[Future, _Flight]) -> None:
        now = time.monotonic()
        for fut, flight in list(in_flight.items()):
            if flight.timeout and flight.signal_kind is None and now - flight.started >= flight.timeout:
                flight.signal("timeout", f"timed out after {flight.timeout}s", now)
            if flight.signalled_at is not None and now - flight.signalled_at >= self.cancel_grace:
                # the unit ignored its stop request; stop waiting for it
                del in_flight[fut]
                self._abandon(flight)

    def _abandon(self, flight: _Flight) -> None:
        inst = self.graph.instance(flight.instance_id)
        inst.finished_at = now_utc()
        if flight.signal_kind == "timeout":
            inst.error = f"timed out after {flight.timeout}s and did not stop"
            inst.transition(JobStatus.FAILED)
        else:
            inst.error = str(RunCancelled(f"{flight.signal_reason}; unit did not stop"))
            inst.transition(JobStatus.CANCELLED)
        self._report_finished(inst)


def _skip_reason(view: DependencyView, condition: Any) -> str:
    if view.any_failed:
        return "dependency failed"
    if view.any_cancelled:
        return "dependency cancelled"
    if view.any_skipped:
        return "dependency skipped"
    return f"condition {condition} is false"


# ----------------------------------------------------------------------
# Control surface
# ----------------------------------------------------------------------

class RunHandle:
    """A run executing in the background."""

    def __init__(self, scheduler: Scheduler):
        self.scheduler = scheduler
        self.run_id = scheduler.run_id
        self._report: Optional[RunReport] = None
        self._error: Optional[BaseException] = None
        self._done = threading.Event()
        self._thread = threading.Thread(target=self._main, name=f"dagci-run-{self.run_id}", daemon=True)

    def _main(self) -> None:
        try:
            self._report = self.scheduler.run()
        except BaseException as e:
            self._error = e
        finally:
            self._done.set()

    @property
    def graph(self) -> DependencyGraph:
        return self.scheduler.graph

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        self.scheduler.request_cancel(reason)

    def wait(self, timeout: Optional[float] = None) -> RunReport:
        if not self._done.wait(timeout):
            raise TimeoutError(f"Run {self.run_id} still in progress after {timeout}s")
        if self._error is not None:
            raise self._error
        if self._report is None:
            raise RuntimeError(f"Run {self.run_id} finished without a report")
        return self._report


ExecutorLike = Union[JobExecutor, Callable[[UnitRequest], Any]]


def start(
    workflow: Union[Workflow, DependencyGraph, Sequence[Job]],
    concurrency_limit: Optional[int] = None,
    *,
    executor: Optional[ExecutorLike] = None,
    repo_root: str | Path = ".",
    timeout: Optional[float] = None,
    job_timeout: Optional[float] = None,
    cancel_grace: Optional[float] = None,
    poll_interval: Optional[float] = None,
    console: Optional[Console] = None,
) -> RunHandle:
    """
    Validate the workflow and start running it in the background.

    Structural errors (cycles, unknown needs, bad matrices, bad expressions)
    raise here, before any job is launched.
    """
    graph = workflow if isinstance(workflow, DependencyGraph) else DependencyGraph(workflow)

    if executor is None:
        executor = ShellExecutor(repo_root)
    elif not isinstance(executor, JobExecutor):
        executor = FunctionExecutor(executor)

    scheduler = Scheduler(
        graph,
        executor,
        max_workers=concurrency_limit,
        cancel_grace=cancel_grace,
        poll_interval=poll_interval,
        run_timeout=timeout,
        job_timeout=job_timeout,
        console=console,
    )
    handle = RunHandle(scheduler)
    handle._thread.start()
    return handle


def cancel(handle: RunHandle, reason: str = "cancelled") -> None:
    handle.cancel(reason)


def await_completion(handle: RunHandle, timeout: Optional[float] = None) -> RunReport:
    return handle.wait(timeout)
