# tests/conftest.py
"""
Shared fixtures for the dagci test-suite.

ScriptedExecutor is a Job Unit double: it returns scripted exit codes per job
name or instance id, can raise, or can hold a job "running" until its cancel
event fires. It records what ran and the peak number of concurrent units.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, Iterable, Optional

import pytest

from dagci import UnitRequest, UnitResult, job, sh, start, wf
from dagci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(quiet=True))
    yield
    set_console(Console())


class ScriptedExecutor:
    def __init__(
        self,
        outcomes: Optional[Dict[str, Any]] = None,
        *,
        delay: float = 0.0,
        block: Iterable[str] = (),
        ignore_cancel: Iterable[str] = (),
    ):
        self.outcomes = dict(outcomes or {})
        self.delay = delay
        self.block = set(block)
        self.ignore_cancel = set(ignore_cancel)
        self.calls: list[str] = []
        self.requests: Dict[str, UnitRequest] = {}
        self.running = 0
        self.max_running = 0
        self._started: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()
        self.release = threading.Event()

    def started(self, key: str) -> threading.Event:
        with self._lock:
            return self._started.setdefault(key, threading.Event())

    def _lookup(self, request: UnitRequest, table) -> Any:
        if request.job_id in table:
            return request.job_id
        if request.job_name in table:
            return request.job_name
        return None

    def execute(self, request: UnitRequest) -> UnitResult:
        with self._lock:
            self.calls.append(request.job_id)
            self.requests[request.job_id] = request
            self.running += 1
            self.max_running = max(self.max_running, self.running)
            for key in (request.job_id, request.job_name):
                self._started.setdefault(key, threading.Event()).set()
        try:
            if self._lookup(request, self.ignore_cancel):
                self.release.wait(5)
                return UnitResult(0, "finished late")
            if self._lookup(request, self.block):
                request.cancel_event.wait(5)
                return UnitResult(130, "stopped")
            if self.delay:
                time.sleep(self.delay)
            key = self._lookup(request, self.outcomes)
            outcome = self.outcomes[key] if key is not None else 0
            if isinstance(outcome, BaseException):
                raise outcome
            if callable(outcome):
                return outcome(request)
            return UnitResult(outcome, f"ran {request.job_id}")
        finally:
            with self._lock:
                self.running -= 1


@pytest.fixture
def scripted():
    return ScriptedExecutor


def noop(name: str, **kwargs):
    """A job with a single do-nothing step."""
    return job(name, sh("noop", "true"), **kwargs)


def run_jobs(jobs, executor, *, workers: int = 4, **kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("cancel_grace", 2.0)
    handle = start(wf(*jobs), workers, executor=executor, **kwargs)
    return handle.wait(timeout=15)
