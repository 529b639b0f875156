# runner.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Optional

from .model import Job, Workflow
from .report import RunReport
from .scheduler import ExecutorLike, start
from .ui.console import Console


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> Workflow | List[Job]
      - JOBS = Workflow | [Job, ...]

    A bare list of jobs is wrapped in a Workflow named after the file.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"dagci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    loaded = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            loaded = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise TypeError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from dagci import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise
    elif "JOBS" in globals_dict:
        loaded = globals_dict["JOBS"]

    if isinstance(loaded, Workflow):
        return loaded
    if isinstance(loaded, list) and all(isinstance(j, Job) for j in loaded):
        return Workflow(name=wf_path.stem, jobs=loaded)

    raise TypeError(
        "Workflow must return/define a Workflow or a List[Job]. "
        "Define workflow() -> wf(...) or JOBS = [Job, ...]."
    )


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_workflow(
    workflow: Workflow,
    *,
    repo_root: str | Path = ".",
    max_workers: int | None = None,
    timeout: Optional[float] = None,
    job_timeout: Optional[float] = None,
    executor: Optional[ExecutorLike] = None,
    console: Optional[Console] = None,
) -> RunReport:
    """Run a workflow to completion and return its report (blocking)."""
    handle = start(
        workflow,
        max_workers,
        executor=executor,
        repo_root=repo_root,
        timeout=timeout,
        job_timeout=job_timeout,
        console=console,
    )
    try:
        return handle.wait()
    except KeyboardInterrupt:
        handle.cancel("interrupted")
        return handle.wait()
