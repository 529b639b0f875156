from .dsl import job, sh, matrix, wf, JobBuilder, build
from .model import Axis, Job, JobInstance, JobStatus, Step, Verdict, Workflow
from .conditions import Always, AnySucceeded, Custom, Default, DependencyView
from .dag import DependencyGraph
from .executor import FunctionExecutor, ShellExecutor, UnitRequest, UnitResult
from .report import RunReport
from .runner import load_workflow, run_workflow
from .scheduler import RunHandle, await_completion, cancel, start

__all__ = [
    "job", "sh", "matrix", "wf", "JobBuilder", "build",
    "Axis", "Job", "JobInstance", "JobStatus", "Step", "Verdict", "Workflow",
    "Always", "AnySucceeded", "Custom", "Default", "DependencyView",
    "DependencyGraph",
    "FunctionExecutor", "ShellExecutor", "UnitRequest", "UnitResult",
    "RunReport",
    "load_workflow", "run_workflow",
    "RunHandle", "await_completion", "cancel", "start",
]
