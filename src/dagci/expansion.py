# expansion.py
from __future__ import annotations

from itertools import product
from types import MappingProxyType
from typing import Any, Dict, List, Mapping

from .errors import DuplicateAxis, InvalidMatrix
from .model import Axis, Job, JobInstance


def instance_id(job_name: str, bindings: Mapping[str, Any]) -> str:
    """`build` for a plain job, `test[os=linux,python=3.11]` for a matrix point."""
    if not bindings:
        return job_name
    inner = ",".join(f"{k}={v}" for k, v in bindings.items())
    return f"{job_name}[{inner}]"


def _validate_axes(job: Job) -> List[Axis]:
    axes = job.axes()
    seen = set()
    for axis in axes:
        if axis.name in seen:
            raise DuplicateAxis(job=job.name, axis=axis.name)
        seen.add(axis.name)
        if not axis.values:
            raise InvalidMatrix(job=job.name, reason=f"axis '{axis.name}' has no values")
    for entry in job.exclude:
        unknown = sorted(set(entry) - seen)
        if unknown:
            raise InvalidMatrix(job=job.name, reason=f"exclude names unknown axes {unknown}")
    return axes


def _excluded(point: Dict[str, Any], exclude: List[Dict[str, Any]]) -> bool:
    # an exclude entry matches when every key it names agrees with the point
    return any(all(point[k] == v for k, v in entry.items()) for entry in exclude)


def expand(job: Job) -> List[JobInstance]:
    """
    Expand one job template into its concrete instances.

    Ordering follows itertools.product over the axes in declared order, so
    the first axis varies slowest. Same template -> same ids, same order.
    """
    axes = _validate_axes(job)
    if not axes:
        return [JobInstance(id=job.name, template=job)]

    names = [a.name for a in axes]
    instances: List[JobInstance] = []
    for combo in product(*(a.values for a in axes)):
        point = dict(zip(names, combo))
        if _excluded(point, job.exclude):
            continue
        instances.append(
            JobInstance(
                id=instance_id(job.name, point),
                template=job,
                bindings=MappingProxyType(point),
                index=len(instances),
            )
        )

    if not instances:
        raise InvalidMatrix(job=job.name, reason="exclude removes every combination")
    return instances
