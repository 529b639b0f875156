# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, List, Mapping, Sequence, Set, Tuple, Union

from .conditions import Condition, condition_from
from .errors import CyclicDependency, DuplicateJob, SelfDependency, UnknownDependency
from .expansion import expand
from .expressions import embedded, parse
from .model import Job, JobInstance, Workflow


def _check_names(jobs: Sequence[Job]) -> Dict[str, Job]:
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise DuplicateJob(dupes)
    return {j.name: j for j in jobs}


def _check_needs(jobs: Sequence[Job], by_name: Mapping[str, Job]) -> None:
    for job in jobs:
        if job.name in job.needs:
            raise SelfDependency(job.name)
    for job in jobs:
        for dep in job.needs:
            if dep not in by_name:
                raise UnknownDependency(job=job.name, dependency=dep, known=sorted(by_name))


def _check_steps(job: Job) -> None:
    """Parse step conditions and every `${{ }}` fragment up front."""
    for step in job.steps:
        if step.condition is not None:
            parse(step.condition)
        embedded(step.name)
        embedded(step.run)


def find_cycle(jobs: Sequence[Job]) -> List[str] | None:
    """
    DFS colouring over `needs` edges, in declaration order.

    Returns one cycle as [a, b, ..., a] or None.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color = {j.name: WHITE for j in jobs}
    needs = {j.name: list(dict.fromkeys(j.needs)) for j in jobs}
    stack: List[str] = []

    def visit(node: str) -> List[str] | None:
        color[node] = GREY
        stack.append(node)
        for dep in needs[node]:
            if color[dep] == GREY:
                return stack[stack.index(dep):] + [dep]
            if color[dep] == WHITE:
                cycle = visit(dep)
                if cycle:
                    return cycle
        stack.pop()
        color[node] = BLACK
        return None

    for job in jobs:
        if color[job.name] == WHITE:
            cycle = visit(job.name)
            if cycle:
                return cycle
    return None


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int], order: Sequence[str]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Each stage can run in parallel. Ties follow declaration order.
    """
    rank = {n: i for i, n in enumerate(order)}
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted((n for n, d in indeg.items() if d == 0), key=rank.__getitem__))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level = sorted(q, key=rank.__getitem__)
        q.clear()
        for node in level:
            processed += 1
            for child in adj.get(node, set()):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)
        levels.append(level)

    if processed != len(indeg):
        # callers reject cycles with find_cycle first
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise RuntimeError(f"topo_levels called on a graph with a cycle through {remaining}")

    return levels


class DependencyGraph:
    """
    Immutable DAG of job instances after matrix expansion.

    Edges are kept at template level; an instance depends on *every*
    instance of each template it needs, looked up in the template -> instances
    index.
    """

    def __init__(self, workflow: Union[Workflow, Sequence[Job]]):
        if isinstance(workflow, Workflow):
            jobs = list(workflow.jobs)
            self.name = workflow.name
            self.env: Dict[str, str] = dict(workflow.env)
        else:
            jobs = list(workflow)
            self.name = "workflow"
            self.env = {}

        by_name = _check_names(jobs)
        _check_needs(jobs, by_name)
        cycle = find_cycle(jobs)
        if cycle:
            raise CyclicDependency(cycle)

        self.templates: Dict[str, Job] = by_name
        self.conditions: Dict[str, Condition] = {j.name: condition_from(j.condition) for j in jobs}
        for job in jobs:
            _check_steps(job)

        # template-level edges: dep -> dependents
        adj: Dict[str, Set[str]] = {n: set() for n in by_name}
        indeg: Dict[str, int] = {n: 0 for n in by_name}
        for job in jobs:
            for dep in dict.fromkeys(job.needs):
                adj[dep].add(job.name)
                indeg[job.name] += 1
        self._dependents = {k: frozenset(v) for k, v in adj.items()}
        self._levels = topo_levels(adj, indeg, [j.name for j in jobs])

        # arena of instances, indexed by template
        self.instances: Dict[str, JobInstance] = {}
        self._by_template: Dict[str, Tuple[str, ...]] = {}
        for job in jobs:
            expanded = expand(job)
            for inst in expanded:
                if inst.id in self.instances:
                    raise DuplicateJob([inst.id])
                self.instances[inst.id] = inst
            self._by_template[job.name] = tuple(i.id for i in expanded)

        self._stage = {name: idx for idx, level in enumerate(self._levels) for name in level}
        self._decl = {j.name: i for i, j in enumerate(jobs)}

    # ---- lookups ----
    def instances_of(self, template: str) -> Tuple[str, ...]:
        return self._by_template[template]

    def instance(self, instance_id: str) -> JobInstance:
        return self.instances[instance_id]

    def dependencies_of(self, instance_id: str) -> Tuple[str, ...]:
        job = self.instances[instance_id].template
        return tuple(i for dep in dict.fromkeys(job.needs) for i in self._by_template[dep])

    def dependents_of(self, instance_id: str) -> Tuple[str, ...]:
        job = self.instances[instance_id].template
        return tuple(i for n in self.templates if n in self._dependents[job.name] for i in self._by_template[n])

    def condition_of(self, instance_id: str) -> Condition:
        return self.conditions[self.instances[instance_id].job_name]

    def levels(self) -> List[List[str]]:
        """Template names grouped into stages that could run in parallel."""
        return [list(level) for level in self._levels]

    def stage_of(self, template: str) -> int:
        return self._stage[template]

    def launch_key(self, instance_id: str) -> Tuple[int, int, int]:
        """Sort key for the ready queue: dependency stage, then declaration."""
        inst = self.instances[instance_id]
        return self.stage_of(inst.job_name), self._decl[inst.job_name], inst.index

    def __len__(self) -> int:
        return len(self.instances)

    def __iter__(self):
        return iter(self.instances.values())
