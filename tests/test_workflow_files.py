import re
from pathlib import Path

import dagci
from dagci import DependencyGraph, load_workflow
from dagci.conditions import Always
from dagci.dsl import matrix as matrix_helper

ROOT = Path(__file__).resolve().parent.parent


def test_package_exports_the_matrix_helper():
    assert dagci.matrix is matrix_helper
    assert dagci.matrix("py", ["3.11"]).values == ("3.11",)


def test_shipped_workflow_builds():
    workflow = load_workflow(ROOT / "dagci_workflow.py")
    graph = DependencyGraph(workflow)

    assert graph.name == "CI"
    assert graph.instances_of("test") == (
        "test[python-version=3.10]",
        "test[python-version=3.11]",
        "test[python-version=3.12]",
    )
    assert isinstance(graph.condition_of("status"), Always)
    assert graph.levels()[-1] == ["status"]
    assert len(graph) == 9


def test_readme_example_builds(tmp_path):
    readme = (ROOT / "README.md").read_text(encoding="utf-8")
    snippet = re.search(r"```python\n(.*?)```", readme, re.DOTALL).group(1)
    path = tmp_path / "readme_workflow.py"
    path.write_text(snippet, encoding="utf-8")

    graph = DependencyGraph(load_workflow(path))

    assert graph.name == "CI"
    assert len(graph.instances_of("test")) == 2
    assert graph.dependencies_of("build") == graph.instances_of("test") + ("lint",)
