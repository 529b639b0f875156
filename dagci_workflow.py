# dagci_workflow.py
# Workflow for dagci itself: independent checks, a build that needs them all,
# and a status job that always runs and fails the pipeline if anything failed.
from __future__ import annotations

from dagci import wf, job, sh, matrix

CHECKS = ["test", "integration-test", "lint", "type-check", "docs", "build"]


def workflow():
    return wf(
        job(
            "test",
            sh("Python ${{ matrix.python-version }}", "python --version"),
            sh("Install package", "python -m pip install -e '.[test]'"),
            sh("Run unit tests", "python -m pytest -q tests"),
            matrix=[matrix("python-version", ["3.10", "3.11", "3.12"])],
            display_name="Unit Tests",
        ),

        job(
            "integration-test",
            sh("Plan own workflow", "dagci plan --workflow dagci_workflow.py"),
            needs=["test"],
            display_name="Integration Tests",
        ),

        job(
            "lint",
            sh("Ruff check", "ruff check src tests"),
            sh("Ruff format check", "ruff format --check src tests"),
            display_name="Code Quality",
        ),

        job(
            "type-check",
            sh("Mypy", "python -m mypy src/dagci --ignore-missing-imports"),
        ),

        job(
            "docs",
            sh("Check README", "test -f README.md && echo 'README.md exists'"),
            sh("Check design notes", "test -f DESIGN.md"),
            display_name="Documentation Check",
        ),

        job(
            "build",
            sh("Build package", "python -m pip wheel --no-deps -w dist ."),
            needs=["test", "lint", "type-check", "docs"],
            display_name="Build Verification",
        ),

        job(
            "status",
            sh("Report", " && ".join(f"echo '{c}: ${{{{ needs.{c}.result }}}}'" for c in CHECKS)),
            sh(
                "Fail if any job failed",
                "exit 1",
                condition="contains(needs.*.result, 'failure')",
            ),
            needs=CHECKS,
            condition="always()",
            display_name="Status Check",
        ),

        name="CI",
        env={"PYTHON_VERSION": "3.11"},
    )
