# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from dagci import settings
from dagci.dag import DependencyGraph
from dagci.errors import GraphError
from dagci.runner import load_workflow
from dagci.scheduler import start
from dagci.ui.console import Console, set_console, get_console


def find_workflow_files(directory: Path = Path(".")) -> list[Path]:
    """
    Find all workflow files in a directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []

    # Look for dagci_workflow.py
    default_workflow = directory / settings.WORKFLOW_FILE
    if default_workflow.exists():
        return [default_workflow]

    # Look for other *_workflow.py files
    for path in directory.glob("*_workflow.py"):
        workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Args:
        workflow_arg: Optional workflow argument from CLI

    Returns:
        Path to workflow file

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    # If workflow is explicitly provided, use it
    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  dagci run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    # Otherwise, try to discover workflow
    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {settings.WORKFLOW_FILE}",
                "  *_workflow.py",
            ],
            suggestion=f"Create a workflow file:\n  {settings.WORKFLOW_FILE}\n\nOr specify a workflow explicitly:\n  dagci run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  dagci run --workflow {workflow_files[0].name}",
        )
        sys.exit(1)

    return workflow_files[0]


def _load_graph(workflow_path: Path) -> DependencyGraph:
    console = get_console()
    try:
        return DependencyGraph(load_workflow(workflow_path))
    except GraphError as e:
        console.print_error(
            "Invalid workflow",
            str(e),
            details=[f"workflow={workflow_path}", f"error={type(e).__name__}"],
            suggestion="Fix the job graph; nothing was run.",
        )
        sys.exit(2)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[f"{type(e).__name__}: {e}"],
        )
        if console.debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces, job logs and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print the final results")
@click.pass_context
def cli(ctx, debug, quiet):
    """dagci: dependency-graph CI pipeline runner."""
    # Initialize console with debug flag
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--workflow",
    default=None,
    help=f"Workflow file path (defaults to {settings.WORKFLOW_FILE} if present)",
)
@click.option("--workers", default=None, type=int, help="Maximum number of jobs running at once")
@click.option("--timeout", default=None, type=float, help="Cancel the whole run after this many seconds")
@click.option("--job-timeout", default=None, type=float, help="Default per-job timeout in seconds")
@click.option("--report", "report_path", default=None, type=click.Path(dir_okay=False), help="Write the JSON run report here")
@click.option("--cwd", "repo_root", default=".", show_default=True, type=click.Path(file_okay=False), help="Directory steps run in")
@click.pass_context
def run(ctx, workflow, workers, timeout, job_timeout, report_path, repo_root):
    """Run a dagci workflow."""
    console = get_console()

    # Discover workflow file
    workflow_path = discover_workflow(workflow)
    graph = _load_graph(workflow_path)

    try:
        handle = start(
            graph,
            workers,
            repo_root=repo_root,
            timeout=timeout,
            job_timeout=job_timeout,
        )

        # Print run header
        console.print_run_started(
            workflow=f"{graph.name} ({workflow_path.name})",
            run_id=handle.run_id,
            job_count=len(graph.templates),
            instance_count=len(graph),
            workers=handle.scheduler.max_workers,
        )

        try:
            report = handle.wait()
        except KeyboardInterrupt:
            console.print_info("\nInterrupted by user, cancelling run...")
            handle.cancel("interrupted by user")
            report = handle.wait()
            console.print_results(report)
            sys.exit(130)

        console.print_results(report)

        if report_path:
            Path(report_path).write_text(report.to_json(), encoding="utf-8")
            console.print_info(f"Report written to {report_path}")

        if not report.succeeded:
            sys.exit(1)

    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option(
    "--workflow",
    default=None,
    help=f"Workflow file path (defaults to {settings.WORKFLOW_FILE} if present)",
)
def plan(workflow):
    """Validate a workflow and print its stages."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    graph = _load_graph(workflow_path)

    console.print_info(
        f"Workflow: {graph.name} ({len(graph.templates)} jobs, {len(graph)} after matrix expansion)"
    )
    console.print_plan(graph)


if __name__ == "__main__":
    cli()
