# cli.py
from __future__ import annotations

import sys
from pathlib import Path

import click

from repofleet.config import load_variable_file, load_workflow, parse_variable_assignments
from repofleet.builder import build_operations
from repofleet.dag import plan_operation_stages
from repofleet.environment import RunContext
from repofleet.errors import RepofleetError, WorkflowConfigurationError, format_error
from repofleet.prompt import ClickPrompter
from repofleet.runner import RuntimeOptions, prepare_run, run_workflow
from repofleet.tasks.registry import default_registry
from repofleet.ui.console import Console, ConsoleReporter, get_console, set_console

DEFAULT_WORKFLOW_FILE = "repofleet_workflow.py"


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW_FILE
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
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

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix not in (".py", ".json"):
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion=f"Create a workflow file or specify a different path:\n  repofleet run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {DEFAULT_WORKFLOW_FILE}",
                "  *_workflow.py",
            ],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW_FILE}\n\nOr specify a workflow explicitly:\n  repofleet run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  repofleet run --workflow {DEFAULT_WORKFLOW_FILE}",
        )
        sys.exit(1)

    return workflow_files[0]


def _variables(assignments: tuple[str, ...], var_files: tuple[str, ...]) -> dict[str, str]:
    # --var wins over --var-file
    variables: dict[str, str] = {}
    for var_file in var_files:
        variables.update(load_variable_file(var_file))
    variables.update(parse_variable_assignments(list(assignments)))
    return variables


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print warnings and errors")
@click.pass_context
def cli(ctx, debug, quiet):
    """repofleet: declarative, concurrent changes across many git repositories."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--workflow",
    default=None,
    help=f"Workflow file path (.py or .json; defaults to {DEFAULT_WORKFLOW_FILE} if present)",
)
@click.option("--root", "roots", multiple=True, default=(".",), show_default=True, help="Directory to scan for repositories (repeatable)")
@click.option("--dry-run", is_flag=True, default=False, help="Report what would change without changing anything")
@click.option("--yes", "assume_yes", is_flag=True, default=False, help="Answer yes to every confirmation prompt")
@click.option("--var", "variables", multiple=True, metavar="NAME=VALUE", help="Seed a workflow variable (repeatable)")
@click.option("--var-file", "var_files", multiple=True, help="JSON file of workflow variables (repeatable)")
@click.option("--workers", default=1, type=click.IntRange(min=1), show_default=True, help="Repositories processed in parallel")
@click.option("--require-clean/--no-require-clean", default=False, show_default=True, help="Default clean-worktree requirement for folder renames")
@click.option("--include-nested", is_flag=True, default=False, help="Also process repositories nested inside other repositories")
@click.option("--skip-metadata", is_flag=True, default=False, help="Do not query GitHub for canonical names and default branches")
@click.pass_context
def run(ctx, workflow, roots, dry_run, assume_yes, variables, var_files, workers, require_clean, include_nested, skip_metadata):
    """Run a repofleet workflow over every repository under the roots."""
    console = get_console()

    workflow_path = discover_workflow(workflow)
    run_ctx = RunContext()

    try:
        configuration = load_workflow(workflow_path)
        options = RuntimeOptions(
            roots=list(roots) or ["."],
            dry_run=dry_run,
            assume_yes=assume_yes,
            require_clean=require_clean,
            include_nested=include_nested,
            skip_metadata=skip_metadata,
            workers=workers,
            variables=_variables(variables, var_files),
        )

        nodes, env = prepare_run(
            configuration,
            options,
            reporter=ConsoleReporter(),
            prompter=None if assume_yes else ClickPrompter(),
        )

        console.print_run_started(
            roots=options.roots,
            workflow=workflow_path.name,
            step_count=len(nodes),
            repository_count=len(env.state.repositories),
            dry_run=dry_run,
        )

        result = run_workflow(nodes, env, workers=options.workers, ctx=run_ctx)

        console.print_results(result.outcomes)

        if result.failed:
            error = result.error()
            console.print_error(
                "Workflow finished with failures",
                str(error),
                details=[format_error(e) for e in result.errors[1:]] or None,
            )
            sys.exit(1)

    except KeyboardInterrupt:
        run_ctx.cancel()
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except WorkflowConfigurationError as e:
        console.print_error(
            "Invalid workflow",
            f"{workflow_path}: {e}",
            suggestion="Fix the workflow file and run again, or preview it with:\n  repofleet plan --workflow " + str(workflow_path),
        )
        sys.exit(1)
    except (RepofleetError, OSError, TypeError) as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option(
    "--workflow",
    default=None,
    help=f"Workflow file path (.py or .json; defaults to {DEFAULT_WORKFLOW_FILE} if present)",
)
@click.pass_context
def plan(ctx, workflow):
    """Validate a workflow and print its execution stages."""
    console = get_console()

    workflow_path = discover_workflow(workflow)

    try:
        configuration = load_workflow(workflow_path)
        nodes = build_operations(configuration, default_registry())
        stages = plan_operation_stages(nodes)
    except (RepofleetError, OSError, TypeError) as e:
        console.print_error(
            "Invalid workflow",
            f"{workflow_path}: {e}",
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)

    console.print_header(f"PLAN {workflow_path.name}")
    for index, stage in enumerate(stages, start=1):
        console.print_plan_stage(index, stage.names())
    console.print_info(f"\n{len(nodes)} step(s) in {len(stages)} stage(s)")


if __name__ == "__main__":
    cli()
