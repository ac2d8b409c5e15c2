"""
Permute CLI.

Commands:
  • check: load, validate and bind a project, printing every diagnostic
  • plan: print the execution plan of a project's main document
  • resolve: debug a single trait query against a project's declarations
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from permute import __version__
from permute.core.errors import Diagnostic, PermuteError
from permute.core.expression_lang.type_parser import TypeParseError, parse_type
from permute.core.ir.plan import ExecutionGraph
from permute.core.ir.types import PRELUDE
from permute.core.project import check_project, load_project
from permute.core.traits.resolver import ResolutionStatus, TraitResolver

console = Console()

app = typer.Typer(
    help="""Permute – typed pipeline declarations

Loads YAML declaration documents, validates the parameters of every
binding and binds the main document into an ordered execution plan.
""",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"permute {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Log resolution traces"),
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version",
    ),
) -> None:
    """Permute CLI main callback for global options."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _print_diagnostics(diagnostics: list[Diagnostic]) -> None:
    for d in diagnostics:
        console.print(f"[red]error[/red] {escape(d.format())}")
    console.print(f"\n[red]{len(diagnostics)} error(s)[/red]")


def _print_plan(graph: ExecutionGraph) -> None:
    table = Table(title=f"Process {graph.process} ({graph.document})")
    table.add_column("#", justify="right")
    table.add_column("Binding")
    table.add_column("Type")
    table.add_column("Plan")
    table.add_column("Depends on")
    for i, step in enumerate(graph.steps, start=1):
        plan = step.plan
        how = plan.schema_name or "host code"
        if plan.feeder:
            how += f" (feeder {plan.feeder})"
        table.add_row(
            str(i),
            step.name,
            escape(str(step.resolved_type)),
            escape(how),
            ", ".join(plan.depends_on),
        )
    console.print(table)
    for pipe in graph.pipes:
        console.print(f"pipe: {' -> '.join(pipe)}")


@app.command()
def check(
    project: Path = typer.Argument(Path("."), help="Project directory (with permute.toml)"),
) -> None:
    """
    Load all documents, validate every binding and bind the main document.

    Exits with code 1 if anything fails.
    """
    graph, diagnostics = check_project(project)
    if diagnostics or graph is None:
        _print_diagnostics(diagnostics)
        raise typer.Exit(code=1)
    console.print(
        f"[green]OK[/green] {graph.document}: {len(graph.steps)} binding(s), "
        f"{len(graph.pipes)} pipe(s)"
    )


@app.command()
def plan(
    project: Path = typer.Argument(Path("."), help="Project directory (with permute.toml)"),
    as_json: bool = typer.Option(False, "--json", help="Print the plan as JSON"),
) -> None:
    """Print the execution plan, dependencies first."""
    graph, diagnostics = check_project(project)
    if diagnostics or graph is None:
        _print_diagnostics(diagnostics)
        raise typer.Exit(code=1)
    if as_json:
        typer.echo(graph.model_dump_json(indent=2))
    else:
        _print_plan(graph)


@app.command()
def resolve(
    type_name: str = typer.Argument(..., metavar="TYPE", help="Type, e.g. 'Vec<Integer>'"),
    trait_name: str = typer.Argument(..., metavar="TRAIT", help="Trait, e.g. 'Eq'"),
    project: Path = typer.Option(Path("."), "--project", "-p", help="Project directory"),
) -> None:
    """Resolve which impl provides TRAIT for TYPE."""
    try:
        loaded = load_project(project)
    except PermuteError as e:
        _print_diagnostics(e.diagnostics)
        raise typer.Exit(code=1)

    store = loaded.store
    namespace = loaded.main if loaded.main is not None else PRELUDE
    try:
        type_expr, type_problems = store.resolve_type(parse_type(type_name), namespace)
        trait_expr, trait_problems = store.resolve_type(parse_type(trait_name), namespace)
    except TypeParseError as e:
        typer.echo(f"Invalid type: {e}", err=True)
        raise typer.Exit(code=1)
    if type_problems or trait_problems:
        _print_diagnostics(type_problems + trait_problems)
        raise typer.Exit(code=1)

    resolution = TraitResolver(store).resolve(type_expr, trait_expr)
    if resolution.status == ResolutionStatus.CANDIDATE:
        console.print(f"[green]{escape(resolution.query)}[/green]")
        console.print(f"  impl: {escape(str(resolution.candidate))}")
        return
    console.print(f"[red]{resolution.status}[/red] {escape(resolution.query)}")
    for candidate in resolution.candidates:
        console.print(f"  candidate: {escape(str(candidate))}")
    raise typer.Exit(code=1)


def main(argv: list[str] | None = None) -> None:
    app(args=argv, standalone_mode=True)


if __name__ == "__main__":
    main()
