from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Callable

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import PROJECT_TYPES, RULES_DIR
from .scaffold import InitOptions, ScaffoldError, init_rules
from .tracker import (
    TrackerConfigError,
    TrackerError,
    collect_commit,
    install_hook,
    load_settings,
    submit_commit,
)
from .validator import FieldScope, ValidationError, validate_rules

app = typer.Typer(help="Scaffold, validate and track AI assistant rule files.")
hooks_app = typer.Typer(help="Manage the commit tracking git hook.")
app.add_typer(hooks_app, name="hooks")
console = Console()
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID_INPUT = 2


class OutputFormat(str, Enum):
    table = "table"
    json = "json"
    md = "md"


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _json_print(payload: dict) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=True, sort_keys=True))


def _print_key_value_table(title: str, rows: list[tuple[str, str]]) -> None:
    table = Table(title=title)
    table.add_column("Field")
    table.add_column("Value")
    for key, value in rows:
        table.add_row(key, escape(value))
    console.print(table)


def _emit_success(
    command: str,
    output_format: OutputFormat,
    data: dict,
    md_renderer: Callable[[dict], str] | None = None,
    table_renderer: Callable[[dict], None] | None = None,
    exit_code: int = EXIT_OK,
) -> None:
    """Render a command result; a non-zero exit code marks it as failed after rendering."""
    if output_format == OutputFormat.json:
        _json_print(
            {
                "ok": exit_code == EXIT_OK,
                "command": command,
                "exit_code": exit_code,
                "data": data,
            }
        )
    elif output_format == OutputFormat.md and md_renderer is not None:
        console.print(md_renderer(data))
    elif output_format == OutputFormat.table and table_renderer is not None:
        table_renderer(data)
    elif output_format == OutputFormat.md:
        lines = [f"# {command}", ""]
        lines.extend(f"- **{key}**: {value}" for key, value in data.items())
        console.print("\n".join(lines))
    else:
        _print_key_value_table(
            title=command,
            rows=[(str(key), str(value)) for key, value in data.items()],
        )

    if exit_code != EXIT_OK:
        raise typer.Exit(code=exit_code)


def _emit_error(
    command: str,
    output_format: OutputFormat,
    exit_code: int,
    code: str,
    message: str,
) -> None:
    if output_format == OutputFormat.json:
        _json_print(
            {
                "ok": False,
                "command": command,
                "exit_code": exit_code,
                "error": {
                    "code": code,
                    "message": message,
                },
            }
        )
    elif output_format == OutputFormat.md:
        console.print(f"# {command}\n\n- **status**: error\n- **code**: {code}\n- **message**: {escape(message)}")
    else:
        console.print(f"[red]Error ({code}):[/red] {escape(message)}")

    raise typer.Exit(code=exit_code)


@app.command("init")
def init_project(
    target: Path = typer.Argument(Path("."), help="Project directory that receives .cursor/rules."),
    project_type: str = typer.Option("none", "--type", "-t", help=f"One of: {', '.join(PROJECT_TYPES)}"),
    name: str = typer.Option("", "--name", help="Project name used in templates (defaults to directory name)."),
    author: str = typer.Option("", "--author", help="Author name used in templates."),
    profile: bool = typer.Option(True, "--profile/--no-profile", help="Include the personal profile rule."),
    gitignore: bool = typer.Option(True, "--gitignore/--no-gitignore", help="Add .cursor/ entries to .gitignore."),
    force: bool = typer.Option(False, "--force", help="Overwrite rule files that already exist."),
    output_format: OutputFormat = typer.Option(OutputFormat.table, "--format", help="Output format."),
):
    """Copy rule templates into a project."""
    options = InitOptions(
        target_root=target.resolve(),
        project_name=name,
        project_type=project_type,
        include_profile=profile,
        update_gitignore=gitignore,
        author=author,
        force=force,
    )
    try:
        report = init_rules(options)
    except ScaffoldError as error:
        _emit_error(
            command="init",
            output_format=output_format,
            exit_code=EXIT_INVALID_INPUT,
            code="scaffold_error",
            message=str(error),
        )
        raise

    data = {
        "rules_dir": str(report.rules_dir),
        "project_type": project_type,
        "created": list(report.created),
        "skipped": list(report.skipped),
        "gitignore_updated": report.gitignore_updated,
    }

    def render_md(payload: dict) -> str:
        lines = [f"# Rules initialized in `{payload['rules_dir']}`", ""]
        lines.extend(f"- created `{item}`" for item in payload["created"])
        lines.extend(f"- skipped `{item}` (already exists)" for item in payload["skipped"])
        if payload["gitignore_updated"]:
            lines.append("- updated `.gitignore`")
        return "\n".join(lines)

    def render_table(payload: dict) -> None:
        table = Table(title=f"Rules in {payload['rules_dir']}")
        table.add_column("File")
        table.add_column("Status")
        for item in payload["created"]:
            table.add_row(item, "[green]created[/green]")
        for item in payload["skipped"]:
            table.add_row(item, "[yellow]skipped[/yellow]")
        console.print(table)
        if payload["gitignore_updated"]:
            console.print("[green]Updated .gitignore[/green]")
        console.print("Next: fill in 00-project-context.mdc and remove placeholder text.")

    _emit_success(command="init", output_format=output_format, data=data, md_renderer=render_md, table_renderer=render_table)


@app.command("validate")
def validate(
    rules_dir: Path = typer.Option(RULES_DIR, "--rules-dir", help="Rules directory to audit."),
    require_categories: bool = typer.Option(
        False, "--require-categories", help="Report every absent standard category directory as an error."
    ),
    field_scope: FieldScope = typer.Option(
        FieldScope.file, "--field-scope", help="Search required fields in the whole file or only the frontmatter."
    ),
    output_format: OutputFormat = typer.Option(OutputFormat.table, "--format", help="Output format."),
):
    """Check rule file frontmatter, required fields and content."""
    try:
        report = validate_rules(rules_dir, require_categories=require_categories, field_scope=field_scope)
    except ValidationError as error:
        _emit_error(
            command="validate",
            output_format=output_format,
            exit_code=EXIT_ERROR,
            code="rules_dir_not_found",
            message=str(error),
        )
        raise

    data = {
        "rules_dir": str(report.rules_dir),
        "total": report.total,
        "valid": report.valid,
        "always_applied": report.always_applied,
        "files": [
            {"name": result.name, "valid": result.valid, "error": result.error or ""}
            for result in report.results
        ],
        "categories": report.categories,
        "errors": report.errors,
        "warnings": report.warnings,
    }

    def render_md(payload: dict) -> str:
        lines = [f"# Rule validation: `{payload['rules_dir']}`", ""]
        lines.append(f"- **total**: {payload['total']}")
        lines.append(f"- **valid**: {payload['valid']}")
        lines.append(f"- **always_applied**: {payload['always_applied']}")
        if payload["errors"]:
            lines.append("\n## Errors")
            lines.extend(f"- {item}" for item in payload["errors"])
        if payload["warnings"]:
            lines.append("\n## Warnings")
            lines.extend(f"- {item}" for item in payload["warnings"])
        return "\n".join(lines)

    def render_table(payload: dict) -> None:
        table = Table(title=f"Rule files in {payload['rules_dir']}")
        table.add_column("File")
        table.add_column("Status")
        for item in payload["files"]:
            status = "[green]valid[/green]" if item["valid"] else f"[red]{escape(item['error'])}[/red]"
            table.add_row(escape(item["name"]), status)
        console.print(table)
        console.print(f"Total rules validated: {payload['total']}")
        console.print(f"Valid rules: {payload['valid']}")
        console.print(f"Always-applied rules found: {payload['always_applied']}")
        for item in payload["warnings"]:
            console.print(f"[yellow]Warning:[/yellow] {escape(item)}")
        if payload["errors"]:
            console.print(f"[red]Errors found: {len(payload['errors'])}[/red]")
            for item in payload["errors"]:
                console.print(f"  - {escape(item)}")
        else:
            console.print("[green]All rules validation passed![/green]")

    _emit_success(
        command="validate",
        output_format=output_format,
        data=data,
        md_renderer=render_md,
        table_renderer=render_table,
        exit_code=EXIT_OK if report.ok else EXIT_ERROR,
    )


@hooks_app.command("install")
def hooks_install(
    repo_path: Path = typer.Argument(Path("."), help="Git repository to install the hook into."),
    project: str = typer.Option("", "--project", help="Project name reported with each commit."),
    output_format: OutputFormat = typer.Option(OutputFormat.table, "--format", help="Output format."),
):
    """Install the post-commit hook that reports commits to the tracking backend."""
    try:
        settings = load_settings()
    except TrackerConfigError as error:
        _emit_error(
            command="hooks install",
            output_format=output_format,
            exit_code=EXIT_INVALID_INPUT,
            code="invalid_config",
            message=str(error),
        )
        raise

    project_name = project or settings.project_name or repo_path.resolve().name
    try:
        report = install_hook(repo_path.resolve(), project_name, settings)
    except TrackerConfigError as error:
        _emit_error(
            command="hooks install",
            output_format=output_format,
            exit_code=EXIT_INVALID_INPUT,
            code="missing_api_key",
            message=str(error),
        )
        raise
    except TrackerError as error:
        _emit_error(
            command="hooks install",
            output_format=output_format,
            exit_code=EXIT_INVALID_INPUT,
            code="hook_install_error",
            message=str(error),
        )
        raise

    data = {
        "hook": str(report.hook_path),
        "project_name": report.project_name,
        "base_url": report.base_url,
        "env_example_created": report.env_example_created,
        "gitignore_updated": report.gitignore_updated,
    }

    def render_md(payload: dict) -> str:
        lines = [f"# Git hook installed for `{payload['project_name']}`", ""]
        lines.append(f"- **hook**: `{payload['hook']}`")
        lines.append(f"- **base_url**: {payload['base_url']}")
        lines.append("\n## Next steps")
        lines.append("1. Copy .env.example to .env.local")
        lines.append("2. Add your SUPABASE_ANON_KEY to .env.local")
        lines.append("3. Make a test commit to see it in action")
        return "\n".join(lines)

    _emit_success(command="hooks install", output_format=output_format, data=data, md_renderer=render_md)


@app.command("track-commit")
def track_commit(
    repo_path: Path = typer.Option(Path("."), "--repo", help="Git repository containing the commit."),
    project: str = typer.Option("", "--project", help="Project name reported with the commit."),
    rev: str = typer.Option("HEAD", "--rev", help="Commit to report."),
):
    """Report one commit to the tracking backend (run by the post-commit hook)."""
    try:
        settings = load_settings()
        project_name = project or settings.project_name or repo_path.resolve().name
        record = collect_commit(repo_path.resolve(), project_name, rev=rev)
        submit_commit(record, settings)
    except TrackerConfigError as error:
        typer.echo(f"Commit not tracked: {error}", err=True)
        raise typer.Exit(code=EXIT_INVALID_INPUT)
    except TrackerError as error:
        # The commit already exists; a failed report is printed and otherwise ignored.
        logger.debug("Commit tracking failed", exc_info=True)
        typer.echo(f"Commit not tracked: {error}", err=True)
        return

    typer.echo(f"Tracked commit {record.commit_hash} for project '{project_name}'")


@app.command("version")
def version(
    output_format: OutputFormat = typer.Option(OutputFormat.table, "--format", help="Output format."),
) -> None:
    """Print version."""
    _emit_success(command="version", output_format=output_format, data={"version": __version__})


if __name__ == "__main__":
    app()
