"""CLI entry point for prscan."""

import asyncio
import json
import logging
import os
from pathlib import Path

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv()

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from prscan.adapters.github import parse_pr_url
from prscan.analyzers.pipeline import ScanPipeline
from prscan.config import ScanSettings
from prscan.errors import PrscanError
from prscan.lockfiles.base import split_spec
from prscan.models.schemas import AccessMode, ScanResult, Severity

app = typer.Typer(help="Supply-chain risk scanner for npm dependency changes.")

console = Console()

SEVERITY_STYLES = {
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _settings(keep_going: bool) -> ScanSettings:
    if keep_going:
        return ScanSettings.from_env(fail_fast=False)
    return ScanSettings.from_env()


def _print_result(result: ScanResult) -> None:
    """Render a scan result as rich tables."""
    if not result.changed_dependencies and not result.failures:
        console.print("[green]No new dependencies introduced.[/green]")

    if result.changed_dependencies:
        table = Table(title=f"Changed Dependencies ({len(result.changed_dependencies)})")
        table.add_column("Package", style="cyan")
        table.add_column("Version", style="white")
        table.add_column("Weekly Downloads", justify="right", style="green")
        table.add_column("Risks", justify="right")
        table.add_column("Findings", style="white")

        for dep in result.sorted_by_risk():
            findings = ", ".join(
                f"[{SEVERITY_STYLES[f.severity]}]{f.kind.value}[/{SEVERITY_STYLES[f.severity]}]"
                for f in dep.findings
            )
            table.add_row(
                dep.name,
                dep.version,
                f"{dep.download_stats.downloads:,}",
                str(len(dep.findings)),
                findings or "[dim]-[/dim]",
            )
        console.print(table)

        for dep in result.sorted_by_risk():
            if not dep.findings:
                continue
            console.print()
            console.print(f"[bold]{dep.name}@{dep.version}[/bold]")
            for finding in dep.findings:
                style = SEVERITY_STYLES[finding.severity]
                console.print(f"  [{style}]{finding.severity.value.upper()}[/{style}] {finding.description}")
                for line in finding.evidence.splitlines():
                    console.print(f"    [dim]{line}[/dim]")
            for warning in dep.parse_warnings:
                console.print(f"  [yellow]Parse warning:[/yellow] [dim]{warning}[/dim]")

    if result.failures:
        console.print()
        console.print(f"[red]Failed to scan {len(result.failures)} dependencies:[/red]")
        for failure in result.failures:
            console.print(f"  {failure.name}@{failure.version} ({failure.step}): {failure.error}")

    for filename, error in result.lockfile_errors.items():
        console.print(f"[yellow]Skipped {filename}:[/yellow] {error}")


def format_comment(result: ScanResult) -> str:
    """Build a Markdown summary suitable for a pull request comment."""
    lines = ["## Dependency risk scan", ""]
    if not result.changed_dependencies and not result.failures:
        lines.append("No new dependencies introduced.")
        return "\n".join(lines)

    lines.append(
        f"Scanned {len(result.changed_dependencies)} new dependencies, "
        f"{result.finding_count} findings."
    )
    for dep in result.sorted_by_risk():
        lines.append("")
        lines.append(f"### `{dep.name}@{dep.version}`")
        if not dep.findings:
            lines.append("No risks found.")
            continue
        for finding in dep.findings:
            lines.append(f"- **{finding.severity.value}** {finding.description}")
            for evidence in finding.evidence.splitlines():
                lines.append(f"  {evidence}")

    if result.failures:
        lines.append("")
        lines.append("### Not scanned")
        for failure in result.failures:
            lines.append(f"- `{failure.name}@{failure.version}` ({failure.step}): {failure.error}")

    return "\n".join(lines)


def _write_output(result: ScanResult, output: Path | None) -> None:
    if output is None:
        return
    output.write_text(json.dumps(result.model_dump(mode="json"), indent=2))
    console.print(f"\n[dim]Results saved to {output}[/dim]")


@app.command()
def github(
    link: str = typer.Argument(..., help="Pull request URL, e.g. https://github.com/owner/repo/pull/1"),
    token: str | None = typer.Option(None, "--token", "-t", help="GitHub token (defaults to GITHUB_TOKEN)"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output JSON file"),
    reply: bool = typer.Option(False, "--reply", help="Post a summary comment on the pull request"),
    keep_going: bool = typer.Option(False, "--keep-going", "-k", help="Record failing dependencies and continue"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Scan the dependencies a GitHub pull request introduces."""
    _setup_logging(verbose)
    asyncio.run(_scan_github(link, token, output, reply, keep_going))


async def _scan_github(
    link: str,
    token: str | None,
    output: Path | None,
    reply: bool,
    keep_going: bool,
) -> None:
    """Async implementation of github."""
    parsed = parse_pr_url(link)
    if parsed is None:
        console.print(f"[red]Not a pull request URL: {link}[/red]")
        raise typer.Exit(1)
    owner, repo, number = parsed

    token = token or os.environ.get("GITHUB_TOKEN")
    async with ScanPipeline(settings=_settings(keep_going), github_token=token) as pipeline:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task(f"Scanning {owner}/{repo}#{number}...", total=None)
            try:
                result = await pipeline.scan_pull_request(owner, repo, number)
            except PrscanError as e:
                console.print(f"[red]Error: {e}[/red]")
                raise typer.Exit(1)

        _print_result(result)
        _write_output(result, output)

        if reply:
            await pipeline.github.create_comment(owner, repo, number, format_comment(result))
            console.print(f"[green]Posted comment on {owner}/{repo}#{number}[/green]")


@app.command()
def branch(
    base: str = typer.Argument(..., help="Base revision"),
    head: str = typer.Argument(..., help="Head revision"),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Path to the git repository"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output JSON file"),
    keep_going: bool = typer.Option(False, "--keep-going", "-k", help="Record failing dependencies and continue"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Scan the dependencies introduced between two local git revisions."""
    _setup_logging(verbose)
    asyncio.run(_scan_branch(base, head, repo, output, keep_going))


async def _scan_branch(base: str, head: str, repo: Path, output: Path | None, keep_going: bool) -> None:
    """Async implementation of branch."""
    async with ScanPipeline(settings=_settings(keep_going)) as pipeline:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task(f"Scanning {base}..{head}...", total=None)
            try:
                result = await pipeline.scan_git_revisions(repo, base, head)
            except PrscanError as e:
                console.print(f"[red]Error: {e}[/red]")
                raise typer.Exit(1)

    _print_result(result)
    _write_output(result, output)


@app.command()
def package(
    name: str = typer.Argument(..., help="Package name, or name@version"),
    version: str | None = typer.Argument(None, help="Version to scan"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output JSON file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Scan a single package version."""
    _setup_logging(verbose)
    if version is None:
        try:
            key = split_spec(name)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        name, version = key.name, key.version
    asyncio.run(_scan_package(name, version, output))


async def _scan_package(name: str, version: str, output: Path | None) -> None:
    """Async implementation of package."""
    async with ScanPipeline(settings=ScanSettings.from_env()) as pipeline:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task(f"Scanning {name}@{version}...", total=None)
            try:
                scan = await pipeline.scan_package(name, version)
            except PrscanError as e:
                console.print(f"[red]Error: {e}[/red]")
                raise typer.Exit(1)

    result = ScanResult(changed_dependencies=[scan])
    _print_result(result)

    if scan.global_usage:
        usage_table = Table(title="Global Usage", show_header=True)
        usage_table.add_column("Global", style="cyan")
        usage_table.add_column("Access")
        for global_name, mode in sorted(scan.global_usage.items()):
            style = "red" if mode == AccessMode.READ_WRITE else "white"
            usage_table.add_row(global_name, f"[{style}]{mode.value}[/{style}]")
        console.print()
        console.print(usage_table)

    _write_output(result, output)


@app.command()
def version() -> None:
    """Show version information."""
    from prscan import __version__

    console.print(f"prscan v{__version__}")


if __name__ == "__main__":
    app()
