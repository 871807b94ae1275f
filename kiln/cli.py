"""Command-line interface for Kiln.

Commands:
- build: Build every site of a project into its output directory.
- serve: Serve one site with incremental rebuilds and live reload.
"""

from __future__ import annotations

from pathlib import Path

import click

from . import __version__
from .config import load_sites
from .errors import KilnError
from .log import setup_logging
from .report import BuildReport
from .scheduler import Scheduler
from .session import BuildSession


def _echo_report(report: BuildReport) -> None:
    if report.fatal is not None:
        click.echo(click.style(f"{report.site_name}: build failed", fg="red", bold=True), err=True)
        click.echo(click.style(f"  Error: {report.fatal}", fg="white"), err=True)
        return
    for result in report.failed:
        click.echo(click.style(f"  {result.node_id}", fg="yellow") + f": {result.reason}", err=True)
    for result in report.skipped:
        click.echo(click.style(f"  {result.node_id}: skipped ({result.reason})", fg="bright_black"), err=True)
    colour = "green" if report.ok else "red"
    click.echo(click.style(report.summary(), fg=colour))


def _fail(exc: KilnError) -> None:
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    if exc.source_path is not None:
        click.echo(click.style(f"  File: {exc.source_path}", fg="yellow"), err=True)
    click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
    raise SystemExit(1) from None


@click.group()
@click.version_option(version=__version__, prog_name="kiln")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
def cli(verbose: bool):
    """Kiln static site builder."""
    setup_logging(verbose)


@cli.command()
@click.argument("site_root", type=click.Path(file_okay=False, path_type=Path), default=".")
@click.option(
    "-o",
    "--output",
    type=click.Path(file_okay=False, path_type=Path),
    help="Output directory (overrides kiln.yaml output_dir)",
)
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option("-j", "--workers", type=click.IntRange(min=1), help="Number of build workers")
def build(site_root: Path, output: Path | None, drafts: bool, workers: int | None):
    """Build the site(s) under SITE_ROOT."""
    try:
        sites = load_sites(site_root, output_override=output, include_drafts=drafts)
        scheduler = Scheduler(workers or sites[0].workers)
        reports = BuildSession(sites, scheduler=scheduler).build()
    except KilnError as exc:
        _fail(exc)
    for report in reports:
        _echo_report(report)
    if not all(report.ok for report in reports):
        raise SystemExit(1)


@cli.command()
@click.argument("site_root", type=click.Path(file_okay=False, path_type=Path), default=".")
@click.option(
    "-o",
    "--output",
    type=click.Path(file_okay=False, path_type=Path),
    help="Output directory (overrides kiln.yaml output_dir)",
)
@click.option(
    "--site",
    "site_name",
    help="Site to serve and watch in a multi-site project (default: the first)",
)
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option("--host", default="127.0.0.1", show_default=True, help="Address to bind")
@click.option("--port", type=int, help="Port to run the dev server (overrides kiln.yaml)")
@click.option(
    "--ws-port",
    type=int,
    help="Port for the live reload websocket server (overrides kiln.yaml ws_port)",
)
def serve(
    site_root: Path,
    output: Path | None,
    site_name: str | None,
    drafts: bool,
    host: str,
    port: int | None,
    ws_port: int | None,
):
    """Serve one site of SITE_ROOT with live reload, rebuilding on change.

    A multi-site project is served one site per process; run another
    `kiln serve --site NAME` with its own ports for each further site.
    """
    try:
        sites = load_sites(site_root, output_override=output, include_drafts=drafts)
    except KilnError as exc:
        _fail(exc)
    names = [site.name for site in sites]
    if site_name is not None and site_name not in names:
        raise click.ClickException(f"Unknown site '{site_name}'; choose from: {', '.join(names)}")
    selected = next(site for site in sites if site_name in (None, site.name))
    session = BuildSession(
        sites,
        scheduler=Scheduler(selected.workers),
        reload_sites=lambda: load_sites(site_root, output_override=output, include_drafts=drafts),
    )
    try:
        session.watch(selected.name, host=host, port=port, ws_port=ws_port)
    except KilnError as exc:
        _fail(exc)


def main():
    """Entry point for the CLI application."""
    cli()
