"""CLI entry point for pixle."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from pixle.errors import DiffError, InvalidExpressionError, ScheduleNotFoundError, StorageError
from pixle.models.config import PixleConfig
from pixle.models.test_result import VERDICT_ERROR, VERDICT_FAIL, VERDICT_PASS
from pixle.orchestrator import Orchestrator

console = Console()
logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "pixle.json"

_VERDICT_STYLE = {
    VERDICT_PASS: "green",
    VERDICT_FAIL: "red",
    VERDICT_ERROR: "red",
}


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [RichHandler(console=console, rich_tracebacks=True)]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        handlers.append(file_handler)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


def _parse_locales(value: str) -> list[str]:
    return [locale.strip() for locale in value.split(",") if locale.strip()]


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--config", "-c", default=DEFAULT_CONFIG, envvar="PIXLE_CONFIG",
              show_default=True, help="Config file path")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str) -> None:
    """Scheduled visual regression testing."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["config"] = None
    ctx.obj["config_error"] = None
    if Path(config).exists():
        try:
            ctx.obj["config"] = PixleConfig.load(config)
        except ValueError as e:
            ctx.obj["config_error"] = e

    cfg = ctx.obj["config"]
    setup_logging(verbose, cfg.log_file if cfg else None)
    if ctx.obj["config_error"] is not None:
        logger.debug("Config %s could not be loaded, logging to console only: %s",
                     config, ctx.obj["config_error"])


def _load_orchestrator(ctx: click.Context) -> Orchestrator:
    config_path = ctx.obj["config_path"]
    if ctx.obj["config_error"] is not None:
        console.print(f"[red]Invalid config file {config_path}: {ctx.obj['config_error']}[/red]")
        sys.exit(1)
    if ctx.obj["config"] is None:
        console.print(f"[red]Config file not found: {config_path}[/red]")
        console.print("Run 'pixle init' to create a default config.")
        sys.exit(1)
    return Orchestrator(ctx.obj["config"])


@cli.command()
@click.option("--data-dir", default=".pixle", show_default=True, help="Where schedules, images and results live")
@click.pass_context
def init(ctx: click.Context, data_dir: str) -> None:
    """Create a default configuration file."""
    config_path = Path(ctx.obj["config_path"])
    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    cfg = PixleConfig(data_dir=data_dir)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nAdd a schedule and start the dispatcher:")
    console.print('  [blue]pixle schedule add "https://example.com/{locale}" -l en,fr -e "0 6 * * *"[/blue]')
    console.print("  [blue]pixle serve[/blue]")


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the dispatcher: load schedules and fire them on their cron timers."""
    orchestrator = _load_orchestrator(ctx)
    try:
        orchestrator.serve()
    except KeyboardInterrupt:
        console.print("[yellow]Dispatcher interrupted[/yellow]")
    except StorageError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.group()
def schedule() -> None:
    """Manage test schedules."""
    pass


@schedule.command("add")
@click.argument("url_template")
@click.option("--locales", "-l", required=True, help="Comma-separated locale codes")
@click.option("--cron", "-e", "cron_expression", required=True, help="Cron expression")
@click.pass_context
def schedule_add(ctx: click.Context, url_template: str, locales: str, cron_expression: str) -> None:
    """Register a schedule for URL_TEMPLATE (use {locale} as placeholder)."""
    orchestrator = _load_orchestrator(ctx)
    try:
        created = orchestrator.add_schedule(url_template, _parse_locales(locales), cron_expression)
    except InvalidExpressionError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Schedule set successfully:[/green] {created.id}")


@schedule.command("list")
@click.pass_context
def schedule_list(ctx: click.Context) -> None:
    """List all schedules."""
    orchestrator = _load_orchestrator(ctx)
    schedules = orchestrator.list_schedules()
    if not schedules:
        console.print("[yellow]No schedules configured[/yellow]")
        return

    table = Table(title="Schedules")
    table.add_column("ID", style="bold")
    table.add_column("URL Template")
    table.add_column("Locales")
    table.add_column("Cron")
    table.add_column("Runs", justify="right")
    table.add_column("Last Run")
    table.add_column("State")
    for s in schedules:
        state = "[yellow]Paused[/yellow]" if s.is_paused else "[green]Active[/green]"
        table.add_row(
            s.id, s.url_template, ", ".join(s.locales), s.cron_expression, str(s.run_count),
            s.last_run.strftime("%Y-%m-%d %H:%M:%S") if s.last_run else "N/A", state,
        )
    console.print(table)


@schedule.command("update")
@click.argument("schedule_id")
@click.option("--url", "url_template", default=None, help="New URL template")
@click.option("--locales", "-l", default=None, help="New comma-separated locale codes")
@click.option("--cron", "-e", "cron_expression", default=None, help="New cron expression")
@click.pass_context
def schedule_update(
    ctx: click.Context, schedule_id: str, url_template: Optional[str],
    locales: Optional[str], cron_expression: Optional[str],
) -> None:
    """Change a schedule's URL template, locales or cron expression."""
    orchestrator = _load_orchestrator(ctx)
    try:
        current = orchestrator.get_schedule(schedule_id)
        orchestrator.update_schedule(
            schedule_id,
            url_template or current.url_template,
            _parse_locales(locales) if locales is not None else current.locales,
            cron_expression or current.cron_expression,
        )
    except (InvalidExpressionError, ScheduleNotFoundError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Schedule updated successfully:[/green] {schedule_id}")


@schedule.command("pause")
@click.argument("schedule_id")
@click.pass_context
def schedule_pause(ctx: click.Context, schedule_id: str) -> None:
    """Stop future runs of a schedule."""
    orchestrator = _load_orchestrator(ctx)
    try:
        orchestrator.pause_schedule(schedule_id)
    except ScheduleNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Schedule paused successfully:[/green] {schedule_id}")


@schedule.command("resume")
@click.argument("schedule_id")
@click.pass_context
def schedule_resume(ctx: click.Context, schedule_id: str) -> None:
    """Re-enable a paused schedule."""
    orchestrator = _load_orchestrator(ctx)
    try:
        orchestrator.resume_schedule(schedule_id)
    except ScheduleNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Schedule resumed successfully:[/green] {schedule_id}")


@schedule.command("delete")
@click.argument("schedule_id")
@click.pass_context
def schedule_delete(ctx: click.Context, schedule_id: str) -> None:
    """Remove a schedule."""
    orchestrator = _load_orchestrator(ctx)
    try:
        orchestrator.delete_schedule(schedule_id)
    except ScheduleNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Schedule deleted successfully:[/green] {schedule_id}")


@schedule.command("run")
@click.argument("schedule_id")
@click.pass_context
def schedule_run(ctx: click.Context, schedule_id: str) -> None:
    """Run a schedule immediately and print its results."""
    orchestrator = _load_orchestrator(ctx)
    try:
        results = orchestrator.run_now(schedule_id)
    except ScheduleNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    if results is None:
        console.print("[yellow]A run for this schedule is already in progress[/yellow]")
        return
    _print_results(results, title=f"Run results for {schedule_id}")


@cli.command()
@click.option("--limit", "-n", default=50, show_default=True, help="Maximum results to show")
@click.pass_context
def results(ctx: click.Context, limit: int) -> None:
    """Show recent test results, newest first."""
    orchestrator = _load_orchestrator(ctx)
    _print_results(orchestrator.list_results(limit), title="Test Results")


@cli.command()
@click.option("--days", "-d", type=int, default=None, help="Trailing window in days (default from config)")
@click.pass_context
def trends(ctx: click.Context, days: Optional[int]) -> None:
    """Show daily pass rate and average diff per schedule."""
    orchestrator = _load_orchestrator(ctx)
    series = orchestrator.get_trends(days)
    if not series:
        console.print("[yellow]No results in the selected window[/yellow]")
        return
    for schedule_id, trend in series.items():
        table = Table(title=f"{schedule_id}: {trend.url_template}")
        table.add_column("Date")
        table.add_column("Pass Rate", justify="right")
        table.add_column("Avg Diff", justify="right")
        for day, rate, avg in zip(trend.dates, trend.pass_rates, trend.avg_diff_percentages):
            table.add_row(day, f"{rate:.2f}%", f"{avg:.2f}%" if avg is not None else "N/A")
        console.print(table)


@cli.command()
@click.argument("baseline", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("current", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Write the highlighted diff image here")
@click.pass_context
def diff(ctx: click.Context, baseline: Path, current: Path, output: Optional[Path]) -> None:
    """Compare two local screenshots with the configured diff settings."""
    orchestrator = _load_orchestrator(ctx)
    try:
        result = orchestrator.diff_files(baseline, current)
    except DiffError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    verdict = VERDICT_FAIL if result.diff_percentage > orchestrator.config.diff.fail_percentage else VERDICT_PASS
    style = _VERDICT_STYLE[verdict]
    console.print(
        f"[{style}]{verdict}[/{style}] {result.diff_pixels} differing pixels "
        f"({result.diff_percentage:.2f}%) on a {result.width}x{result.height} canvas"
    )
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(result.diff_image)
        console.print(f"Diff image: [blue]{output}[/blue]")


@cli.command()
@click.argument("name")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), required=True,
              help="Destination file")
@click.pass_context
def image(ctx: click.Context, name: str, output: Path) -> None:
    """Copy a stored image (e.g. diff/<slug>_<stamp>_diff.png) to a file."""
    orchestrator = _load_orchestrator(ctx)
    try:
        data = orchestrator.read_image(name)
    except StorageError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(data)
    console.print(f"[green]Saved {name}[/green] to [blue]{output}[/blue]")


def _print_results(rows, title: str) -> None:
    if not rows:
        console.print("[yellow]No test results[/yellow]")
        return
    table = Table(title=title)
    table.add_column("Date")
    table.add_column("URL")
    table.add_column("Result")
    table.add_column("Status")
    table.add_column("Diff", justify="right")
    for r in rows:
        style = _VERDICT_STYLE.get(r.result, "yellow")
        table.add_row(
            r.test_date.strftime("%Y-%m-%d %H:%M:%S"),
            r.url,
            f"[{style}]{r.result}[/{style}]",
            r.status,
            f"{r.diff_percentage:.2f}%" if r.diff_percentage is not None else "N/A",
        )
    console.print(table)


if __name__ == "__main__":
    cli()
