from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from ..admission import AdmissionFilter
from ..config import AppConfig, dump_config, load_config
from ..errors import BatchValidationError
from ..jobs import JobManager
from ..logging import append_summary_row, configure_logging
from ..models import CandidateFile, ProgressEvent
from ..settings import get_settings
from ..utils import human_size, iter_files

console = Console()

app = typer.Typer(help="Convert HEIC/HEIF photos to PNG locally and bundle them into one ZIP")


def _load_config(path: Path | None) -> AppConfig:
    settings = get_settings()
    configure_logging(
        settings.log_level.upper(),
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    return load_config(path or settings.config_path)


def _read_candidates(paths: list[Path], cfg: AppConfig, *, load: bool = True) -> list[CandidateFile]:
    found = list(iter_files(paths))
    if load:
        AdmissionFilter(cfg).check_count(len(found))
    limit = cfg.runtime.max_file_size_bytes
    return [CandidateFile.from_path(path, max_bytes=limit, load=load) for path in found]


@app.command()
def convert(
    files: list[Path],
    output: Path | None = typer.Option(None, "--output", "-o", help="Archive destination"),
    concurrency: int | None = typer.Option(None, "--concurrency", min=1, help="Parallel workers"),
    fallback: bool | None = typer.Option(
        None, "--fallback/--no-fallback", help="Also accept JPEG input through the bitmap codec"
    ),
    summary_csv: Path | None = typer.Option(None, "--summary-csv", help="Append the batch summary to a CSV file"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    cfg = _load_config(config)
    if fallback is not None:
        cfg.admission.enable_fallback_codec = fallback
    manager = JobManager(cfg)
    try:
        try:
            report = manager.submit(_read_candidates(files, cfg))
        except BatchValidationError as exc:
            console.print(f"[red]Batch rejected[/red]: {exc.code} - {exc}")
            raise typer.Exit(1) from exc
        if not report.accepted:
            console.print("No files to convert.")
            raise typer.Exit()
        for decision in report.rejected:
            console.print(f"[yellow]Skipped[/yellow] {decision.candidate.name}: {decision.reason}")

        with Progress(
            TextColumn("{task.description}"), BarColumn(), MofNCompleteColumn(), console=console
        ) as progress:
            bar = progress.add_task("Converting", total=len(report.accepted))

            def _on_event(event: ProgressEvent) -> None:
                description = event.phase.value.capitalize()
                progress.update(bar, completed=event.completed, description=description)

            manager.subscribe(_on_event)
            manager.start(concurrency=concurrency)
            manager.wait()

        job = manager.job
        if job is None or job.archive_handle is None:
            message = job.error_message if job else "conversion did not finish"
            console.print(f"[red]Conversion failed[/red]: {message}")
            if job and job.summary:
                _print_failures(job.summary.failure_reasons)
            raise typer.Exit(1)

        saved = manager.save_archive(output or Path(cfg.runtime.archive_name))
        summary = job.summary
        assert summary is not None
        table = Table(title="Batch summary")
        table.add_column("File")
        table.add_column("Size")
        for handle in job.item_handles:
            table.add_row(handle.name, human_size(handle.size))
        console.print(table)
        _print_failures(summary.failure_reasons)
        console.print(
            f"Converted {summary.succeeded} of {summary.total_files} file(s), {summary.failed} failed. "
            f"Archive: {saved} ({human_size(job.archive_handle.size)})"
        )
        if summary_csv:
            append_summary_row(summary_csv, summary.as_row(job.job_id))
    finally:
        manager.shutdown()


@app.command()
def check(
    files: list[Path],
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    """Show which inputs would be admitted, without converting anything."""

    cfg = _load_config(config)
    admission = AdmissionFilter(cfg)
    table = Table(title="Admission")
    table.add_column("File")
    table.add_column("Size")
    table.add_column("Type")
    table.add_column("Decision")
    for candidate in _read_candidates(files, cfg, load=False):
        decision = admission.admit(candidate)
        verdict = "[green]accepted[/green]" if decision.accepted else f"[red]{decision.reason}[/red]"
        table.add_row(candidate.name, human_size(candidate.size), candidate.media_type or "-", verdict)
    console.print(table)


@app.command()
def show_config(
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    console.print_json(dump_config(_load_config(config)))


def _print_failures(failures: list[tuple[str, str]]) -> None:
    for name, reason in failures:
        console.print(f"[red]Failed[/red] {name}: {reason}")


if __name__ == "__main__":
    app()
