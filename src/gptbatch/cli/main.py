import asyncio
import logging
import typing as t
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from gptbatch.client import GptBatchClient
from gptbatch.config import ClientConfig, resolve_cache_dir
from gptbatch.exceptions import GptBatchError, JobNotCompletedError
from gptbatch.models import Job, JobStatus
from gptbatch.utils.logging import setup_logging

app = typer.Typer(no_args_is_help=True)
jobs_app = typer.Typer(no_args_is_help=True, help="Inspect and cancel batch jobs")
files_app = typer.Typer(no_args_is_help=True, help="Inspect and delete files")
app.add_typer(jobs_app, name="jobs")
app.add_typer(files_app, name="files")

T = t.TypeVar("T")

console = Console()


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("-v", "--verbose", help="Log requests and cache activity")] = False,
):
    """Manage OpenAI batch jobs and read their results"""
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING)


def format_timestamp(value: int | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


def run(operation: t.Callable[[GptBatchClient], t.Awaitable[T]], cache_dir: Path | None = None) -> T:
    """Run ``operation`` against a fresh client, turning library errors into exit codes."""

    async def _main() -> T:
        config = ClientConfig(cache_dir=resolve_cache_dir(path=cache_dir))
        async with GptBatchClient(config=config) as client:
            return await operation(client)

    try:
        return asyncio.run(_main())
    except JobNotCompletedError as error:
        console.print(f"[yellow]{error}[/yellow], retry later")
        raise typer.Exit(2)
    except GptBatchError as error:
        console.print(f"[red]{error}[/red]")
        raise typer.Exit(1)
    except ValueError as error:
        console.print(f"[red]{error}[/red]")
        raise typer.Exit(1)


def print_job(job: Job) -> None:
    job_dict = {
        "ID": job.id,
        "Status": f"[green]{job.status}[/green]",
        "Endpoint": job.endpoint,
        "Input File ID": job.input_file_id,
        "Output File ID": job.output_file_id,
        "Error File ID": job.error_file_id,
        "Created At": format_timestamp(job.created_at),
        "Completed At": format_timestamp(job.completed_at),
    }
    if job.request_counts is not None:
        counts = job.request_counts
        job_dict["Requests"] = f"{counts.completed}/{counts.total} completed, {counts.failed} failed"
    for description in job.error_descriptions():
        job_dict.setdefault("Errors", "")
        job_dict["Errors"] += f"\n  {description}"
    values = "\n".join([f"{key}: {value}" for key, value in job_dict.items()])
    console.print(Panel(values, title=job.id, expand=False, highlight=True))


@jobs_app.command(name="list")
def list_jobs(
    statuses: Annotated[
        t.Optional[t.List[JobStatus]],
        typer.Option(
            "-s",
            "--status",
            help="Only show jobs with this status (repeatable)",
            case_sensitive=False,
        ),
    ] = None,
):
    """List batch jobs"""
    jobs = run(lambda client: client.list_jobs(*(statuses or [])))
    table = Table("ID", "Status", "Input File ID", "Output File ID", "Created At", title="Batches")
    for job in jobs:
        table.add_row(
            job.id,
            job.status,
            job.input_file_id or "-",
            job.output_file_id or "-",
            format_timestamp(job.created_at),
        )
    console.print(table)


@jobs_app.command(name="show")
def show_job(
    job_id: Annotated[str, typer.Argument(help="The id of the batch job")],
):
    """Show a batch job"""
    job = run(lambda client: client.retrieve_job(job_id))
    print_job(job)


@jobs_app.command(name="cancel")
def cancel_job(
    job_id: Annotated[str, typer.Argument(help="The id of the batch job")],
):
    """Cancel a batch job"""
    run(lambda client: client.cancel_job(job_id))
    console.print(f"Batch {job_id} cancelled")


@files_app.command(name="list")
def list_files():
    """List files"""
    files = run(lambda client: client.list_files())
    table = Table("ID", "Filename", "Purpose", "Bytes", "Created At", title="Files")
    for file in files:
        table.add_row(
            file.id,
            file.filename or "-",
            file.purpose or "-",
            str(file.bytes) if file.bytes is not None else "-",
            format_timestamp(file.created_at),
        )
    console.print(table)


@files_app.command(name="delete")
def delete_file(
    file_id: Annotated[str, typer.Argument(help="The id of the file")],
):
    """Delete a file"""
    run(lambda client: client.delete_file(file_id))
    console.print(f"File {file_id} deleted")


@app.command(name="result")
def get_result(
    job_id: Annotated[str, typer.Argument(help="The id of the batch job")],
    ordinal: Annotated[int, typer.Argument(help="Position of the request within the batch")],
    cache_dir: Annotated[
        t.Optional[Path],
        typer.Option(
            "--cache-dir",
            help="Directory caching completed batches and their output files",
            file_okay=False,
        ),
    ] = None,
):
    """Print the answer of one request of a completed batch"""
    content = run(
        lambda client: client.new_batch_session().resolve_result(job_id, ordinal),
        cache_dir=cache_dir,
    )
    typer.echo(content)

