"""tablepipe CLI.

Examples:
    tablepipe run duckdb:source.db sqlite:target.db --query "SELECT * FROM orders" --table orders
    tablepipe run csv:orders.csv pg:user@localhost/shop --table orders --strategy upsert --key id
    tablepipe inspect sqlite:target.db --table orders
"""

import asyncio
from typing import Any, Dict, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from tablepipe.config import PipelineOptions, Profile, WriterOptions, load_profile
from tablepipe.core.engine import PipelineEngine
from tablepipe.core.errors import TablePipeError
from tablepipe.core.progress import LoggingProgressSink, PipelineMetrics
from tablepipe.logging import configure_logging, get_logger, suppress_third_party_loggers
from tablepipe.providers import create_dialect, create_reader, create_writer, parse_location
from tablepipe.schema.inspector import SchemaInspector
from tablepipe.security import sanitize_connection_string

logger = get_logger(__name__)
console = Console()

app = typer.Typer(
    name="tablepipe",
    help="tablepipe - stream tables between databases and files",
    add_completion=False,
)


@app.callback()
def main(
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings and errors"),
) -> None:
    """Stream tabular data from a source into a target table or file."""
    if version:
        from tablepipe import __version__

        console.print(f"tablepipe v{__version__}")
        raise typer.Exit()

    configure_logging(verbose=verbose, quiet=quiet)
    suppress_third_party_loggers()


def _merge_options(
    profile: Optional[Profile],
    table: Optional[str],
    strategy: Optional[str],
    key: Optional[str],
    overrides: Dict[str, Any],
    flags: Dict[str, bool],
) -> Tuple[PipelineOptions, WriterOptions]:
    pipeline = profile.pipeline if profile else PipelineOptions()
    writer = profile.writer if profile else WriterOptions()

    for name, value in overrides.items():
        if value is not None:
            setattr(pipeline, name, value)
    for name, enabled in flags.items():
        if enabled:
            setattr(pipeline, name, True)

    writer = WriterOptions.from_dict(
        {
            "table": table or writer.table,
            "strategy": strategy or writer.strategy,
            "key": key or writer.key,
        }
    )
    return pipeline, writer


def _display_summary(metrics: PipelineMetrics, target: str, table: str) -> None:
    console.print("✅ [bold green]Pipeline completed successfully[/bold green]")
    summary = Table(show_header=True, header_style="bold blue")
    summary.add_column("Metric", style="cyan")
    summary.add_column("Value", style="white", justify="right")
    summary.add_row("Target", f"{sanitize_connection_string(target)} {table}".strip())
    summary.add_row("Rows read", f"{metrics.rows_read:,}")
    for name, count in metrics.transformer_rows.items():
        summary.add_row(f"Rows from {name}", f"{count:,}")
    summary.add_row("Rows written", f"{metrics.rows_written:,}")
    summary.add_row("Batches", f"{metrics.batches_written:,}")
    summary.add_row("Duration", f"{metrics.duration_seconds:.2f}s")
    summary.add_row("Throughput", f"{metrics.rows_per_second:,.0f} rows/s")
    console.print(summary)


@app.command()
def run(
    source: Optional[str] = typer.Argument(None, help="Source, e.g. duckdb:db.duckdb or csv:data.csv"),
    target: Optional[str] = typer.Argument(None, help="Target, e.g. sqlite:out.db or parquet:out.parquet"),
    query: Optional[str] = typer.Option(None, "--query", help="Source query or table name"),
    table: Optional[str] = typer.Option(None, "--table", "-t", help="Target table name"),
    strategy: Optional[str] = typer.Option(
        None,
        "--strategy",
        "-s",
        help="append, truncate, delete_then_insert, recreate, upsert or ignore",
    ),
    key: Optional[str] = typer.Option(None, "--key", "-k", help="Comma-separated key columns"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Rows per batch"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum rows to export (0 = all)"),
    sample_rate: Optional[float] = typer.Option(None, "--sample-rate", help="Fraction of rows to keep"),
    sample_seed: Optional[int] = typer.Option(None, "--sample-seed", help="Seed for reproducible sampling"),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", help="Retries for transient batch failures"),
    pre_exec: Optional[str] = typer.Option(None, "--pre-exec", help="Command run on the target before export"),
    post_exec: Optional[str] = typer.Option(None, "--post-exec", help="Command run on the target after success"),
    on_error_exec: Optional[str] = typer.Option(None, "--on-error-exec", help="Command run on the target after a failure"),
    finally_exec: Optional[str] = typer.Option(None, "--finally-exec", help="Command always run on the target"),
    auto_migrate: bool = typer.Option(False, "--auto-migrate", help="Add columns missing in the target"),
    strict_schema: bool = typer.Option(False, "--strict-schema", help="Fail on schema incompatibilities"),
    no_schema_validation: bool = typer.Option(False, "--no-schema-validation", help="Skip schema validation"),
    metrics_path: Optional[str] = typer.Option(None, "--metrics-path", help="Write run metrics as JSON"),
    profile_path: Optional[str] = typer.Option(None, "--profile", "-p", help="YAML profile with saved options"),
) -> None:
    """Export SOURCE into TARGET."""
    try:
        profile = load_profile(profile_path) if profile_path else None
        source = source or (profile.source if profile else None)
        target = target or (profile.target if profile else None)
        query = query or (profile.query if profile else None)
        if not source or not target:
            console.print("❌ [red]Both SOURCE and TARGET are required[/red]")
            raise typer.Exit(2)

        pipeline_options, writer_options = _merge_options(
            profile,
            table,
            strategy,
            key,
            overrides={
                "batch_size": batch_size,
                "limit": limit,
                "sampling_rate": sample_rate,
                "sampling_seed": sample_seed,
                "max_retries": max_retries,
                "pre_exec": pre_exec,
                "post_exec": post_exec,
                "on_error_exec": on_error_exec,
                "finally_exec": finally_exec,
                "metrics_path": metrics_path,
            },
            flags={
                "auto_migrate": auto_migrate,
                "strict_schema": strict_schema,
                "no_schema_validation": no_schema_validation,
            },
        )
        pipeline_options.validate()

        reader = create_reader(source, query)
        writer = create_writer(target, writer_options)
        engine = PipelineEngine(pipeline_options, [LoggingProgressSink()])
        metrics = asyncio.run(engine.run(reader, [], writer))
        _display_summary(metrics, target, writer_options.table)

    except typer.Exit:
        raise
    except KeyboardInterrupt:
        console.print("⚠️  [yellow]Interrupted[/yellow]")
        raise typer.Exit(130)
    except TablePipeError as e:
        console.print(f"❌ [bold red]{type(e).__name__}[/bold red]: {e.message}")
        logger.debug(f"Error details: {e.to_dict()}")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"❌ [bold red]Pipeline failed[/bold red]: {type(e).__name__}: {e}")
        raise typer.Exit(1)


@app.command()
def inspect(
    target: str = typer.Argument(..., help="SQL target, e.g. sqlite:out.db"),
    table: str = typer.Option(..., "--table", "-t", help="Table to inspect"),
) -> None:
    """Show the physical structure of a target table."""
    try:
        parsed = parse_location(target)
        inspector = SchemaInspector(create_dialect(parsed.provider), parsed.location)
        snapshot = inspector.inspect(table)
    except TablePipeError as e:
        console.print(f"❌ [bold red]{type(e).__name__}[/bold red]: {e.message}")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"❌ [bold red]Inspection failed[/bold red]: {e}")
        raise typer.Exit(1)

    if not snapshot.exists:
        console.print(f"Table [cyan]{table}[/cyan] does not exist")
        raise typer.Exit(1)

    columns = Table(title=table, show_header=True, header_style="bold blue")
    columns.add_column("Column", style="cyan")
    columns.add_column("Native type")
    columns.add_column("Type")
    columns.add_column("Nullable")
    columns.add_column("Key")
    for column in snapshot.columns:
        marker = "PK" if column.primary_key else ("UNIQUE" if column.unique else "")
        columns.add_row(
            column.name,
            column.native_type,
            column.semantic_type.value,
            "yes" if column.nullable else "no",
            marker,
        )
    console.print(columns)
    if snapshot.row_count is not None:
        console.print(f"Rows: [cyan]{snapshot.row_count:,}[/cyan]")
    if snapshot.size_bytes is not None:
        console.print(f"Size: [cyan]{snapshot.size_bytes:,}[/cyan] bytes")


if __name__ == "__main__":
    app()
