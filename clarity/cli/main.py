"""
CLI interface for Clarity.

Provides command-line access to ingestion and analytics.
"""

import json
import os
import sys
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterator, List, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from clarity.config.loader import CONFIG_ENV_VAR, DatabaseConfig, Settings, load_settings
from clarity.core.dispatch import SideEffectDispatcher
from clarity.core.pricing import CostModel
from clarity.core.submission import TraceSubmission
from clarity.demo.seed_demo_data import seed_demo_traces
from clarity.errors import ClarityError, ValidationError
from clarity.events.publisher import LoggingEventPublisher
from clarity.logging_config import configure_logging
from clarity.services.analytics_service import AnalyticsService
from clarity.services.trace_service import BatchResult, TraceService
from clarity.storage.repository import SQLiteTraceRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DB_OPTION = typer.Option(None, "--db", help="Path to the SQLite database")
ORG_OPTION = typer.Option(..., "--org", "-o", help="Organization ID")
PROJECT_OPTION = typer.Option(None, "--project", "-p", help="Filter to a project")


def _range_option(default: str):
    return typer.Option(default, "--range", "-r", help="Time range, e.g. 1h, 24h, 7d, 30d, 90d")


def _load_settings(db: Optional[str]) -> Settings:
    """Load settings from CLARITY_CONFIG, with --db taking precedence."""
    settings = load_settings(os.environ.get(CONFIG_ENV_VAR))
    configure_logging(settings.logging.level)
    if db:
        settings = replace(settings, database=DatabaseConfig(path=db))
    return settings


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Print failures in red and exit non-zero."""
    try:
        yield
    except ClarityError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Configuration error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)


@contextmanager
def _trace_service(settings: Settings) -> Iterator[TraceService]:
    """A TraceService whose side effects are drained before returning."""
    initialize_schema(settings.database.path)
    dispatcher = SideEffectDispatcher(workers=settings.dispatch.workers, queue_size=settings.dispatch.queue_size)
    try:
        yield TraceService(
            SQLiteTraceRepository(settings.database.path),
            cost_model=CostModel(settings.pricing),
            dispatcher=dispatcher,
            event_publisher=LoggingEventPublisher(),
            ingestion=settings.ingestion,
        )
    finally:
        dispatcher.shutdown(wait=True)


def _analytics(settings: Settings) -> AnalyticsService:
    return AnalyticsService(SQLiteTraceRepository(settings.database.path))


def _format_currency(amount: float) -> str:
    return f"${amount:,.4f}"


def _format_change(percent: float) -> str:
    return f"{'+' if percent >= 0 else ''}{percent:,.1f}%"


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Clarity: LLM trace ingestion and analytics."""
    if ctx.invoked_subcommand is None:
        console.print("Clarity - Use --help to see available commands")


@app.command()
def init(db: Optional[str] = DB_OPTION):
    """Initialize the Clarity database."""
    with _handle_errors():
        settings = _load_settings(db)
        initialize_schema(settings.database.path)
        console.print(f"[green]✓[/] Database initialized at {settings.database.path}")


def _read_payloads(file: Path) -> List[Any]:
    """Read one trace object, a list of traces or {"traces": [...]}.

    Items are returned undecoded so a batch can reject them one by one.
    """
    try:
        with open(file, 'r', encoding='utf-8') as f:
            payload = json.load(f)
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON in {file}: {e}")
    if isinstance(payload, dict) and "traces" in payload:
        payload = payload["traces"]
    if isinstance(payload, list):
        return payload
    return [payload]


def _print_batch(result: BatchResult) -> None:
    console.print(f"[green]Accepted:[/] {result.accepted}  [red]Rejected:[/] {result.rejected}")
    for error in result.errors:
        console.print(f"  [yellow]{escape(error)}[/]")


@app.command()
def ingest(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file with one or more traces"),
    db: Optional[str] = DB_OPTION,
):
    """Ingest traces from a JSON file."""
    with _handle_errors():
        settings = _load_settings(db)
        payloads = _read_payloads(file)
        with _trace_service(settings) as service:
            if len(payloads) == 1:
                accepted = service.create_trace(TraceSubmission.from_dict(payloads[0]))
                console.print(
                    f"[green]✓[/] Trace {accepted.trace_id} accepted "
                    f"({accepted.trace_status}, {accepted.total_tokens} tokens, "
                    f"{_format_currency(accepted.total_cost)})"
                )
                return
            result = service.create_batch(payloads)
        _print_batch(result)
        if result.rejected:
            sys.exit(EXIT_CODE_FAIL)


@app.command()
def trace(trace_id: str = typer.Argument(..., help="Trace ID"), db: Optional[str] = DB_OPTION):
    """Show one trace with its spans."""
    with _handle_errors():
        settings = _load_settings(db)
        service = TraceService(SQLiteTraceRepository(settings.database.path), ingestion=settings.ingestion)
        found = service.get_trace(trace_id)

    console.print(f"\n[bold]Trace {found.trace_id}[/bold]")
    console.print(f"Organization: {found.organization_id}  Project: {found.project_id or '-'}")
    console.print(f"Type: {found.trace_type}  Status: {found.status}  Model: {found.provider}/{found.model}")
    console.print(
        f"Tokens: {found.total_tokens}  Cost: {_format_currency(found.total_cost)}  "
        f"Duration: {found.duration_ms}ms"
    )

    table = Table(title="Spans")
    table.add_column("Name")
    table.add_column("Model")
    table.add_column("Status")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Duration", justify="right")
    for span in found.spans:
        table.add_row(
            span.name,
            f"{span.provider}/{span.model}",
            span.status,
            str(span.total_tokens),
            _format_currency(span.cost),
            f"{span.duration_ms}ms",
        )
    console.print(table)


@app.command()
def dashboard(
    org: str = ORG_OPTION,
    project: Optional[str] = PROJECT_OPTION,
    range_: str = _range_option("24h"),
    db: Optional[str] = DB_OPTION,
):
    """Show dashboard statistics, trends and insights."""
    with _handle_errors():
        settings = _load_settings(db)
        stats = _analytics(settings).get_dashboard(org, range_, project_id=project)

    console.print(f"\n[bold]Dashboard ({range_})[/bold]")
    console.print("-" * 40)
    console.print(f"Traces: {stats.total_traces} ({_format_change(stats.trends.traces)})")
    console.print(f"Cost: {_format_currency(stats.total_cost)} ({_format_change(stats.trends.cost)})")
    console.print(f"Tokens: {stats.total_tokens:,} ({_format_change(stats.trends.tokens)})")
    console.print(f"Avg latency: {stats.avg_latency:,.0f}ms ({_format_change(stats.trends.latency)})")
    console.print(f"Error rate: {stats.error_rate:.2f}%  Success rate: {stats.success_rate:.2f}%")

    if stats.top_models:
        table = Table(title="Top models")
        table.add_column("Model")
        table.add_column("Calls", justify="right")
        table.add_column("Cost", justify="right")
        for model in stats.top_models:
            table.add_row(model.model, str(model.count), _format_currency(model.cost))
        console.print(table)

    for insight in stats.insights:
        console.print(f"[bold]{insight.title}[/bold] ({insight.severity.value}) {escape(insight.description)}")


@app.command()
def costs(
    org: str = ORG_OPTION,
    project: Optional[str] = PROJECT_OPTION,
    range_: str = _range_option("30d"),
    db: Optional[str] = DB_OPTION,
):
    """Show cost breakdown and a 30-day projection."""
    with _handle_errors():
        settings = _load_settings(db)
        analysis = _analytics(settings).get_cost_analysis(org, range_, project_id=project)

    console.print(f"\n[bold]Cost analysis ({range_})[/bold]")
    console.print(f"Total cost: {_format_currency(analysis.total_cost)}")
    console.print(f"Daily average: {_format_currency(analysis.daily_average)}")
    console.print(f"Monthly projection: {_format_currency(analysis.monthly_projection)}")
    if analysis.most_expensive_model:
        console.print(f"Most expensive model: {analysis.most_expensive_model}")

    table = Table(title="Cost by model")
    table.add_column("Model")
    table.add_column("Calls", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Share", justify="right")
    for item in analysis.cost_breakdown:
        table.add_row(item.model, str(item.total_calls), _format_currency(item.total_cost), f"{item.percentage:.1f}%")
    console.print(table)


@app.command()
def models(
    org: str = ORG_OPTION,
    project: Optional[str] = PROJECT_OPTION,
    range_: str = _range_option("7d"),
    db: Optional[str] = DB_OPTION,
):
    """Compare models by cost, latency and efficiency."""
    with _handle_errors():
        settings = _load_settings(db)
        comparisons = _analytics(settings).get_model_comparison(org, range_, project_id=project)

    if not comparisons:
        console.print("\n[dim]No traces found in this range.[/]")
        return

    table = Table(title=f"Model comparison ({range_})")
    table.add_column("Model")
    table.add_column("Calls", justify="right")
    table.add_column("Avg cost", justify="right")
    table.add_column("Avg latency", justify="right")
    table.add_column("Avg tokens", justify="right")
    table.add_column("Score", justify="right")
    for c in comparisons:
        table.add_row(
            c.model,
            str(c.total_calls),
            _format_currency(c.avg_cost_per_request),
            f"{c.avg_latency_ms:,.0f}ms",
            f"{c.avg_tokens_per_request:,.0f}",
            f"{c.efficiency_score:.3f}",
        )
    console.print(table)


@app.command()
def performance(
    org: str = ORG_OPTION,
    project: Optional[str] = PROJECT_OPTION,
    range_: str = _range_option("24h"),
    db: Optional[str] = DB_OPTION,
):
    """Show latency percentiles and a performance grade."""
    with _handle_errors():
        settings = _load_settings(db)
        report = _analytics(settings).get_performance_metrics(org, range_, project_id=project)

    summary = report.summary
    console.print(f"\n[bold]Performance ({range_})[/bold]")
    console.print(f"Requests: {summary.total_requests}")
    console.print(
        f"Latency p50/p95/p99: {summary.p50_latency_ms:,.0f} / "
        f"{summary.p95_latency_ms:,.0f} / {summary.p99_latency_ms:,.0f} ms"
    )
    console.print(f"Error rate: {summary.error_rate:.2f}%")
    console.print(f"[bold]Grade:[/bold] {report.grade.value}")
    console.print(report.recommendation)


@app.command("seed-demo")
def seed_demo(
    org: str = ORG_OPTION,
    project: Optional[str] = PROJECT_OPTION,
    count: int = typer.Option(50, "--count", "-n", min=1, max=1000, help="Number of traces"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed"),
    db: Optional[str] = DB_OPTION,
):
    """Ingest randomly generated demo traces."""
    with _handle_errors():
        settings = _load_settings(db)
        with _trace_service(settings) as service:
            result = seed_demo_traces(service, org, count=count, project_id=project, seed=seed)
    _print_batch(result)


if __name__ == "__main__":
    app()
