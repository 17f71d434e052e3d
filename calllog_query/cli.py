"""Command-line interface for calllog-query."""

import argparse
import json
import logging
import sys
from typing import List

from rich.console import Console
from rich.table import Table

from .core.engine import QueryEngine
from .models.query_models import AnomalyToggle, SearchQuery
from .settings import QuerySettings
from .storage.call_log_repository import CallLogRepository
from .storage.database import get_database_manager
from .storage.saved_view_store import SavedViewStore

console = Console()


def _scope(value: str) -> List[str]:
    return [f.strip() for f in value.split(",") if f.strip()] or ["all"]


def _cmd_compile(engine: QueryEngine, args) -> int:
    search = SearchQuery(text=args.query, fields=_scope(args.fields), exact_match=args.exact)
    result = engine.compile(search=search, anomaly_toggles=args.anomaly or [])

    if args.json:
        console.print_json(json.dumps([p.to_wire() for p in result.predicates]))
    else:
        table = Table(title=f"Predicates for agent {engine.agent_id}")
        table.add_column("Column", style="cyan")
        table.add_column("Operator", style="magenta")
        table.add_column("Value")
        for predicate in result.predicates:
            table.add_row(predicate.column, predicate.operator, repr(predicate.value))
        console.print(table)

    for rule, error in result.dropped:
        console.print(f"[yellow]Dropped rule {rule.column}:{rule.operation}: {error}[/yellow]")

    if args.count:
        console.print(f"Matching calls: {engine.repository.count(result.predicates)}")
    return 0


def _cmd_fields(engine: QueryEngine, args) -> int:
    fields = engine.discovery.discover(engine.agent_id, sample_size=args.sample_size)
    if not fields:
        console.print("[yellow]Field discovery unavailable; using fixed columns only[/yellow]")
        return 0

    table = Table(title=f"Fields for agent {engine.agent_id}")
    table.add_column("Path", style="cyan")
    table.add_column("Type")
    table.add_column("Category")
    table.add_column("Count", justify="right")
    table.add_column("Unique", justify="right")
    for info in fields:
        table.add_row(info.path, info.type, info.category, str(info.count or 0), str(info.unique_count or 0))
    console.print(table)
    return 0


def _cmd_percentiles(engine: QueryEngine, args) -> int:
    thresholds = engine.percentiles.get_thresholds(engine.agent_id)
    table = Table(title=f"p95 thresholds for agent {engine.agent_id}")
    table.add_column("Signal", style="cyan")
    table.add_column("p95", justify="right")
    table.add_column("Samples", justify="right")
    for toggle in AnomalyToggle:
        value = thresholds.for_toggle(toggle)
        table.add_row(
            toggle.value,
            "n/a" if value is None else f"{value:.2f}",
            str(thresholds.sample_sizes.get(toggle.value, 0)),
        )
    console.print(table)
    return 0


def _cmd_views(engine: QueryEngine, args) -> int:
    views = SavedViewStore().list(engine.agent_id)
    if not views:
        console.print("No saved views")
        return 0
    table = Table(title=f"Saved views for agent {engine.agent_id}")
    table.add_column("Name", style="cyan")
    table.add_column("Groups", justify="right")
    table.add_column("Updated")
    for view in views:
        table.add_row(view.name, str(len(view.filters)), view.updated_at.isoformat() if view.updated_at else "")
    console.print(table)
    return 0


def _cmd_health(engine: QueryEngine, args) -> int:
    health = get_database_manager().health_check()
    if health["status"] != "healthy":
        console.print(f"[red]Database unhealthy: {health.get('error')}[/red]")
        return 1
    stats = health["statistics"]
    console.print(f"[green]Database healthy[/green] ({health['database_url']})")
    console.print(f"Calls: {stats['call_count']}  Saved views: {stats['view_count']}")
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Compile and inspect call-log queries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show the predicates a search compiles to
  calllog-query --agent agent-1 compile 'duration_seconds:>300 refund'

  # Include the duration anomaly filter and count matches
  calllog-query --agent agent-1 compile '' --anomaly duration --count

  # Discover JSON fields from the 200 most recent calls
  calllog-query --agent agent-1 fields --sample-size 200
        """
    )
    parser.add_argument("--agent", required=True, help="Agent id to scope every query to")
    parser.add_argument("--database-url", help="Database URL (defaults to CALLLOG_QUERY_DATABASE_URL)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_parser = subparsers.add_parser("compile", help="Compile a search query into predicates")
    compile_parser.add_argument("query", help="Search text, e.g. 'duration_seconds:>300'")
    compile_parser.add_argument("--fields", default="all", help="Comma-separated search scope")
    compile_parser.add_argument("--exact", action="store_true", help="Exact match for free-text terms")
    compile_parser.add_argument(
        "--anomaly", action="append", choices=[t.value for t in AnomalyToggle],
        help="Enable an anomaly toggle (repeatable)"
    )
    compile_parser.add_argument("--count", action="store_true", help="Count matching calls")
    compile_parser.add_argument("--json", action="store_true", help="Print predicates as JSON")

    fields_parser = subparsers.add_parser("fields", help="Discover queryable fields")
    fields_parser.add_argument("--sample-size", type=int, default=None, help="Calls to sample")

    subparsers.add_parser("percentiles", help="Show anomaly thresholds")
    subparsers.add_parser("views", help="List saved views")
    subparsers.add_parser("health", help="Check the database connection")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = QuerySettings()
    if args.database_url:
        settings = settings.model_copy(update={"database_url": args.database_url})

    commands = {
        "compile": _cmd_compile,
        "fields": _cmd_fields,
        "percentiles": _cmd_percentiles,
        "views": _cmd_views,
        "health": _cmd_health,
    }

    try:
        get_database_manager(settings.database_url, settings=settings)
        engine = QueryEngine(args.agent, CallLogRepository(), settings=settings)
        sys.exit(commands[args.command](engine, args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
