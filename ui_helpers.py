import json
import os
from typing import Any, Dict, List, Sequence, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_rows(rows: List[Dict[str, Any]], columns: Sequence[Tuple[str, str]], *, title: str, empty: str) -> None:
    """Print dict rows in the current output mode.
    - plain: one ' | '-separated line per row, or the `empty` message
    - json: JSON array of the selected columns
    - rich: Rich table
    """
    if not rows:
        print(empty)
        return

    mode = get_output_mode()
    keys = [key for key, _ in columns]
    if mode == "json":
        print(json.dumps([{k: row.get(k) for k in keys} for row in rows], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for _, label in columns:
            table.add_column(label)
        for row in rows:
            table.add_row(*("" if row.get(k) is None else str(row.get(k)) for k in keys))
        _console.print(table)
    else:
        for row in rows:
            print(" | ".join("-" if row.get(k) is None else str(row.get(k)) for k in keys))


def print_books(books: List[Any]) -> None:
    print_rows(
        [b.to_dict() for b in books],
        [("id", "ID"), ("title", "Title"), ("author", "Author"), ("quantity", "Available")],
        title="📚 Books",
        empty="No books in library.",
    )


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode."""
    if not stats:
        print("No statistics available.")
        return

    mode = get_output_mode()
    labels = {
        "total_books": "Total Books",
        "available_copies": "Available Copies",
        "total_students": "Students",
        "issued_books": "Issued Books",
        "pending_requests": "Pending Requests",
        "returned_requests": "Returned Requests",
        "rejected_requests": "Rejected Requests",
        "active_loans": "Active Loans",
    }
    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")
