import os
import subprocess
import sys
from typing import List, Optional

import httpx
import typer
from rich.console import Console

import database
from catalog import CatalogStore
from config import settings
from errors import LibraryError
from identity import IdentityStore
from issue import RequestStatus
from lifecycle import DEFAULT_PURGE_STATUSES, LifecycleEngine
from stats import get_statistics
from ui_helpers import print_books, print_rows, print_stats_result, set_output_mode

APP_NAME = "Library Issue Desk CLI"

console = Console()
app = typer.Typer(help=APP_NAME)


def _engine() -> LifecycleEngine:
    database.initialize_database()
    return LifecycleEngine()


def _fail(message: str) -> None:
    print(f"Error: {message}")
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db_file: Optional[str] = typer.Option(None, "--db", help="SQLite file to operate on"),
):
    """Administrative console for the issue desk. Acts directly on the database."""
    if output:
        set_output_mode(output)
    if db_file:
        database.DATABASE_FILE = db_file


@app.command("init-db")
def cli_init_db():
    """Create the database tables."""
    database.initialize_database()
    print(f"Database initialized at {database.DATABASE_FILE}")


@app.command("create-admin")
def cli_create_admin(
    name: str,
    email: str,
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Create an administrator account."""
    database.initialize_database()
    try:
        admin = IdentityStore().create_admin(name, email, password)
    except (LibraryError, ValueError) as e:
        _fail(str(e))
    print(f"Admin created: #{admin.id} {admin.name} <{admin.email}>")


@app.command("add-book")
def cli_add_book(
    title: str,
    author: str,
    quantity: int = typer.Option(1, "--quantity", "-q", min=0, help="Copies available for issue"),
    genre: Optional[str] = typer.Option(None, "--genre"),
    sub_genre: Optional[str] = typer.Option(None, "--sub-genre"),
    publisher: Optional[str] = typer.Option(None, "--publisher"),
    height: Optional[int] = typer.Option(None, "--height"),
):
    """Add a book to the catalog."""
    database.initialize_database()
    try:
        book = CatalogStore().create(
            title, author, genre=genre, sub_genre=sub_genre, publisher=publisher, height=height, quantity=quantity
        )
    except ValueError as e:
        _fail(str(e))
    print(f"Successfully added: #{book.id} {book.title} by {book.author} ({book.quantity} copies)")


@app.command("import-books")
def cli_import_books(file_path: str):
    """Import books from a JSON array file."""
    database.initialize_database()
    try:
        count = CatalogStore().import_json(file_path)
    except FileNotFoundError:
        _fail(f"File not found: {file_path}")
    except ValueError as e:
        _fail(f"Could not import {file_path}: {e}")
    print(f"Imported {count} books.")


@app.command("list")
def cli_list():
    """List all books with their available copies."""
    database.initialize_database()
    print_books(CatalogStore().list())


@app.command("requests")
def cli_requests(
    status: Optional[RequestStatus] = typer.Option(None, "--status", "-s", case_sensitive=False),
):
    """List issue requests, optionally filtered by status."""
    requests = _engine().list_requests(status=status)
    print_rows(
        [r.to_dict() for r in requests],
        [("id", "ID"), ("student_name", "Student"), ("book_title", "Book"), ("status", "Status"),
         ("created_at", "Requested")],
        title="📝 Issue Requests",
        empty="No issue requests.",
    )


@app.command("loans")
def cli_loans():
    """List books currently issued."""
    print_rows(
        _engine().list_loans(),
        [("id", "ID"), ("student_name", "Student"), ("book_title", "Book"), ("issue_date", "Issued")],
        title="📖 Issued Books",
        empty="No books are currently issued.",
    )


@app.command("approve")
def cli_approve(request_id: int):
    """Approve a pending request and issue the book."""
    try:
        approval = _engine().approve_request(request_id)
    except LibraryError as e:
        _fail(e.message)
    print(approval.message)


@app.command("reject")
def cli_reject(request_id: int):
    """Reject a pending request."""
    try:
        _engine().reject_request(request_id)
    except LibraryError as e:
        _fail(e.message)
    print(f"Request {request_id} rejected.")


@app.command("cancel")
def cli_cancel(loan_id: int):
    """Take back an issued book and mark its request as returned."""
    try:
        request = _engine().cancel_loan(loan_id)
    except LibraryError as e:
        _fail(e.message)
    print(f"Issue {loan_id} cancelled; request {request.id} marked as returned.")


@app.command("purge")
def cli_purge(
    statuses: Optional[List[RequestStatus]] = typer.Option(
        None, "--status", "-s", case_sensitive=False, help="Finalized statuses to delete (repeatable)"
    ),
):
    """Delete finalized requests (Returned by default)."""
    try:
        deleted = _engine().purge_finalized(statuses or DEFAULT_PURGE_STATUSES)
    except ValueError as e:
        _fail(str(e))
    if deleted == 0:
        print("There is nothing to delete.")
        return
    print(f"{deleted} requests deleted.")


@app.command("stats")
def cli_stats():
    """Show circulation statistics."""
    database.initialize_database()
    print_stats_result(get_statistics())


@app.command("health")
def cli_health(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    """Probe a running API server."""
    url = f"http://{host or settings.api_host}:{port or settings.api_port}/health"
    try:
        resp = httpx.get(url, timeout=5.0)
    except httpx.RequestError as e:
        _fail(f"Server unreachable at {url}: {e}")
    if resp.status_code != 200:
        _fail(f"Server answered {resp.status_code}")
    body = resp.json()
    print(f"Server {body.get('status', 'unknown')} (db: {'ok' if body.get('db') else 'down'})")


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the API with Uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
        "--log-level", settings.log_level.lower(),
    ]
    if reload:
        args.append("--reload")
    env = dict(os.environ, LIBRARY_DB_FILE=database.DATABASE_FILE)
    try:
        subprocess.run(args, env=env)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
