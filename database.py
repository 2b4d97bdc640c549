import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from dotenv import load_dotenv

from config import settings

# Make sure .env is loaded before the database file is resolved, regardless of import order.
load_dotenv()

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE (explicit override)
# 2) settings.data_file (LIBRARY_DATA_FILE or library.db)
# Tests replace DATABASE_FILE directly before calling initialize_database().
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or settings.data_file

logger = logging.getLogger(__name__)


def get_db_connection() -> sqlite3.Connection:
    """Open a new connection to the SQLite database.

    Connections run in autocommit mode; multi-statement work goes through
    transaction() which issues BEGIN IMMEDIATE explicitly.
    """
    conn = sqlite3.connect(
        DATABASE_FILE,
        timeout=settings.database_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def use_connection(conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
    """Yield the caller's connection if given, else a short-lived one that is closed afterwards."""
    if conn is not None:
        yield conn
        return
    own = get_db_connection()
    try:
        yield own
    finally:
        own.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run a block as a single all-or-nothing unit.

    BEGIN IMMEDIATE takes the write lock up front, so concurrent writers are
    serialized and every read inside the block sees the state it will modify.
    """
    conn = get_db_connection()
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            # Some SQLite errors (e.g. SQLITE_FULL) already aborted the transaction
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def create_tables() -> None:
    """Create the required tables if they do not exist yet."""
    conn = get_db_connection()
    try:
        # WAL is persistent for the file; readers no longer block the single writer
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                genre TEXT,
                sub_genre TEXT,
                height INTEGER,
                publisher TEXT,
                quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity >= 0),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS students (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                branch TEXT NOT NULL,
                password_hash TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS admins (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                password_hash TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            -- Snapshot columns are written once at creation and never joined back,
            -- so student_id/book_id are plain references without constraints.
            CREATE TABLE IF NOT EXISTS issue_requests (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                student_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                student_name TEXT NOT NULL,
                student_branch TEXT NOT NULL,
                book_title TEXT NOT NULL,
                book_author TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'Pending'
                    CHECK (status IN ('Pending', 'Approved', 'Rejected', 'Returned')),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE UNIQUE INDEX IF NOT EXISTS ux_issue_requests_one_pending
                ON issue_requests (student_id, book_id)
                WHERE status = 'Pending';

            CREATE INDEX IF NOT EXISTS ix_issue_requests_status
                ON issue_requests (status);

            CREATE TABLE IF NOT EXISTS issued_books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                student_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                request_id INTEGER NOT NULL UNIQUE,
                issue_date TEXT NOT NULL,
                return_date TEXT
            );

            CREATE INDEX IF NOT EXISTS ix_issued_books_student
                ON issued_books (student_id);

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sender_id INTEGER NOT NULL,
                sender_role TEXT NOT NULL,
                receiver_id INTEGER NOT NULL,
                receiver_role TEXT NOT NULL,
                content TEXT NOT NULL,
                is_reply INTEGER NOT NULL DEFAULT 0,
                replied_to INTEGER,
                timestamp TEXT NOT NULL
            );
        """)
    finally:
        conn.close()


def initialize_database() -> None:
    """Initialize the database, creating tables when needed."""
    create_tables()
    logger.debug(f"Database ready at {DATABASE_FILE}")


def now_iso() -> str:
    """Current UTC time in the ISO-8601 form stored in TEXT timestamp columns."""
    return datetime.now(timezone.utc).isoformat()
