import json
import logging
import os
import sqlite3
from typing import Any, Dict, List, Optional

from book import Book
from database import transaction, use_connection
from errors import NotFound, Unavailable

logger = logging.getLogger(__name__)

BOOK_COLUMNS = "id, title, author, genre, sub_genre, height, publisher, quantity, created_at"
EDITABLE_FIELDS = ("title", "author", "genre", "sub_genre", "height", "publisher", "quantity")


class CatalogStore:
    """Book records and their copy-availability counters."""

    # ------------------------- Core operations ------------------------- #
    def create(self, title: str, author: str, *, genre: Optional[str] = None,
               sub_genre: Optional[str] = None, height: Optional[int] = None,
               publisher: Optional[str] = None, quantity: int = 1,
               conn: Optional[sqlite3.Connection] = None) -> Book:
        if not isinstance(title, str) or not isinstance(author, str):
            raise ValueError("Title and author must be text.")
        if not title.strip() or not author.strip():
            raise ValueError("Title and author are required.")
        if quantity < 0:
            raise ValueError("Quantity cannot be negative.")

        with use_connection(conn) as c:
            cursor = c.execute(
                "INSERT INTO books (title, author, genre, sub_genre, height, publisher, quantity) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (title.strip(), author.strip(), genre, sub_genre, height, publisher, quantity),
            )
            return self.get(cursor.lastrowid, conn=c)

    def get(self, book_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Book]:
        with use_connection(conn) as c:
            row = c.execute(f"SELECT {BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
            return Book.from_dict(dict(row)) if row else None

    def list(self, conn: Optional[sqlite3.Connection] = None) -> List[Book]:
        with use_connection(conn) as c:
            rows = c.execute(f"SELECT {BOOK_COLUMNS} FROM books ORDER BY title, id").fetchall()
            return [Book.from_dict(dict(row)) for row in rows]

    def update(self, book_id: int, conn: Optional[sqlite3.Connection] = None, **fields: Any) -> Optional[Book]:
        """Update the given catalog fields. Returns the updated book or None if not found."""
        changes = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS and v is not None}
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown book fields: {', '.join(sorted(unknown))}")
        if "quantity" in changes and changes["quantity"] < 0:
            raise ValueError("Quantity cannot be negative.")
        for key in ("title", "author"):
            if key in changes:
                changes[key] = changes[key].strip()
                if not changes[key]:
                    raise ValueError(f"{key.capitalize()} cannot be empty.")

        with use_connection(conn) as c:
            if not changes:
                return self.get(book_id, conn=c)
            assignments = ", ".join(f"{key} = ?" for key in changes)
            cursor = c.execute(
                f"UPDATE books SET {assignments} WHERE id = ?",
                (*changes.values(), book_id),
            )
            if cursor.rowcount == 0:
                return None
            return self.get(book_id, conn=c)

    def delete(self, book_id: int, conn: Optional[sqlite3.Connection] = None) -> bool:
        with use_connection(conn) as c:
            cursor = c.execute("DELETE FROM books WHERE id = ?", (book_id,))
            return cursor.rowcount > 0

    def adjust_quantity(self, book_id: int, delta: int, conn: Optional[sqlite3.Connection] = None) -> Book:
        """Add delta to the available copies, refusing to go below zero.

        The check and the write are one UPDATE statement, so two callers can never
        both take the last copy.
        """
        with use_connection(conn) as c:
            cursor = c.execute(
                "UPDATE books SET quantity = quantity + ? WHERE id = ? AND quantity + ? >= 0",
                (delta, book_id, delta),
            )
            book = self.get(book_id, conn=c)
            if book is None:
                raise NotFound("Book not found")
            if cursor.rowcount == 0:
                raise Unavailable("Book not available for issue")
            return book

    # ------------------------- Bulk import ------------------------- #
    def import_json(self, path: str) -> int:
        """Load books from a JSON array of objects. Returns the number of books inserted.

        Entries without a text title or author are skipped. The file is loaded in one
        transaction: if any entry is invalid nothing is inserted.
        """
        if not os.path.exists(path):
            raise FileNotFoundError(path)

        with open(path, "r", encoding="utf-8") as f:
            data: List[Dict[str, Any]] = json.load(f)
        if not isinstance(data, list):
            raise ValueError("Expected a JSON array of books.")

        inserted = 0
        with transaction() as c:
            for item in data:
                if (not isinstance(item, dict)
                        or not isinstance(item.get("title"), str) or not item["title"].strip()
                        or not isinstance(item.get("author"), str) or not item["author"].strip()):
                    logger.warning(f"Skipping catalog entry without title/author: {item!r}")
                    continue
                try:
                    quantity = int(item.get("quantity", 1))
                except (TypeError, ValueError):
                    raise ValueError(f"Invalid quantity for '{item['title']}': {item.get('quantity')!r}")
                self.create(
                    item["title"],
                    item["author"],
                    genre=item.get("genre"),
                    sub_genre=item.get("sub_genre", item.get("subGenre")),
                    height=item.get("height"),
                    publisher=item.get("publisher"),
                    quantity=quantity,
                    conn=c,
                )
                inserted += 1
        logger.info(f"Imported {inserted} books from {path}")
        return inserted
