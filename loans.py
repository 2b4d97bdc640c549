import sqlite3
from typing import Any, Dict, List, Optional

from database import now_iso, use_connection
from issue import Loan


class LoanTracker:
    """Active loans, one row per issued copy. All rules live in the lifecycle engine."""

    def create(self, student_id: int, book_id: int, request_id: int,
               conn: Optional[sqlite3.Connection] = None) -> Loan:
        with use_connection(conn) as c:
            cursor = c.execute(
                "INSERT INTO issued_books (student_id, book_id, request_id, issue_date) VALUES (?, ?, ?, ?)",
                (student_id, book_id, request_id, now_iso()),
            )
            return self.find_by_id(cursor.lastrowid, conn=c)

    def find_by_id(self, loan_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Loan]:
        with use_connection(conn) as c:
            row = c.execute("SELECT * FROM issued_books WHERE id = ?", (loan_id,)).fetchone()
            return Loan.from_row(row) if row else None

    def find_by_student(self, student_id: int, conn: Optional[sqlite3.Connection] = None) -> List[Dict[str, Any]]:
        """Loans of one student joined with the current book record (None if the book was deleted)."""
        with use_connection(conn) as c:
            rows = c.execute(
                """
                SELECT l.id, l.book_id, l.request_id, l.issue_date, l.return_date,
                       b.title, b.author, b.genre, b.sub_genre, b.publisher, b.height, b.quantity
                FROM issued_books l
                LEFT JOIN books b ON b.id = l.book_id
                WHERE l.student_id = ?
                ORDER BY l.issue_date, l.id
                """,
                (student_id,),
            ).fetchall()

        result = []
        for row in rows:
            book = None
            if row["title"] is not None:
                book = {
                    "id": row["book_id"],
                    "title": row["title"],
                    "author": row["author"],
                    "genre": row["genre"],
                    "sub_genre": row["sub_genre"],
                    "publisher": row["publisher"],
                    "height": row["height"],
                    "quantity": row["quantity"],
                }
            result.append({
                "id": row["id"],
                "request_id": row["request_id"],
                "book": book,
                "issue_date": row["issue_date"],
                "return_date": row["return_date"],
            })
        return result

    def list_detailed(self, conn: Optional[sqlite3.Connection] = None) -> List[Dict[str, Any]]:
        """Every loan with the borrower's name/branch and the book's title/author."""
        with use_connection(conn) as c:
            rows = c.execute(
                """
                SELECT l.id, l.student_id, l.book_id, l.request_id, l.issue_date, l.return_date,
                       s.name AS student_name, s.branch AS student_branch,
                       b.title AS book_title, b.author AS book_author
                FROM issued_books l
                LEFT JOIN students s ON s.id = l.student_id
                LEFT JOIN books b ON b.id = l.book_id
                ORDER BY l.issue_date, l.id
                """
            ).fetchall()
            return [dict(row) for row in rows]

    def delete(self, loan_id: int, conn: Optional[sqlite3.Connection] = None) -> bool:
        with use_connection(conn) as c:
            return c.execute("DELETE FROM issued_books WHERE id = ?", (loan_id,)).rowcount > 0

    def count(self, book_id: Optional[int] = None, conn: Optional[sqlite3.Connection] = None) -> int:
        with use_connection(conn) as c:
            if book_id is None:
                return c.execute("SELECT COUNT(*) FROM issued_books").fetchone()[0]
            return c.execute("SELECT COUNT(*) FROM issued_books WHERE book_id = ?", (book_id,)).fetchone()[0]
