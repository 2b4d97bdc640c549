import sqlite3
from typing import Dict, Iterable, List, Optional

from database import now_iso, use_connection
from errors import Conflict
from issue import IssueRequest, RequestSnapshot, RequestStatus


class RequestLedger:
    """Issue requests and their status history. Holds no business rules."""

    def create(self, student_id: int, book_id: int, snapshot: RequestSnapshot,
               conn: Optional[sqlite3.Connection] = None) -> IssueRequest:
        now = now_iso()
        with use_connection(conn) as c:
            try:
                cursor = c.execute(
                    "INSERT INTO issue_requests (student_id, book_id, student_name, student_branch, "
                    "book_title, book_author, status, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (student_id, book_id, snapshot.student_name, snapshot.student_branch,
                     snapshot.book_title, snapshot.book_author, RequestStatus.PENDING.value, now, now),
                )
            except sqlite3.IntegrityError as e:
                # Partial unique index on (student_id, book_id) WHERE status = 'Pending'
                raise Conflict("You already have a pending request for this book") from e
            return self.find_by_id(cursor.lastrowid, conn=c)

    def find_by_id(self, request_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[IssueRequest]:
        with use_connection(conn) as c:
            row = c.execute("SELECT * FROM issue_requests WHERE id = ?", (request_id,)).fetchone()
            return IssueRequest.from_row(row) if row else None

    def find_pending_for(self, student_id: int, book_id: int,
                         conn: Optional[sqlite3.Connection] = None) -> Optional[IssueRequest]:
        with use_connection(conn) as c:
            row = c.execute(
                "SELECT * FROM issue_requests WHERE student_id = ? AND book_id = ? AND status = ?",
                (student_id, book_id, RequestStatus.PENDING.value),
            ).fetchone()
            return IssueRequest.from_row(row) if row else None

    def list(self, status: Optional[RequestStatus] = None, student_id: Optional[int] = None,
             conn: Optional[sqlite3.Connection] = None) -> List[IssueRequest]:
        clauses, params = [], []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if student_id is not None:
            clauses.append("student_id = ?")
            params.append(student_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with use_connection(conn) as c:
            rows = c.execute(f"SELECT * FROM issue_requests {where} ORDER BY created_at, id", params).fetchall()
            return [IssueRequest.from_row(row) for row in rows]

    def update_status(self, request_id: int, new_status: RequestStatus, expected: RequestStatus,
                      conn: Optional[sqlite3.Connection] = None) -> bool:
        """Compare-and-set the status. Returns False if the request is gone or no longer `expected`."""
        with use_connection(conn) as c:
            cursor = c.execute(
                "UPDATE issue_requests SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (new_status.value, now_iso(), request_id, expected.value),
            )
            return cursor.rowcount == 1

    def delete_where_status_in(self, statuses: Iterable[RequestStatus],
                               conn: Optional[sqlite3.Connection] = None) -> int:
        values = [RequestStatus(s).value for s in statuses]
        if not values:
            return 0
        placeholders = ", ".join("?" for _ in values)
        with use_connection(conn) as c:
            cursor = c.execute(f"DELETE FROM issue_requests WHERE status IN ({placeholders})", values)
            return cursor.rowcount

    def count_by_status(self, conn: Optional[sqlite3.Connection] = None) -> Dict[RequestStatus, int]:
        counts = {status: 0 for status in RequestStatus}
        with use_connection(conn) as c:
            for row in c.execute("SELECT status, COUNT(*) AS n FROM issue_requests GROUP BY status"):
                counts[RequestStatus(row["status"])] = row["n"]
        return counts
