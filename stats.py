from typing import Any, Dict

from database import use_connection
from identity import IdentityStore
from issue import RequestStatus
from ledger import RequestLedger
from loans import LoanTracker


def get_statistics() -> Dict[str, Any]:
    """Dashboard counters for administrators."""
    with use_connection() as conn:
        total_books, available_copies = conn.execute(
            "SELECT COUNT(*), COALESCE(SUM(quantity), 0) FROM books"
        ).fetchone()
        by_status = RequestLedger().count_by_status(conn=conn)
        return {
            "total_books": total_books,
            "available_copies": available_copies,
            "total_students": IdentityStore().count_students(conn=conn),
            "issued_books": by_status[RequestStatus.APPROVED],
            "pending_requests": by_status[RequestStatus.PENDING],
            "returned_requests": by_status[RequestStatus.RETURNED],
            "rejected_requests": by_status[RequestStatus.REJECTED],
            "active_loans": LoanTracker().count(conn=conn),
        }
