"""Issue-request lifecycle and inventory consistency.

Every state change of an issue request goes through LifecycleEngine:

    Pending --approve--> Approved --cancel_loan--> Returned
       \\--reject--> Rejected

Approving and cancelling touch the request, the loan and the book counter;
each runs inside one database transaction so partial effects are never
visible. The engine trusts the caller's role (see auth.require_role) and never
looks at credentials itself.

Pending requests are not queued: any of them may be approved while copies
remain.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from catalog import CatalogStore
from database import transaction
from errors import Conflict, Forbidden, Inconsistent, NotFound, Unavailable
from identity import IdentityStore
from issue import IssueRequest, Loan, RequestSnapshot, RequestStatus
from ledger import RequestLedger
from loans import LoanTracker

logger = logging.getLogger(__name__)

DEFAULT_PURGE_STATUSES: FrozenSet[RequestStatus] = frozenset({RequestStatus.RETURNED})


@dataclass(frozen=True)
class Approval:
    request: IssueRequest
    loan: Loan
    book_title: str
    student_name: str

    @property
    def message(self) -> str:
        return f"Book '{self.book_title}' has been issued to '{self.student_name}'."


class LifecycleEngine:
    """Sole writer of request status, loan existence and circulation-driven quantity changes."""

    def __init__(self, catalog: Optional[CatalogStore] = None, identity: Optional[IdentityStore] = None,
                 ledger: Optional[RequestLedger] = None, loans: Optional[LoanTracker] = None) -> None:
        self.catalog = catalog or CatalogStore()
        self.identity = identity or IdentityStore()
        self.ledger = ledger or RequestLedger()
        self.loans = loans or LoanTracker()

    # ------------------------- Transitions ------------------------- #
    def submit_request(self, student_id: int, book_id: int) -> IssueRequest:
        """Create a Pending request with a snapshot of the student and book as they are now."""
        with transaction() as conn:
            book = self.catalog.get(book_id, conn=conn)
            if not book:
                raise NotFound("Book not found")
            student = self.identity.get_student(student_id, conn=conn)
            if not student:
                raise NotFound("Student not found")
            if self.ledger.find_pending_for(student_id, book_id, conn=conn):
                raise Conflict("You already have a pending request for this book")

            snapshot = RequestSnapshot(
                student_name=student.name,
                student_branch=student.branch,
                book_title=book.title,
                book_author=book.author,
            )
            request = self.ledger.create(student_id, book_id, snapshot, conn=conn)

        logger.info(f"Request {request.id} submitted: student={student_id} book={book_id}")
        return request

    def approve_request(self, request_id: int) -> Approval:
        """Pending -> Approved, creating the loan and taking one copy off the shelf."""
        with transaction() as conn:
            request = self._require_request(request_id, conn)
            self._check_transition(request, RequestStatus.APPROVED)

            book = self.catalog.get(request.book_id, conn=conn)
            if not book:
                raise NotFound("Book not found")
            if not book.is_available:
                logger.warning(f"Request {request_id} not approved: book {book.id} has no copies left")
                raise Unavailable("Book not available for issue")
            student = self.identity.get_student(request.student_id, conn=conn)
            if not student:
                raise NotFound("Student not found")

            if not self.ledger.update_status(request_id, RequestStatus.APPROVED,
                                             expected=RequestStatus.PENDING, conn=conn):
                raise Conflict("Request already processed")
            loan = self.loans.create(request.student_id, request.book_id, request_id, conn=conn)
            self.catalog.adjust_quantity(book.id, -1, conn=conn)
            approved = self.ledger.find_by_id(request_id, conn=conn)

        logger.info(f"Request {request_id} approved: loan {loan.id}, book {book.id} quantity now {book.quantity - 1}")
        return Approval(request=approved, loan=loan, book_title=book.title, student_name=student.name)

    def reject_request(self, request_id: int) -> IssueRequest:
        """Pending -> Rejected. No inventory effect."""
        with transaction() as conn:
            request = self._require_request(request_id, conn)
            self._check_transition(request, RequestStatus.REJECTED)
            if not self.ledger.update_status(request_id, RequestStatus.REJECTED,
                                             expected=RequestStatus.PENDING, conn=conn):
                raise Conflict("Request already processed")
            rejected = self.ledger.find_by_id(request_id, conn=conn)

        logger.info(f"Request {request_id} rejected")
        return rejected

    def cancel_loan(self, loan_id: int, owner_id: Optional[int] = None) -> IssueRequest:
        """Return an issued copy: Approved -> Returned, loan removed, one copy back on the shelf.

        With owner_id set, only that student's loan may be cancelled (Forbidden otherwise).
        """
        with transaction() as conn:
            loan = self.loans.find_by_id(loan_id, conn=conn)
            if not loan:
                raise NotFound("Issued book not found")
            if owner_id is not None and loan.student_id != owner_id:
                raise Forbidden("You can only cancel your own issued books")

            request = self.ledger.find_by_id(loan.request_id, conn=conn)
            if not request or request.status != RequestStatus.APPROVED:
                raise NotFound("Corresponding issue request not found")

            if not self.catalog.get(loan.book_id, conn=conn):
                logger.error(
                    f"Loan {loan_id} references book {loan.book_id} which no longer exists; "
                    f"inventory cannot be restored"
                )
                raise Inconsistent("Book not found for updating stock")

            if not self.ledger.update_status(request.id, RequestStatus.RETURNED,
                                             expected=RequestStatus.APPROVED, conn=conn):
                raise Conflict("Request already processed")
            self.loans.delete(loan_id, conn=conn)
            book = self.catalog.adjust_quantity(loan.book_id, 1, conn=conn)
            returned = self.ledger.find_by_id(request.id, conn=conn)

        logger.info(f"Loan {loan_id} cancelled: request {request.id} returned, book {book.id} quantity now {book.quantity}")
        return returned

    def purge_finalized(self, statuses: Iterable[RequestStatus] = DEFAULT_PURGE_STATUSES) -> int:
        """Delete requests in the given terminal statuses. Returns how many were removed."""
        targets = {RequestStatus(s) for s in statuses}
        live = [s.value for s in targets if not s.is_terminal]
        if live:
            raise ValueError(f"Only finalized requests can be purged, not {', '.join(sorted(live))}")
        deleted = self.ledger.delete_where_status_in(targets)
        if deleted:
            logger.info(f"Purged {deleted} finalized requests ({', '.join(sorted(s.value for s in targets))})")
        return deleted

    # ------------------------- Reads ------------------------- #
    def list_requests(self, status: Optional[RequestStatus] = None) -> List[IssueRequest]:
        return self.ledger.list(status=status)

    def requests_for_student(self, student_id: int) -> List[IssueRequest]:
        return self.ledger.list(student_id=student_id)

    def list_loans(self) -> List[Dict[str, Any]]:
        return self.loans.list_detailed()

    def loans_for_student(self, student_id: int) -> List[Dict[str, Any]]:
        return self.loans.find_by_student(student_id)

    # ------------------------- Helpers ------------------------- #
    def _require_request(self, request_id: int, conn) -> IssueRequest:
        request = self.ledger.find_by_id(request_id, conn=conn)
        if not request:
            raise NotFound("Request not found")
        return request

    @staticmethod
    def _check_transition(request: IssueRequest, target: RequestStatus) -> None:
        if not request.status.can_transition_to(target):
            logger.warning(f"Request {request.id} is {request.status.value}; cannot move to {target.value}")
            raise Conflict("Request already processed")
