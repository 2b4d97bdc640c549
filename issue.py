from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional


class RequestStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    RETURNED = "Returned"

    def can_transition_to(self, target: "RequestStatus") -> bool:
        return target in TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]


# Pending is the only entry point; Rejected and Returned are terminal.
TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED}),
    RequestStatus.APPROVED: frozenset({RequestStatus.RETURNED}),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.RETURNED: frozenset(),
}


@dataclass(frozen=True)
class RequestSnapshot:
    """Student and book details as they were when the request was made."""

    student_name: str
    student_branch: str
    book_title: str
    book_author: str


@dataclass
class IssueRequest:
    id: int
    student_id: int
    book_id: int
    snapshot: RequestSnapshot
    status: RequestStatus
    created_at: str
    updated_at: str

    @staticmethod
    def from_row(row: sqlite3.Row) -> "IssueRequest":
        return IssueRequest(
            id=row["id"],
            student_id=row["student_id"],
            book_id=row["book_id"],
            snapshot=RequestSnapshot(
                student_name=row["student_name"],
                student_branch=row["student_branch"],
                book_title=row["book_title"],
                book_author=row["book_author"],
            ),
            status=RequestStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "book_id": self.book_id,
            "student_name": self.snapshot.student_name,
            "student_branch": self.snapshot.student_branch,
            "book_title": self.snapshot.book_title,
            "book_author": self.snapshot.book_author,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Loan:
    """One physically issued copy. Exists only while the copy is checked out."""

    id: int
    student_id: int
    book_id: int
    request_id: int
    issue_date: str
    return_date: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.return_date is None

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Loan":
        return Loan(
            id=row["id"],
            student_id=row["student_id"],
            book_id=row["book_id"],
            request_id=row["request_id"],
            issue_date=row["issue_date"],
            return_date=row["return_date"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "book_id": self.book_id,
            "request_id": self.request_id,
            "issue_date": self.issue_date,
            "return_date": self.return_date,
        }
