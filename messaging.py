import logging
import sqlite3
from typing import List, Optional

from database import now_iso, transaction, use_connection
from errors import NotFound
from identity import IdentityStore
from message import Message
from users import Principal, Role

logger = logging.getLogger(__name__)


class MessageBoard:
    """Student <-> admin messages. Delivery is a row in the table; nothing is pushed."""

    def __init__(self, identity: Optional[IdentityStore] = None) -> None:
        self.identity = identity or IdentityStore()

    def _insert(self, conn: sqlite3.Connection, sender: Principal, receiver: Principal, content: str,
                replied_to: Optional[int] = None) -> Message:
        cursor = conn.execute(
            "INSERT INTO messages (sender_id, sender_role, receiver_id, receiver_role, content, "
            "is_reply, replied_to, timestamp) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (sender.id, sender.role.value, receiver.id, receiver.role.value, content,
             int(replied_to is not None), replied_to, now_iso()),
        )
        return self.get(cursor.lastrowid, conn=conn)

    @staticmethod
    def _clean(content: str) -> str:
        if not content or not content.strip():
            raise ValueError("Message content cannot be empty")
        return content.strip()

    def get(self, message_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Message]:
        with use_connection(conn) as c:
            row = c.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
            return Message.from_row(row) if row else None

    # ------------------------- Sending ------------------------- #
    def send_to_admin(self, student_id: int, content: str) -> Message:
        content = self._clean(content)
        with use_connection() as c:
            admin = self.identity.first_admin(conn=c)
            if not admin:
                raise NotFound("No administrator to receive the message")
            return self._insert(c, Principal(student_id, Role.STUDENT), Principal(admin.id, Role.ADMIN), content)

    def reply(self, admin_id: int, message_id: int, content: str) -> Message:
        content = self._clean(content)
        with use_connection() as c:
            original = self.get(message_id, conn=c)
            if not original:
                raise NotFound("Message not found.")
            receiver = Principal(original.sender_id, original.sender_role)
            return self._insert(c, Principal(admin_id, Role.ADMIN), receiver, content, replied_to=original.id)

    def send_to_all(self, admin_id: int, content: str) -> int:
        content = self._clean(content)
        sender = Principal(admin_id, Role.ADMIN)
        with transaction() as c:
            students = self.identity.list_students(conn=c)
            for student in students:
                self._insert(c, sender, Principal(student.id, Role.STUDENT), content)
        logger.info(f"Admin {admin_id} broadcast a message to {len(students)} students")
        return len(students)

    def send_to_student(self, admin_id: int, student_id: int, content: str) -> Message:
        content = self._clean(content)
        with use_connection() as c:
            if not self.identity.get_student(student_id, conn=c):
                raise NotFound("Student not found")
            return self._insert(c, Principal(admin_id, Role.ADMIN), Principal(student_id, Role.STUDENT), content)

    # ------------------------- Reading ------------------------- #
    def inbox(self, principal: Principal) -> List[Message]:
        """Everything the principal sent or received, oldest first."""
        with use_connection() as c:
            rows = c.execute(
                "SELECT * FROM messages "
                "WHERE (sender_id = ? AND sender_role = ?) OR (receiver_id = ? AND receiver_role = ?) "
                "ORDER BY timestamp, id",
                (principal.id, principal.role.value, principal.id, principal.role.value),
            ).fetchall()
            return [Message.from_row(row) for row in rows]

    def received_by(self, principal: Principal) -> List[Message]:
        """Messages addressed to the principal, newest first."""
        with use_connection() as c:
            rows = c.execute(
                "SELECT * FROM messages WHERE receiver_id = ? AND receiver_role = ? "
                "ORDER BY timestamp DESC, id DESC",
                (principal.id, principal.role.value),
            ).fetchall()
            return [Message.from_row(row) for row in rows]

    def delete(self, message_id: int) -> bool:
        with use_connection() as c:
            return c.execute("DELETE FROM messages WHERE id = ?", (message_id,)).rowcount > 0
