from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Optional

from users import Role


@dataclass
class Message:
    id: int
    sender_id: int
    sender_role: Role
    receiver_id: int
    receiver_role: Role
    content: str
    timestamp: str
    is_reply: bool = False
    replied_to: Optional[int] = None

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Message":
        return Message(
            id=row["id"],
            sender_id=row["sender_id"],
            sender_role=Role(row["sender_role"]),
            receiver_id=row["receiver_id"],
            receiver_role=Role(row["receiver_role"]),
            content=row["content"],
            timestamp=row["timestamp"],
            is_reply=bool(row["is_reply"]),
            replied_to=row["replied_to"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "sender_role": self.sender_role.value,
            "receiver_id": self.receiver_id,
            "receiver_role": self.receiver_role.value,
            "content": self.content,
            "is_reply": self.is_reply,
            "replied_to": self.replied_to,
            "timestamp": self.timestamp,
        }
