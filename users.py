from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    """Identity and role asserted by a verified access token."""

    id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass
class Student:
    id: int
    name: str
    email: str
    branch: str
    password_hash: str
    created_at: Optional[str] = None
    role: Role = Role.STUDENT

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Student":
        return Student(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            branch=row["branch"],
            password_hash=row["password_hash"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict:
        # The password hash never leaves the store
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "branch": self.branch,
            "role": self.role.value,
            "created_at": self.created_at,
        }


@dataclass
class Admin:
    id: int
    name: str
    email: str
    password_hash: str
    created_at: Optional[str] = None
    role: Role = Role.ADMIN

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Admin":
        return Admin(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            password_hash=row["password_hash"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "created_at": self.created_at,
        }
