import logging
import sqlite3
from typing import List, Optional, Union

import bcrypt

from config import settings
from database import use_connection
from errors import Conflict, NotFound, Unauthorized
from users import Admin, Role, Student

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the table
        return False


class IdentityStore:
    """Student and admin records."""

    # ------------------------- Students ------------------------- #
    def create_student(self, name: str, email: str, branch: str, password: str,
                       conn: Optional[sqlite3.Connection] = None) -> Student:
        if not all(v and v.strip() for v in (name, email, branch, password)):
            raise ValueError("All fields are required")
        with use_connection(conn) as c:
            try:
                cursor = c.execute(
                    "INSERT INTO students (name, email, branch, password_hash) VALUES (?, ?, ?, ?)",
                    (name.strip(), email.strip(), branch.strip(), hash_password(password)),
                )
            except sqlite3.IntegrityError as e:
                raise Conflict("Student with this email already exists") from e
            return self.get_student(cursor.lastrowid, conn=c)

    def get_student(self, student_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Student]:
        with use_connection(conn) as c:
            row = c.execute("SELECT * FROM students WHERE id = ?", (student_id,)).fetchone()
            return Student.from_row(row) if row else None

    def find_student_by_email(self, email: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Student]:
        with use_connection(conn) as c:
            row = c.execute("SELECT * FROM students WHERE email = ?", (email.strip(),)).fetchone()
            return Student.from_row(row) if row else None

    def list_students(self, conn: Optional[sqlite3.Connection] = None) -> List[Student]:
        with use_connection(conn) as c:
            rows = c.execute("SELECT * FROM students ORDER BY name, id").fetchall()
            return [Student.from_row(row) for row in rows]

    def update_student(self, student_id: int, *, name: Optional[str] = None, email: Optional[str] = None,
                       branch: Optional[str] = None, password: Optional[str] = None,
                       conn: Optional[sqlite3.Connection] = None) -> Optional[Student]:
        """Partial update; blank values keep the current ones."""
        with use_connection(conn) as c:
            student = self.get_student(student_id, conn=c)
            if not student:
                return None
            new_name = name.strip() if name and name.strip() else student.name
            new_email = email.strip() if email and email.strip() else student.email
            new_branch = branch.strip() if branch and branch.strip() else student.branch
            new_hash = hash_password(password) if password else student.password_hash
            try:
                c.execute(
                    "UPDATE students SET name = ?, email = ?, branch = ?, password_hash = ? WHERE id = ?",
                    (new_name, new_email, new_branch, new_hash, student_id),
                )
            except sqlite3.IntegrityError as e:
                raise Conflict("Student with this email already exists") from e
            return self.get_student(student_id, conn=c)

    def delete_student(self, student_id: int, conn: Optional[sqlite3.Connection] = None) -> bool:
        with use_connection(conn) as c:
            return c.execute("DELETE FROM students WHERE id = ?", (student_id,)).rowcount > 0

    def count_students(self, conn: Optional[sqlite3.Connection] = None) -> int:
        with use_connection(conn) as c:
            return c.execute("SELECT COUNT(*) FROM students").fetchone()[0]

    # ------------------------- Admins ------------------------- #
    def create_admin(self, name: str, email: str, password: str,
                     conn: Optional[sqlite3.Connection] = None) -> Admin:
        if not all(v and v.strip() for v in (name, email, password)):
            raise ValueError("All fields are required")
        with use_connection(conn) as c:
            try:
                cursor = c.execute(
                    "INSERT INTO admins (name, email, password_hash) VALUES (?, ?, ?)",
                    (name.strip(), email.strip(), hash_password(password)),
                )
            except sqlite3.IntegrityError as e:
                raise Conflict("Admin with this email already exists") from e
            return self.get_admin(cursor.lastrowid, conn=c)

    def get_admin(self, admin_id: int, conn: Optional[sqlite3.Connection] = None) -> Optional[Admin]:
        with use_connection(conn) as c:
            row = c.execute("SELECT * FROM admins WHERE id = ?", (admin_id,)).fetchone()
            return Admin.from_row(row) if row else None

    def find_admin_by_email(self, email: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Admin]:
        with use_connection(conn) as c:
            row = c.execute("SELECT * FROM admins WHERE email = ?", (email.strip(),)).fetchone()
            return Admin.from_row(row) if row else None

    def first_admin(self, conn: Optional[sqlite3.Connection] = None) -> Optional[Admin]:
        with use_connection(conn) as c:
            row = c.execute("SELECT * FROM admins ORDER BY id LIMIT 1").fetchone()
            return Admin.from_row(row) if row else None

    # ------------------------- Lookup by principal ------------------------- #
    def get(self, user_id: int, role: Role) -> Optional[Union[Student, Admin]]:
        return self.get_admin(user_id) if role == Role.ADMIN else self.get_student(user_id)

    def authenticate(self, email: str, password: str, role: Role) -> Union[Student, Admin]:
        user = self.find_admin_by_email(email) if role == Role.ADMIN else self.find_student_by_email(email)
        if not user:
            raise NotFound("User not found")
        if not verify_password(password, user.password_hash):
            logger.warning(f"Failed login for {role.value} {email}")
            raise Unauthorized("Invalid credentials")
        return user
