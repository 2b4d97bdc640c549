import jwt
import pytest

from auth import authorize, create_access_token, decode_token
from config import settings
from errors import Conflict, Forbidden, NotFound, Unauthorized
from users import Principal, Role


def test_token_round_trip():
    token = create_access_token(Principal(7, Role.STUDENT))

    principal = decode_token(token)

    assert principal == Principal(7, Role.STUDENT)


def test_token_carries_id_role_and_expiry():
    payload = jwt.decode(
        create_access_token(Principal(3, Role.ADMIN)),
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
    )
    assert payload["id"] == 3
    assert payload["role"] == "admin"
    assert "exp" in payload


def test_expired_token_is_rejected():
    token = create_access_token(Principal(1, Role.STUDENT), expires_minutes=-1)

    with pytest.raises(Unauthorized, match="expired"):
        decode_token(token)


def test_tampered_token_is_rejected():
    token = jwt.encode({"id": 1, "role": "admin"}, "not-the-secret", algorithm="HS256")

    with pytest.raises(Unauthorized):
        decode_token(token)


def test_token_with_unknown_role_is_rejected():
    token = jwt.encode({"id": 1, "role": "librarian"}, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

    with pytest.raises(Unauthorized):
        decode_token(token)


def test_authorize_checks_role():
    student = Principal(1, Role.STUDENT)

    assert authorize(student, Role.STUDENT, Role.ADMIN) is student
    with pytest.raises(Forbidden):
        authorize(student, Role.ADMIN)


def test_passwords_are_hashed(identity, student):
    assert student.password_hash != "secret-a"
    assert student.password_hash.startswith("$2")


def test_authenticate(identity, student, admin):
    assert identity.authenticate("asha@example.com", "secret-a", Role.STUDENT).id == student.id
    assert identity.authenticate("admin@example.com", "admin-pass", Role.ADMIN).id == admin.id

    with pytest.raises(Unauthorized):
        identity.authenticate("asha@example.com", "wrong", Role.STUDENT)
    with pytest.raises(NotFound):
        # Students and admins live in separate tables
        identity.authenticate("asha@example.com", "secret-a", Role.ADMIN)


def test_duplicate_email(identity, student):
    with pytest.raises(Conflict):
        identity.create_student("Other", "ASHA@example.com", "ME", "pw")


def test_update_student_rehashes_password(identity, student):
    identity.update_student(student.id, password="new-secret", branch="IT")

    updated = identity.authenticate("asha@example.com", "new-secret", Role.STUDENT)
    assert updated.branch == "IT"
    assert updated.name == "Asha Rao"
