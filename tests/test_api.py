import pytest
from fastapi.testclient import TestClient

import api as api_module
from auth import create_access_token
from config import settings
from users import Principal, Role


@pytest.fixture
def client():
    return TestClient(api_module.app)


def _headers(user) -> dict:
    token = create_access_token(Principal(user.id, user.role))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def student_headers(student):
    return _headers(student)


@pytest.fixture
def admin_headers(admin):
    return _headers(admin)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["db"] is True


def test_root(client):
    assert client.get("/").json() == {"activestatus": True, "error": False}


# --- Accounts ---
def test_signup_and_login_student(client):
    response = client.post("/api/signup", json={
        "name": "Chen Li", "email": "chen@example.com", "password": "pw123",
        "role": "student", "branch": "CSE",
    })
    assert response.status_code == 201

    response = client.post("/api/login", json={"email": "chen@example.com", "password": "pw123", "role": "student"})
    assert response.status_code == 200
    body = response.json()
    assert body["user"]["role"] == "student"

    profile = client.get("/api/profile", headers={"Authorization": f"Bearer {body['token']}"})
    assert profile.status_code == 200
    assert profile.json()["user"]["email"] == "chen@example.com"
    assert "password_hash" not in profile.json()["user"]


def test_signup_admin_requires_admin_key(client):
    payload = {"name": "Root", "email": "root@example.com", "password": "pw", "role": "admin"}

    assert client.post("/api/signup", json={**payload, "adminKey": "wrong"}).status_code == 400
    assert client.post("/api/signup", json={**payload, "adminKey": settings.admin_key}).status_code == 201


def test_signup_invalid_role(client):
    response = client.post("/api/signup", json={"name": "X", "email": "x@example.com", "password": "pw", "role": "guest"})
    assert response.status_code == 400


def test_signup_duplicate_email(client, student):
    response = client.post("/api/signup", json={
        "name": "Asha", "email": "asha@example.com", "password": "pw", "role": "student", "branch": "CSE",
    })
    assert response.status_code == 400


def test_login_failures(client, student):
    wrong = client.post("/api/login", json={"email": "asha@example.com", "password": "nope", "role": "student"})
    unknown = client.post("/api/login", json={"email": "ghost@example.com", "password": "pw", "role": "student"})
    assert wrong.status_code == 401
    assert unknown.status_code == 404


# --- Access gate ---
def test_missing_token_is_401(client):
    assert client.get("/api/issue/requests").status_code == 401


def test_invalid_token_is_401(client):
    response = client.get("/api/issue/requests", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_expired_token_is_401(client, admin):
    token = create_access_token(Principal(admin.id, Role.ADMIN), expires_minutes=-5)
    response = client.get("/api/issue/requests", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_wrong_role_is_403(client, student_headers, admin_headers, book):
    assert client.get("/api/issue/requests", headers=student_headers).status_code == 403
    response = client.post("/api/issue/new/request", headers=admin_headers, json={"bookId": book.id})
    assert response.status_code == 403


# --- Books ---
def test_book_crud(client, admin_headers):
    response = client.post("/api/books/add-book", headers=admin_headers, json={
        "title": "Emma", "author": "Jane Austen", "genre": "fiction", "subGenre": "classic", "quantity": 2,
    })
    assert response.status_code == 201
    book = response.json()
    assert book["sub_genre"] == "classic"
    assert book["quantity"] == 2

    assert client.get(f"/api/books/books/{book['id']}").json()["title"] == "Emma"
    assert len(client.get("/api/books/books").json()) == 1

    response = client.put(f"/api/books/update-book/{book['id']}", headers=admin_headers, json={"publisher": "Murray"})
    assert response.status_code == 200
    assert response.json()["publisher"] == "Murray"
    assert response.json()["title"] == "Emma"

    assert client.delete(f"/api/books/delete-book/{book['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/books/books/{book['id']}").status_code == 404


def test_add_book_requires_admin(client, student_headers):
    response = client.post("/api/books/add-book", headers=student_headers, json={"title": "T", "author": "A"})
    assert response.status_code == 403


def test_add_book_negative_quantity(client, admin_headers):
    response = client.post("/api/books/add-book", headers=admin_headers,
                           json={"title": "T", "author": "A", "quantity": -1})
    assert response.status_code == 422


def test_update_missing_book(client, admin_headers):
    assert client.put("/api/books/update-book/999", headers=admin_headers, json={"title": "X"}).status_code == 404


# --- Issue lifecycle ---
def test_submit_request(client, student_headers, book):
    response = client.post("/api/issue/new/request", headers=student_headers, json={"bookId": book.id})
    assert response.status_code == 201
    request = response.json()["request"]
    assert request["status"] == "Pending"
    assert request["book_title"] == "Dune"
    assert request["student_name"] == "Asha Rao"


def test_submit_duplicate_is_400(client, student_headers, book):
    client.post("/api/issue/new/request", headers=student_headers, json={"bookId": book.id})
    response = client.post("/api/issue/new/request", headers=student_headers, json={"bookId": book.id})
    assert response.status_code == 400
    assert "pending request" in response.json()["detail"]


def test_submit_unknown_book_is_404(client, student_headers):
    response = client.post("/api/issue/new/request", headers=student_headers, json={"bookId": 999})
    assert response.status_code == 404


def test_submit_deleted_student_is_404(client, identity, student, student_headers, book):
    identity.delete_student(student.id)
    response = client.post("/api/issue/new/request", headers=student_headers, json={"bookId": book.id})
    assert response.status_code == 404


def test_approve_and_reject_flow(client, student_headers, admin_headers, book):
    request_id = client.post("/api/issue/new/request", headers=student_headers,
                             json={"bookId": book.id}).json()["request"]["id"]

    response = client.post("/api/issue/approve", headers=admin_headers, json={"requestId": request_id})
    assert response.status_code == 200
    assert response.json()["message"] == "Book 'Dune' has been issued to 'Asha Rao'."

    again = client.post("/api/issue/approve", headers=admin_headers, json={"requestId": request_id})
    assert again.status_code == 400
    assert again.json()["detail"] == "Request already processed"

    reject = client.post("/api/issue/reject", headers=admin_headers, json={"requestId": request_id})
    assert reject.status_code == 400


def test_approve_unknown_request_is_404(client, admin_headers):
    assert client.post("/api/issue/approve", headers=admin_headers, json={"requestId": 77}).status_code == 404


def test_reject(client, student_headers, admin_headers, book):
    request_id = client.post("/api/issue/new/request", headers=student_headers,
                             json={"bookId": book.id}).json()["request"]["id"]

    response = client.post("/api/issue/reject", headers=admin_headers, json={"requestId": request_id})
    assert response.status_code == 200
    assert response.json()["message"] == "Request rejected successfully"

    requests = client.get("/api/issue/requests", headers=admin_headers, params={"status": "Rejected"}).json()
    assert [r["id"] for r in requests] == [request_id]


def test_student_sees_own_requests(client, student_headers, other_student, book):
    client.post("/api/issue/new/request", headers=student_headers, json={"bookId": book.id})
    client.post("/api/issue/new/request", headers=_headers(other_student), json={"bookId": book.id})

    mine = client.get("/api/issue/my-requests", headers=student_headers).json()
    assert len(mine) == 1
    assert mine[0]["student_name"] == "Asha Rao"


def test_cancel_issue_by_owner_and_stranger(client, student_headers, other_student, admin_headers, book):
    request_id = client.post("/api/issue/new/request", headers=student_headers,
                             json={"bookId": book.id}).json()["request"]["id"]
    issue_id = client.post("/api/issue/approve", headers=admin_headers,
                           json={"requestId": request_id}).json()["issue"]["id"]

    stranger = client.post("/api/issue/cancel-issue", headers=_headers(other_student), json={"issueId": issue_id})
    assert stranger.status_code == 403
    assert stranger.json()["detail"] == "You can only cancel your own issued books"

    response = client.post("/api/issue/cancel-issue", headers=student_headers, json={"issueId": issue_id})
    assert response.status_code == 200
    assert client.get(f"/api/books/books/{book.id}").json()["quantity"] == 1

    missing = client.post("/api/issue/cancel-issue", headers=admin_headers, json={"issueId": issue_id})
    assert missing.status_code == 404


def test_cancel_with_deleted_book_is_500(client, engine, catalog, student, admin_headers, book):
    loan = engine.approve_request(engine.submit_request(student.id, book.id).id).loan
    catalog.delete(book.id)

    response = client.post("/api/issue/cancel-issue", headers=admin_headers, json={"issueId": loan.id})
    assert response.status_code == 500
    assert response.json()["detail"] == "Book not found for updating stock"


def test_delete_all(client, engine, student, admin_headers, book):
    empty = client.post("/api/issue/delete-all", headers=admin_headers)
    assert empty.status_code == 404
    assert empty.json()["detail"] == "There is nothing to delete"

    loan = engine.approve_request(engine.submit_request(student.id, book.id).id).loan
    engine.cancel_loan(loan.id)

    response = client.post("/api/issue/delete-all", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["deleted"] == 1


def test_delete_all_refuses_pending(client, admin_headers):
    response = client.post("/api/issue/delete-all", headers=admin_headers, json={"statuses": ["Pending"]})
    assert response.status_code == 400


def test_issued_books_listings(client, engine, student, student_headers, other_student, admin_headers, book):
    engine.approve_request(engine.submit_request(student.id, book.id).id)

    all_loans = client.get("/api/issue/issued-books", headers=admin_headers)
    assert all_loans.status_code == 200
    assert all_loans.json()[0]["student_name"] == "Asha Rao"

    own = client.get("/api/issued-books", headers=student_headers)
    assert own.status_code == 200
    assert own.json()[0]["book"]["title"] == "Dune"

    by_admin = client.get("/api/issued-books", headers=admin_headers, params={"studentId": student.id})
    assert by_admin.status_code == 200

    assert client.get("/api/issued-books", headers=admin_headers).status_code == 400
    assert client.get("/api/issued-books", headers=_headers(other_student)).status_code == 404
    peek = client.get("/api/issued-books", headers=_headers(other_student), params={"studentId": student.id})
    assert peek.status_code == 403


# --- Students ---
def test_student_management(client, admin_headers):
    created = client.post("/api/students", headers=admin_headers, json={
        "name": "Dev", "email": "dev@example.com", "branch": "ME", "password": "pw",
    })
    assert created.status_code == 201
    student_id = created.json()["student"]["id"]

    updated = client.put(f"/api/students/{student_id}", headers=admin_headers, json={"branch": "CSE"})
    assert updated.json()["student"]["branch"] == "CSE"

    assert len(client.get("/api/students", headers=admin_headers).json()["students"]) == 1
    assert client.delete(f"/api/students/{student_id}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/students/{student_id}", headers=admin_headers).status_code == 404


# --- Messages ---
def test_messaging_round_trip(client, student, student_headers, admin_headers):
    sent = client.post("/api/messages/send", headers=student_headers, json={"content": "Need Dune"})
    assert sent.status_code == 201
    message_id = sent.json()["data"]["id"]

    received = client.get("/api/messages/messages", headers=admin_headers).json()["messages"]
    assert [m["content"] for m in received] == ["Need Dune"]

    reply = client.post(f"/api/messages/reply/{message_id}", headers=admin_headers, json={"content": "Next week"})
    assert reply.status_code == 201

    from_admins = client.get("/api/messages/admin-messages", headers=student_headers).json()["messages"]
    assert from_admins[0]["content"] == "Next week"
    assert from_admins[0]["replied_to"] == message_id

    inbox = client.get("/api/messages/inbox", headers=student_headers).json()["messages"]
    assert len(inbox) == 2

    assert client.delete(f"/api/messages/delete/{message_id}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/messages/delete/{message_id}", headers=admin_headers).status_code == 404


def test_messaging_roles(client, student, student_headers, admin_headers):
    assert client.post("/api/messages/send", headers=admin_headers, json={"content": "x"}).status_code == 403
    assert client.post("/api/messages/send-to-all", headers=student_headers, json={"content": "x"}).status_code == 403

    broadcast = client.post("/api/messages/send-to-all", headers=admin_headers, json={"content": "Closed Friday"})
    assert broadcast.json()["recipients"] == 1

    direct = client.post(f"/api/messages/send-to-student/{student.id}", headers=admin_headers, json={"content": "Hi"})
    assert direct.status_code == 201
    unknown = client.post("/api/messages/send-to-student/999", headers=admin_headers, json={"content": "Hi"})
    assert unknown.status_code == 404

    students = client.get("/api/messages/students", headers=student_headers).json()["students"]
    assert students == [{"id": student.id, "name": "Asha Rao"}]


def test_empty_message_is_400(client, student_headers, admin):
    assert client.post("/api/messages/send", headers=student_headers, json={"content": " "}).status_code == 400


# --- Statistics ---
def test_statistics(client, engine, student, admin_headers, book):
    engine.approve_request(engine.submit_request(student.id, book.id).id)

    response = client.get("/api/statistics", headers=admin_headers)
    assert response.status_code == 200
    stats = response.json()
    assert stats["total_books"] == 1
    assert stats["available_copies"] == 0
    assert stats["total_students"] == 1
    assert stats["issued_books"] == 1
    assert stats["active_loans"] == 1
    assert stats["pending_requests"] == 0
