import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from auth import create_access_token, get_current_principal, require_role
from catalog import CatalogStore
from config import settings
from database import get_db_connection, initialize_database
from errors import Conflict, Forbidden, Inconsistent, LibraryError, NotFound, Unauthorized, Unavailable
from identity import IdentityStore
from issue import RequestStatus
from lifecycle import DEFAULT_PURGE_STATUSES, LifecycleEngine
from messaging import MessageBoard
from stats import get_statistics
from users import Principal, Role

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

catalog = CatalogStore()
identity = IdentityStore()
engine = LifecycleEngine(catalog=catalog, identity=identity)
board = MessageBoard(identity=identity)

student_only = require_role(Role.STUDENT)
admin_only = require_role(Role.ADMIN)
any_role = require_role(Role.STUDENT, Role.ADMIN)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Make sure the schema exists before serving
    initialize_database()
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    # Loan and request state changes constantly; never let a proxy cache it
    if request.url.path.startswith("/api/"):
        response.headers["Cache-Control"] = "no-store"
    return response


# --- Error mapping ---
ERROR_STATUS_CODES = {
    NotFound: 404,
    Conflict: 400,
    Unavailable: 400,
    Unauthorized: 401,
    Forbidden: 403,
    Inconsistent: 500,
}


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    status_code = next((code for cls, code in ERROR_STATUS_CODES.items() if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


# --- Models ---
class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class BookModel(BaseModel):
    id: int
    title: str
    author: str
    genre: str | None = None
    sub_genre: str | None = None
    publisher: str | None = None
    height: int | None = None
    quantity: int
    created_at: str | None = None


class BookCreateModel(_CamelModel):
    title: str
    author: str
    genre: str | None = None
    sub_genre: str | None = Field(default=None, alias="subGenre")
    height: int | None = None
    publisher: str | None = None
    quantity: int = Field(default=1, ge=0, description="Copies available for issue")


class BookUpdateModel(_CamelModel):
    title: str | None = None
    author: str | None = None
    genre: str | None = None
    sub_genre: str | None = Field(default=None, alias="subGenre")
    height: int | None = None
    publisher: str | None = None
    quantity: int | None = Field(default=None, ge=0)


class SignupModel(_CamelModel):
    name: str
    email: str
    password: str
    role: str
    branch: str | None = None
    admin_key: str | None = Field(default=None, alias="adminKey")


class LoginModel(BaseModel):
    email: str
    password: str
    role: Role = Role.STUDENT


class StudentCreateModel(BaseModel):
    name: str
    email: str
    branch: str
    password: str


class StudentUpdateModel(BaseModel):
    name: str | None = None
    email: str | None = None
    branch: str | None = None
    password: str | None = None


class IssueRequestModel(_CamelModel):
    book_id: int = Field(alias="bookId")


class RequestActionModel(_CamelModel):
    request_id: int = Field(alias="requestId")


class CancelIssueModel(_CamelModel):
    issue_id: int = Field(alias="issueId")


class PurgeModel(BaseModel):
    statuses: List[RequestStatus] = Field(default_factory=lambda: sorted(DEFAULT_PURGE_STATUSES))


class MessageModel(BaseModel):
    content: str


class StatsModel(BaseModel):
    total_books: int
    available_copies: int
    total_students: int
    issued_books: int
    pending_requests: int
    returned_requests: int
    rejected_requests: int
    active_loans: int


# --- Health ---
@app.get("/health")
def health():
    """Lightweight health probe: checks the database answers."""
    db_ok = True
    try:
        conn = get_db_connection()
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except Exception:
        logger.exception("Health check could not reach the database")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "version": settings.app_version,
    }


@app.get("/")
def read_root():
    return {"activestatus": True, "error": False}


# --- Accounts ---
@app.post("/api/signup", status_code=201)
def signup(payload: SignupModel):
    """Register a student, or an admin when the admin key matches."""
    try:
        if payload.role == Role.ADMIN.value:
            if payload.admin_key != settings.admin_key:
                raise HTTPException(status_code=400, detail="Invalid admin key")
            identity.create_admin(payload.name, payload.email, payload.password)
            return {"message": "Admin created successfully!"}
        if payload.role == Role.STUDENT.value:
            if not payload.branch:
                raise HTTPException(status_code=400, detail="Branch is required for students")
            identity.create_student(payload.name, payload.email, payload.branch, payload.password)
            return {"message": "Student created successfully!"}
    except Conflict:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    raise HTTPException(status_code=400, detail="Invalid role")


@app.post("/api/login")
def login(payload: LoginModel):
    user = identity.authenticate(payload.email, payload.password, payload.role)
    token = create_access_token(Principal(user.id, user.role))
    return {"message": "Login successful", "token": token, "user": {"id": user.id, "role": user.role.value}}


@app.get("/api/profile")
def profile(principal: Principal = Depends(get_current_principal)):
    user = identity.get(principal.id, principal.role)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": user.to_dict()}


@app.get("/api/students")
def list_students(principal: Principal = Depends(admin_only)):
    return {"students": [s.to_dict() for s in identity.list_students()]}


@app.post("/api/students", status_code=201)
def add_student(payload: StudentCreateModel, principal: Principal = Depends(admin_only)):
    try:
        student = identity.create_student(payload.name, payload.email, payload.branch, payload.password)
    except Conflict:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "Student added successfully!", "student": student.to_dict()}


@app.put("/api/students/{student_id}")
def update_student(student_id: int, payload: StudentUpdateModel, principal: Principal = Depends(admin_only)):
    student = identity.update_student(
        student_id, name=payload.name, email=payload.email, branch=payload.branch, password=payload.password
    )
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return {"message": "Student updated successfully!", "student": student.to_dict()}


@app.delete("/api/students/{student_id}")
def delete_student(student_id: int, principal: Principal = Depends(admin_only)):
    if not identity.delete_student(student_id):
        raise HTTPException(status_code=404, detail="Student not found")
    return {"message": "Student deleted successfully!"}


# --- Books ---
@app.post("/api/books/add-book", response_model=BookModel, status_code=201)
def add_book(payload: BookCreateModel, principal: Principal = Depends(admin_only)):
    try:
        book = catalog.create(
            payload.title,
            payload.author,
            genre=payload.genre,
            sub_genre=payload.sub_genre,
            height=payload.height,
            publisher=payload.publisher,
            quantity=payload.quantity,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return BookModel(**book.to_dict())


@app.get("/api/books/books", response_model=List[BookModel])
def list_books():
    return [BookModel(**b.to_dict()) for b in catalog.list()]


@app.get("/api/books/books/{book_id}", response_model=BookModel)
def get_book(book_id: int):
    book = catalog.get(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return BookModel(**book.to_dict())


@app.put("/api/books/update-book/{book_id}", response_model=BookModel)
def update_book(book_id: int, update: BookUpdateModel, principal: Principal = Depends(admin_only)):
    try:
        book = catalog.update(book_id, **update.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return BookModel(**book.to_dict())


@app.delete("/api/books/delete-book/{book_id}")
def delete_book(book_id: int, principal: Principal = Depends(admin_only)):
    if not catalog.delete(book_id):
        raise HTTPException(status_code=404, detail="Book not found")
    return {"message": "Book deleted successfully"}


# --- Issue lifecycle ---
@app.post("/api/issue/new/request", status_code=201)
def submit_request(payload: IssueRequestModel, principal: Principal = Depends(student_only)):
    request = engine.submit_request(principal.id, payload.book_id)
    return {"message": "Book issue request created", "request": request.to_dict()}


@app.get("/api/issue/requests")
def list_requests(
    status: Optional[RequestStatus] = Query(default=None),
    principal: Principal = Depends(admin_only),
):
    return [r.to_dict() for r in engine.list_requests(status=status)]


@app.get("/api/issue/my-requests")
def my_requests(principal: Principal = Depends(student_only)):
    return [r.to_dict() for r in engine.requests_for_student(principal.id)]


@app.post("/api/issue/approve")
def approve_request(payload: RequestActionModel, principal: Principal = Depends(admin_only)):
    approval = engine.approve_request(payload.request_id)
    return {"message": approval.message, "request": approval.request.to_dict(), "issue": approval.loan.to_dict()}


@app.post("/api/issue/reject")
def reject_request(payload: RequestActionModel, principal: Principal = Depends(admin_only)):
    engine.reject_request(payload.request_id)
    return {"message": "Request rejected successfully"}


@app.post("/api/issue/cancel-issue")
def cancel_issue(payload: CancelIssueModel, principal: Principal = Depends(any_role)):
    # Students are limited to their own loans; the check runs inside the cancel transaction
    engine.cancel_loan(payload.issue_id, owner_id=None if principal.is_admin else principal.id)
    return {"message": "Book issue canceled and request marked as returned"}


@app.post("/api/issue/delete-all")
def purge_finalized(payload: Optional[PurgeModel] = None, principal: Principal = Depends(admin_only)):
    statuses = payload.statuses if payload else DEFAULT_PURGE_STATUSES
    try:
        deleted = engine.purge_finalized(statuses)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if deleted == 0:
        raise HTTPException(status_code=404, detail="There is nothing to delete")
    return {"message": f"{deleted} requests deleted successfully", "deleted": deleted}


@app.get("/api/issue/issued-books")
def list_issued_books(principal: Principal = Depends(admin_only)):
    return engine.list_loans()


@app.get("/api/issued-books")
def student_issued_books(
    student_id: Optional[int] = Query(default=None, alias="studentId"),
    principal: Principal = Depends(any_role),
):
    """Issued books of one student. Students may only look at their own."""
    if student_id is None:
        if principal.is_admin:
            raise HTTPException(status_code=400, detail="Student ID is required")
        student_id = principal.id
    if not principal.is_admin and student_id != principal.id:
        raise HTTPException(status_code=403, detail="Access denied")

    issued = engine.loans_for_student(student_id)
    if not issued:
        raise HTTPException(status_code=404, detail="No issued books found for this student")
    return issued


# --- Messages ---
def _send(fn, *args) -> Any:
    try:
        return fn(*args)
    except NotFound:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/messages/send", status_code=201)
def send_message(payload: MessageModel, principal: Principal = Depends(student_only)):
    message = _send(board.send_to_admin, principal.id, payload.content)
    return {"message": "Message sent successfully!", "data": message.to_dict()}


@app.post("/api/messages/reply/{message_id}", status_code=201)
def reply_message(message_id: int, payload: MessageModel, principal: Principal = Depends(admin_only)):
    reply = _send(board.reply, principal.id, message_id, payload.content)
    return {"message": "Reply sent successfully!", "data": reply.to_dict()}


@app.post("/api/messages/send-to-all", status_code=201)
def send_to_all(payload: MessageModel, principal: Principal = Depends(admin_only)):
    count = _send(board.send_to_all, principal.id, payload.content)
    return {"message": "Message sent to all students.", "recipients": count}


@app.post("/api/messages/send-to-student/{student_id}", status_code=201)
def send_to_student(student_id: int, payload: MessageModel, principal: Principal = Depends(admin_only)):
    message = _send(board.send_to_student, principal.id, student_id, payload.content)
    return {"message": "Message sent to the student.", "data": message.to_dict()}


@app.get("/api/messages/inbox")
def inbox(principal: Principal = Depends(any_role)):
    return {"messages": [m.to_dict() for m in board.inbox(principal)]}


@app.get("/api/messages/messages")
def admin_messages(principal: Principal = Depends(admin_only)):
    return {"messages": [m.to_dict() for m in board.received_by(principal)]}


@app.get("/api/messages/admin-messages")
def messages_from_admins(principal: Principal = Depends(student_only)):
    return {"messages": [m.to_dict() for m in board.received_by(principal)]}


@app.get("/api/messages/students")
def message_recipients(principal: Principal = Depends(any_role)):
    """Student id/name pairs for the recipient dropdown."""
    return {"students": [{"id": s.id, "name": s.name} for s in identity.list_students()]}


@app.delete("/api/messages/delete/{message_id}")
def delete_message(message_id: int, principal: Principal = Depends(admin_only)):
    if not board.delete(message_id):
        raise HTTPException(status_code=404, detail="Message not found.")
    return {"message": "Message deleted successfully."}


# --- Statistics ---
@app.get("/api/statistics", response_model=StatsModel)
def statistics(principal: Principal = Depends(admin_only)) -> Dict[str, Any]:
    return get_statistics()
