import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from ebook_lending.catalog import EBookCatalog
from ebook_lending.config import settings
from ebook_lending.database import get_db_connection, initialize_database
from ebook_lending.errors import ErrorKind, LendingError, NotFound, Outcome
from ebook_lending.loans import LoanLifecycleManager
from ebook_lending.logging_config import setup_logging
from ebook_lending.models import EBook
from ebook_lending.reviews import ReviewStore
from ebook_lending.services.http_client import close_http_client
from ebook_lending.services.payment_gateway import PaymentService
from ebook_lending.users import UserDirectory
from ebook_lending.wishlist import WishlistStore

logger = logging.getLogger(__name__)

catalog = EBookCatalog()
users = UserDirectory()
loans = LoanLifecycleManager()
payments = PaymentService()
reviews = ReviewStore()
wishlist = WishlistStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, use_json=settings.log_format == "json")
    initialize_database()
    try:
        yield
    finally:
        close_http_client()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Response envelope ---
def success(data: Any, code: int = 200, message: Optional[str] = None) -> JSONResponse:
    return JSONResponse(status_code=code, content={"status": "success", "code": code, "message": message, "data": data})


def fail(error: LendingError) -> JSONResponse:
    """Domain refusals are 'fail'; missing records are reported as 'error' like any other lookup miss."""
    status = "error" if error.kind is ErrorKind.NOT_FOUND else "fail"
    return JSONResponse(
        status_code=error.status_code,
        content={"status": status, "code": error.status_code, "message": error.message, "data": None},
    )


def error(code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=code, content={"status": "error", "code": code, "message": message, "data": None})


def respond(outcome: Outcome, code: int = 200, render=lambda v: v.to_dict()) -> JSONResponse:
    if not outcome.ok:
        return fail(outcome.error)
    return success(render(outcome.value), code)


@app.exception_handler(LendingError)
async def lending_error_handler(request: Request, exc: LendingError):
    return fail(exc)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error(500, "Internal server error. Please try again.")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if request.url.path == "/api/loan/rent":
        return error(405, "Bad Request.")
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    message = f"{location}: {first.get('msg', 'invalid value')}" if location else "Invalid request."
    return error(400, message)


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """Dependency guarding admin-only endpoints."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Models ---
class EBookCreateModel(BaseModel):
    title: str
    author: str
    category: str = ""
    price: float = Field(default=0.0, ge=0)
    description: str = ""
    cover_url: Optional[str] = None
    quantity_available: int = Field(default=0, ge=0)
    max_loan_duration: int = Field(default=14, gt=0)


class EBookUpdateModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    max_loan_duration: Optional[int] = Field(default=None, gt=0)
    cover_url: Optional[str] = None


class RegisterModel(BaseModel):
    email: str
    password: str
    name: Optional[str] = None


class LoginModel(BaseModel):
    email: str
    password: str


class PaymentModel(BaseModel):
    userId: UUID
    amount: float = Field(ge=0)


class ReviewCreateModel(BaseModel):
    loanId: str
    rating: int
    comment: Optional[str] = None


class WishlistModel(BaseModel):
    userId: str
    ebookId: str


# --- Health ---
@app.get("/health")
def health():
    db_ok = True
    try:
        conn = get_db_connection()
        conn.execute("SELECT 1")
        conn.close()
    except Exception:
        logger.exception("Health check could not reach the database")
        db_ok = False
    return {"status": "healthy" if db_ok else "degraded", "timestamp": datetime.now(timezone.utc).isoformat(),
            "db": db_ok}


# --- Loans ---
@app.post("/api/loan/rent")
def create_loan(userId: UUID = Query(...), ebookId: UUID = Query(...)):
    return respond(loans.create_loan(str(userId), str(ebookId)))


@app.get("/api/loan/list")
def list_loans(userId: UUID = Query(...)):
    try:
        outcome = loans.list_loans_for_user(str(userId))
    except Exception:
        logger.exception("Listing loans failed")
        return error(500, "Error retrieving loans. Please try again.")
    return respond(outcome, render=lambda items: [loan.to_dict() for loan in items])


@app.get("/api/loan/{loanId}")
def get_loan(loanId: str):
    return respond(loans.get_loan(loanId))


@app.patch("/api/loan/{loanId}")
def terminate_loan(loanId: str):
    try:
        outcome = loans.terminate_loan(loanId)
    except Exception as e:
        logger.exception("Terminating loan failed")
        return error(500, str(e))
    return respond(outcome)


# --- Payments ---
@app.post("/api/payments")
def create_payment(payload: PaymentModel):
    return respond(payments.create_payment(str(payload.userId), payload.amount), code=201)


@app.get("/api/payments")
def list_payments():
    return success([p.to_dict() for p in payments.list_payments()])


# --- Catalog ---
@app.get("/api/ebooks")
def list_ebooks(title: Optional[str] = None, author: Optional[str] = None, category: Optional[str] = None,
                maxPrice: Optional[float] = Query(default=None, ge=0),
                minRating: Optional[float] = Query(default=None, ge=0, le=5)):
    books = catalog.search(title=title, author=author, category=category, max_price=maxPrice, min_rating=minRating)
    return success([b.to_dict() for b in books])


@app.get("/api/ebooks/recommended")
def recommended_ebooks(count: Optional[int] = Query(default=None, ge=1, le=50)):
    return success([b.to_dict() for b in catalog.recommend(count)])


@app.get("/api/ebooks/{ebookId}")
def get_ebook(ebookId: str):
    book = catalog.get_ebook(ebookId)
    if book is None:
        raise NotFound("EBook not found.")
    return success(book.to_dict())


@app.post("/api/ebooks", dependencies=[Depends(get_api_key)])
def add_ebook(payload: EBookCreateModel):
    book = catalog.add_ebook(EBook(**payload.model_dump()))
    return success(book.to_dict(), 201)


@app.put("/api/ebooks/{ebookId}", dependencies=[Depends(get_api_key)])
def update_ebook(ebookId: str, payload: EBookUpdateModel):
    book = catalog.update_ebook(ebookId, **payload.model_dump())
    return success(book.to_dict())


@app.delete("/api/ebooks/{ebookId}", dependencies=[Depends(get_api_key)])
def delete_ebook(ebookId: str):
    if not catalog.delete_ebook(ebookId):
        raise NotFound("EBook not found.")
    return success({"id": ebookId})


# --- Users ---
@app.post("/api/users/register")
def register_user(payload: RegisterModel):
    user = users.register(payload.email, payload.password, payload.name)
    return success(user.to_dict(), 201)


@app.post("/api/users/login")
def login_user(payload: LoginModel):
    return success(users.login(payload.email, payload.password).to_dict())


@app.post("/api/users/topup")
def top_up_balance(userId: UUID = Query(...), amount: float = Query(...)):
    user = users.top_up_balance(str(userId), amount)
    return success(user.to_dict(), message=f"Successfully added {amount:.2f} {settings.payment_currency}")


@app.post("/api/users/{userId}/logout")
def logout_user(userId: str):
    return success(users.logout(userId).to_dict())


@app.get("/api/users/{userId}")
def get_user(userId: str):
    user = users.get_user(userId)
    if user is None:
        raise NotFound("User not found.")
    return success(user.to_dict())


@app.post("/api/users/{userId}/promote", dependencies=[Depends(get_api_key)])
def promote_user(userId: str):
    return success(users.promote_to_admin(userId).to_dict())


# --- Reviews ---
@app.post("/api/reviews")
def create_review(payload: ReviewCreateModel):
    review = reviews.create_review(payload.loanId, payload.rating, payload.comment)
    return success(review.to_dict(), 201)


@app.get("/api/reviews/ebook/{ebookId}")
def ebook_reviews(ebookId: str):
    return success([r.to_dict() for r in reviews.reviews_for_ebook(ebookId)])


# --- Wishlist ---
@app.post("/api/wishlist")
def add_to_wishlist(payload: WishlistModel):
    return success(wishlist.add(payload.userId, payload.ebookId).to_dict(), 201)


@app.delete("/api/wishlist")
def remove_from_wishlist(userId: str = Query(...), ebookId: str = Query(...)):
    return success({"removed": wishlist.remove(userId, ebookId)})


@app.get("/api/wishlist/{userId}")
def get_wishlist(userId: str):
    return success([e.to_dict() for e in wishlist.list_for_user(userId)])


# --- Emails ---
@app.post("/api/emails/reminders", dependencies=[Depends(get_api_key)])
def send_reminders(withinDays: int = Query(default=settings.reminder_window_days, ge=0)):
    return success({"sent": loans.send_due_reminders(withinDays)})
