import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, ConfigDict, Field, StrictBool

import auth
from cache_manager import cache_manager
from config import settings
from database import get_db_connection
from library import (
    BookUnavailableError,
    BorrowingLimitError,
    Library,
    PaymentError,
)
from models import User
from rate_limiter import RateLimiter
from services.notifications import notification_hub
from services.reminders import create_scheduler, run_daily_reminders

logger = logging.getLogger(__name__)

library = Library()

general_limiter = RateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds, name="general")
auth_limiter = RateLimiter(settings.rate_limit_auth_requests, settings.rate_limit_window_seconds, name="auth")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if settings.debug else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    scheduler = None
    if settings.enable_scheduler:
        scheduler = create_scheduler(library, notification_hub)
        scheduler.start()
        logger.info("Reminder job scheduled daily at %02d:%02d UTC", settings.reminder_hour, settings.reminder_minute)
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def limit_requests(request: Request, call_next):
    key = request.client.host if request.client else "unknown"
    if not general_limiter.hit(key):
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests, please try again later."},
            headers={"Retry-After": str(general_limiter.retry_after(key))},
        )
    return await call_next(request)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    return response


# --- Security ---
def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Security(auth.bearer_scheme)) -> User:
    """Dependency resolving the bearer token to the calling user."""
    return auth.authenticate(credentials, library)


def require_admin(user: User = Depends(get_current_user)) -> User:
    return auth.ensure_admin(user)


def _ensure_owner_or_admin(user: User, owner_id: int) -> None:
    if user.id != owner_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Access denied")


# --- Cache helpers ---
def invalidate_catalog_cache() -> int:
    return cache_manager.invalidate_pattern("books:*")


# --- Models ---
class RegisterModel(BaseModel):
    name: str
    email: str
    password: str
    role: Literal["admin", "member"] = "member"


class LoginModel(BaseModel):
    email: str
    password: str


class BookCreateModel(BaseModel):
    title: str
    isbn: str
    copies: int
    authors: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)


class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    isbn: Optional[str] = None
    copies: Optional[int] = None
    authors: Optional[List[str]] = None
    categories: Optional[List[str]] = None


class BookPageModel(BaseModel):
    items: List[Dict[str, Any]]
    total: int
    page: int
    page_size: int
    total_pages: int


class BorrowModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    book_id: int = Field(alias="bookId")


class PaymentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    borrowed_book_id: int = Field(alias="borrowedBookId")
    amount: float = Field(gt=0, allow_inf_nan=False)


class EnableDisableModel(BaseModel):
    disabled: StrictBool


# --- Health ---
@app.get("/health")
def health():
    db_ok = True
    try:
        conn = get_db_connection()
        conn.execute("SELECT 1")
        conn.close()
    except Exception as e:
        logger.warning("Health check database probe failed: %s", e)
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "db": db_ok,
        "cache": {"redis": cache_manager.redis_client is not None},
        "websocketClients": len(notification_hub.connections),
        "version": settings.app_version,
        "environment": settings.environment,
    }


# --- Auth ---
@app.post("/auth/register", status_code=201, dependencies=[Depends(auth_limiter)])
def register(payload: RegisterModel):
    try:
        auth.register_user(library, payload.name, payload.email, payload.password, payload.role)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "User registered. Please verify your email."}


@app.post("/auth/login", dependencies=[Depends(auth_limiter)])
def login(payload: LoginModel):
    try:
        token = auth.login_user(library, payload.email, payload.password)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except auth.InvalidCredentialsError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except auth.AccountDisabledError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"token": token}


@app.get("/auth/verify-email")
def verify_email(token: Optional[str] = None):
    try:
        auth.verify_email(library, token)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "Email verified successfully."}


# --- Catalog ---
@app.get("/books", response_model=BookPageModel)
def search_books(
    q: Optional[str] = Query(None, description="Title or ISBN fragment"),
    author: Optional[str] = None,
    category: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
):
    cache_key = f"books:search:{q or ''}:{author or ''}:{category or ''}:{page}:{page_size}"
    cached = cache_manager.get(cache_key)
    if cached is not None:
        return cached

    books, total = library.search_books(q=q, author=author, category=category, page=page, page_size=page_size)
    result = {
        "items": [b.to_dict() for b in books],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size) if total else 0,
    }
    cache_manager.set(cache_key, result)
    return result


@app.get("/books/{isbn_or_title}")
def get_book_details(isbn_or_title: str):
    cache_key = f"books:detail:{isbn_or_title.strip().lower()}"
    cached = cache_manager.get(cache_key)
    if cached is not None:
        return cached

    book = library.find_book(isbn_or_title)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    result = book.to_dict()
    cache_manager.set(cache_key, result)
    return result


@app.post("/books", status_code=201)
def add_book(payload: BookCreateModel, _: User = Depends(require_admin)):
    try:
        book = library.add_book(payload.title, payload.isbn, payload.copies, payload.authors, payload.categories)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    invalidate_catalog_cache()
    return book.to_dict()


@app.put("/books/{book_id}")
def edit_book(book_id: int, update: BookUpdateModel, _: User = Depends(require_admin)):
    try:
        book = library.update_book(
            book_id,
            title=update.title,
            isbn=update.isbn,
            copies=update.copies,
            authors=update.authors,
            categories=update.categories,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    invalidate_catalog_cache()
    return book.to_dict()


@app.delete("/books/{book_id}")
def delete_book(book_id: int, _: User = Depends(require_admin)):
    if not library.remove_book(book_id):
        raise HTTPException(status_code=404, detail="Book not found")
    invalidate_catalog_cache()
    return {"message": "Book deleted successfully."}


@app.get("/authors")
def list_authors():
    cached = cache_manager.get("books:authors")
    if cached is not None:
        return cached
    result = [a.to_dict() for a in library.list_authors()]
    cache_manager.set("books:authors", result)
    return result


@app.get("/categories")
def list_categories():
    cached = cache_manager.get("books:categories")
    if cached is not None:
        return cached
    result = [c.to_dict() for c in library.list_categories()]
    cache_manager.set("books:categories", result)
    return result


# --- Users ---
@app.get("/users/{user_id}")
def get_user_details(user_id: int, user: User = Depends(get_current_user)):
    if user.id != user_id:
        raise HTTPException(status_code=403, detail="Access denied: You can only access your own data.")
    found = library.get_user(user_id)
    if not found:
        raise HTTPException(status_code=404, detail="User not found")
    return found.to_dict()


@app.get("/users/{user_id}/borrowed-books")
def track_borrowed_books(user_id: int, user: User = Depends(get_current_user)):
    if user.id != user_id:
        raise HTTPException(status_code=403, detail="Access denied: You can only access your own borrowed books.")
    now = datetime.now(timezone.utc)
    loans = library.list_active_loans(user_id)
    borrowed = []
    for loan in loans:
        data = loan.to_dict()
        data["overdueDays"] = loan.overdue_days(now)
        data["currentFine"] = loan.current_fine(library.daily_fine, now)
        borrowed.append(data)
    return {
        "borrowedBooks": borrowed,
        "totalFine": sum(item["currentFine"] for item in borrowed),
    }


@app.patch("/users/{user_id}/enable-disable")
def enable_disable_user(user_id: int, payload: EnableDisableModel, _: User = Depends(require_admin)):
    updated = library.set_user_disabled(user_id, payload.disabled)
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")
    state = "disabled" if payload.disabled else "enabled"
    return {"message": f"User account has been {state}", "user": updated.to_dict()}


# --- Circulation ---
@app.post("/borrow")
def borrow_book(payload: BorrowModel, user: User = Depends(get_current_user)):
    try:
        loan = library.borrow_book(user.id, payload.book_id)
    except BorrowingLimitError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except BookUnavailableError as e:
        raise HTTPException(status_code=404, detail=str(e))
    invalidate_catalog_cache()
    return {"message": "Book borrowed successfully.", "borrowedBook": loan.to_dict()}


@app.post("/borrow/return")
def return_book(payload: BorrowModel, user: User = Depends(get_current_user)):
    try:
        loan = library.return_book(user.id, payload.book_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    invalidate_catalog_cache()
    return {"message": "Book returned successfully.", "fine": loan.fine}


@app.get("/borrow/limit")
def check_borrowing_limit(user: User = Depends(get_current_user)):
    return library.borrowing_limit_status(user.id)


# --- Fines ---
@app.get("/fine/calculate/{borrowed_book_id}")
def calculate_fine(borrowed_book_id: int, user: User = Depends(get_current_user)):
    loan = library.get_borrowed_book(borrowed_book_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Borrowing record not found.")
    _ensure_owner_or_admin(user, loan.user_id)
    return library.fine_summary(loan)


@app.get("/fine/total")
def total_fine(user: User = Depends(get_current_user)):
    return {"totalFine": library.total_fine(user.id)}


# --- Payments ---
@app.post("/payment/pay")
def pay_fine(payload: PaymentModel, user: User = Depends(get_current_user)):
    try:
        transaction = library.pay_fine(user.id, payload.borrowed_book_id, payload.amount)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PaymentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "Fine paid successfully.", "transaction": transaction.to_dict()}


@app.get("/payment/invoice/{transaction_id}")
def generate_invoice(transaction_id: int, user: User = Depends(get_current_user)):
    invoice = library.generate_invoice(transaction_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    _ensure_owner_or_admin(user, invoice["user"]["id"])
    return invoice


# --- Analytics ---
@app.get("/analytics/most-borrowed")
def most_borrowed_books(_: User = Depends(require_admin)):
    return library.most_borrowed_books(limit=10)


@app.get("/analytics/monthly-report")
def monthly_usage_report(
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1, le=9998),
    _: User = Depends(require_admin),
):
    return library.monthly_usage_report(month=month, year=year)


# --- Reminders ---
@app.post("/admin/reminders/run")
async def run_reminders(_: User = Depends(require_admin)):
    return await run_daily_reminders(library, notification_hub)


# --- Notifications ---
@app.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket):
    await notification_hub.connect(websocket)
    try:
        while True:
            # Clients only listen; incoming frames are read to detect disconnects.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await notification_hub.disconnect(websocket)
