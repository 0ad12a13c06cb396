"""Entity classes for the library backend.

Each entity is built from a ``sqlite3.Row`` (snake_case columns) with
``from_row`` and rendered for the API with ``to_dict``, which uses the
camelCase keys clients of the borrowing API expect.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone, timedelta
from typing import Any, Mapping

SECONDS_PER_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """Serialize as UTC ISO-8601 with second precision so stored values sort as strings."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def overdue_days(due_date: datetime, now: datetime | None = None) -> int:
    """Whole days elapsed past the due date, never negative."""
    now = now or utc_now()
    elapsed = (now - due_date).total_seconds()
    return max(0, math.floor(elapsed / SECONDS_PER_DAY))


class User:
    """A registered library user. ``deleted_at`` set means the account is disabled."""

    def __init__(self, id: int, name: str, email: str, password: str, role: str = "member",
                 verified: bool = False, verification_token: str | None = None,
                 created_at: str | None = None, deleted_at: str | None = None) -> None:
        self.id = id
        self.name = name
        self.email = email
        self.password = password
        self.role = role
        self.verified = bool(verified)
        self.verification_token = verification_token
        self.created_at = created_at
        self.deleted_at = deleted_at

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_disabled(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> dict:
        # The password hash and verification token never leave the service.
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "verified": self.verified,
            "createdAt": self.created_at,
            "deletedAt": self.deleted_at,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "User":
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            password=row["password"],
            role=row["role"],
            verified=row["verified"],
            verification_token=row["verification_token"],
            created_at=row["created_at"],
            deleted_at=row["deleted_at"],
        )


class Author:
    def __init__(self, id: int, name: str, book_count: int = 0) -> None:
        self.id = id
        self.name = name
        self.book_count = book_count

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "bookCount": self.book_count}


class Category:
    def __init__(self, id: int, name: str, book_count: int = 0) -> None:
        self.id = id
        self.name = name
        self.book_count = book_count

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "bookCount": self.book_count}


class Book:
    """A catalog entry. ``copies`` counts the copies currently on the shelf."""

    def __init__(self, id: int, title: str, isbn: str, copies: int,
                 authors: list[str] | None = None, categories: list[str] | None = None,
                 created_at: str | None = None, updated_at: str | None = None,
                 deleted_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.isbn = isbn.strip()
        self.copies = copies
        self.authors = authors or []
        self.categories = categories or []
        self.created_at = created_at
        self.updated_at = updated_at
        self.deleted_at = deleted_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} (ISBN: {self.isbn})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "isbn": self.isbn,
            "copies": self.copies,
            "authors": self.authors,
            "categories": self.categories,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any], authors: list[str] | None = None,
                 categories: list[str] | None = None) -> "Book":
        return Book(
            id=row["id"],
            title=row["title"],
            isbn=row["isbn"],
            copies=row["copies"],
            authors=authors,
            categories=categories,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
        )


class BorrowedBook:
    """A loan of one copy of a book to a user."""

    def __init__(self, id: int, user_id: int, book_id: int, borrowed_at: str, due_date: str,
                 returned_at: str | None = None, fine: float = 0.0,
                 book: dict | None = None, user: dict | None = None) -> None:
        self.id = id
        self.user_id = user_id
        self.book_id = book_id
        self.borrowed_at = borrowed_at
        self.due_date = due_date
        self.returned_at = returned_at
        self.fine = fine
        # Optional joined summaries, e.g. {"id", "title", "isbn"} and {"id", "name"}
        self.book = book
        self.user = user

    @property
    def is_returned(self) -> bool:
        return self.returned_at is not None

    def overdue_days(self, now: datetime | None = None) -> int:
        return overdue_days(parse_iso(self.due_date), now)

    def current_fine(self, daily_fine: float, now: datetime | None = None) -> float:
        """Fine accrued so far on an open loan."""
        return self.overdue_days(now) * daily_fine

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "userId": self.user_id,
            "bookId": self.book_id,
            "borrowedAt": self.borrowed_at,
            "dueDate": self.due_date,
            "returnedAt": self.returned_at,
            "fine": self.fine,
        }
        if self.book is not None:
            data["book"] = self.book
        if self.user is not None:
            data["user"] = self.user
        return data

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "BorrowedBook":
        keys = row.keys()
        book = None
        user = None
        if "book_title" in keys:
            book = {"id": row["book_id"], "title": row["book_title"], "isbn": row["book_isbn"]}
        if "user_name" in keys:
            user = {"id": row["user_id"], "name": row["user_name"]}
            if "user_email" in keys:
                user["email"] = row["user_email"]
        return BorrowedBook(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            borrowed_at=row["borrowed_at"],
            due_date=row["due_date"],
            returned_at=row["returned_at"],
            fine=row["fine"],
            book=book,
            user=user,
        )


class Transaction:
    """A fine payment against one loan."""

    def __init__(self, id: int, user_id: int, borrowed_book_id: int, amount: float,
                 payment_date: str) -> None:
        self.id = id
        self.user_id = user_id
        self.borrowed_book_id = borrowed_book_id
        self.amount = amount
        self.payment_date = payment_date

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "borrowedBookId": self.borrowed_book_id,
            "amount": self.amount,
            "paymentDate": self.payment_date,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Transaction":
        return Transaction(
            id=row["id"],
            user_id=row["user_id"],
            borrowed_book_id=row["borrowed_book_id"],
            amount=row["amount"],
            payment_date=row["payment_date"],
        )


def due_date_from(borrowed_at: datetime, loan_period_days: int) -> datetime:
    return borrowed_at + timedelta(days=loan_period_days)
