from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional, Tuple
import math
import sqlite3

import database
from config import settings
from database import get_db_connection, initialize_database, transaction
from models import (
    Author,
    Book,
    BorrowedBook,
    Category,
    Transaction,
    User,
    due_date_from,
    to_iso,
    utc_now,
)
from utils.validators import ISBNValidator, TextValidator

_LOAN_COLUMNS = """
    bb.id, bb.user_id, bb.book_id, bb.borrowed_at, bb.due_date, bb.returned_at, bb.fine,
    b.title AS book_title, b.isbn AS book_isbn
"""


def _like_term(value: str) -> str:
    """Substring pattern for ``LIKE ... ESCAPE '\\'`` with the wildcards taken literally."""
    escaped = value.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class Library:
    """Catalog, circulation, fines, payments, users and analytics over the SQLite store."""

    def __init__(self, db_file: Optional[str] = None, *, borrowing_limit: Optional[int] = None,
                 loan_period_days: Optional[int] = None, daily_fine: Optional[float] = None) -> None:
        # Tests (and callers) can point the module-level helpers in database.py
        # at another file before the schema is created.
        if db_file:
            database.DATABASE_FILE = db_file
        self.borrowing_limit = borrowing_limit if borrowing_limit is not None else settings.borrowing_limit
        self.loan_period_days = loan_period_days if loan_period_days is not None else settings.loan_period_days
        self.daily_fine = daily_fine if daily_fine is not None else settings.daily_fine
        initialize_database()

    # ------------------------- Users ------------------------- #
    def create_user(self, name: str, email: str, password_hash: str, role: str = "member",
                    verification_token: Optional[str] = None, verified: bool = False) -> User:
        """Insert a user. ``password_hash`` must already be hashed."""
        if role not in ("admin", "member"):
            raise ValueError("Role must be 'admin' or 'member'.")
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                """INSERT INTO users (name, email, password, role, verified, verification_token, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (name.strip(), email, password_hash, role, int(verified), verification_token, to_iso(utc_now())),
            )
            conn.commit()
            user_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(f"User with email {email} already exists.") from e
        finally:
            conn.close()
        return self.get_user(user_id)

    def get_user(self, user_id: int) -> Optional[User]:
        conn = get_db_connection()
        try:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return User.from_row(row) if row else None
        finally:
            conn.close()

    def find_user_by_email(self, email: str) -> Optional[User]:
        conn = get_db_connection()
        try:
            row = conn.execute("SELECT * FROM users WHERE email = ? COLLATE NOCASE", (email.strip(),)).fetchone()
            return User.from_row(row) if row else None
        finally:
            conn.close()

    def verify_user_email(self, token: str) -> Optional[User]:
        """Mark the user owning ``token`` as verified and consume the token."""
        conn = get_db_connection()
        try:
            row = conn.execute("SELECT id FROM users WHERE verification_token = ?", (token,)).fetchone()
            if not row:
                return None
            conn.execute(
                "UPDATE users SET verified = 1, verification_token = NULL WHERE id = ?",
                (row["id"],),
            )
            conn.commit()
            user_id = row["id"]
        finally:
            conn.close()
        return self.get_user(user_id)

    def set_user_disabled(self, user_id: int, disabled: bool, now: Optional[datetime] = None) -> Optional[User]:
        """Disable (soft delete) or re-enable an account. Returns None if the user does not exist."""
        deleted_at = to_iso(now or utc_now()) if disabled else None
        conn = get_db_connection()
        try:
            cursor = conn.execute("UPDATE users SET deleted_at = ? WHERE id = ?", (deleted_at, user_id))
            conn.commit()
            if cursor.rowcount == 0:
                return None
        finally:
            conn.close()
        return self.get_user(user_id)

    # ------------------------- Catalog ------------------------- #
    def add_book(self, title: str, isbn: str, copies: int, authors: Optional[List[str]] = None,
                 categories: Optional[List[str]] = None) -> Book:
        """Add a book, connecting its authors and categories by name or creating them."""
        if not TextValidator.validate_name(title):
            raise ValueError("Title cannot be empty.")
        isbn = ISBNValidator.normalize_isbn(isbn)
        if not ISBNValidator.is_valid_isbn(isbn):
            raise ValueError("Invalid ISBN format.")
        if copies is None or copies < 1:
            raise ValueError("Copies must be a positive integer.")

        now = to_iso(utc_now())
        try:
            with transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO books (title, isbn, copies, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                    (title.strip(), isbn, copies, now, now),
                )
                book_id = cursor.lastrowid
                self._link_names(conn, book_id, "authors", "book_authors", "author_id", authors)
                self._link_names(conn, book_id, "categories", "book_categories", "category_id", categories)
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(f"Book with ISBN {isbn} already exists.") from e
        return self.get_book(book_id)

    def get_book(self, book_id: int, include_deleted: bool = False) -> Optional[Book]:
        conn = get_db_connection()
        try:
            sql = "SELECT * FROM books WHERE id = ?"
            if not include_deleted:
                sql += " AND deleted_at IS NULL"
            row = conn.execute(sql, (book_id,)).fetchone()
            if not row:
                return None
            return self._books_from_rows(conn, [row])[0]
        finally:
            conn.close()

    def find_book(self, isbn_or_title: str) -> Optional[Book]:
        """Look a live book up by ISBN (any formatting) or exact title, ignoring case."""
        value = (isbn_or_title or "").strip()
        if not value:
            return None
        isbn = ISBNValidator.normalize_isbn(value)
        conn = get_db_connection()
        try:
            row = conn.execute(
                """SELECT * FROM books
                   WHERE deleted_at IS NULL AND (isbn = ? OR title = ? COLLATE NOCASE)
                   ORDER BY id LIMIT 1""",
                (isbn, value),
            ).fetchone()
            if not row:
                return None
            return self._books_from_rows(conn, [row])[0]
        finally:
            conn.close()

    def update_book(self, book_id: int, *, title: Optional[str] = None, isbn: Optional[str] = None,
                    copies: Optional[int] = None, authors: Optional[List[str]] = None,
                    categories: Optional[List[str]] = None) -> Optional[Book]:
        """Partially update a live book. Returns the updated book or None if not found."""
        if all(v is None for v in (title, isbn, copies, authors, categories)):
            raise ValueError("Nothing to update. Provide title, isbn, copies, authors and/or categories.")
        if title is not None and not TextValidator.validate_name(title):
            raise ValueError("Title cannot be empty.")
        if isbn is not None:
            isbn = ISBNValidator.normalize_isbn(isbn)
            if not ISBNValidator.is_valid_isbn(isbn):
                raise ValueError("Invalid ISBN format.")
        if copies is not None and copies < 0:
            raise ValueError("Copies cannot be negative.")

        if not self.get_book(book_id):
            return None

        assignments = []
        params: List[Any] = []
        if title is not None:
            assignments.append("title = ?")
            params.append(title.strip())
        if isbn is not None:
            assignments.append("isbn = ?")
            params.append(isbn)
        if copies is not None:
            assignments.append("copies = ?")
            params.append(copies)
        assignments.append("updated_at = ?")
        params.append(to_iso(utc_now()))

        try:
            with transaction() as conn:
                conn.execute(
                    f"UPDATE books SET {', '.join(assignments)} WHERE id = ? AND deleted_at IS NULL",
                    (*params, book_id),
                )
                if authors is not None:
                    conn.execute("DELETE FROM book_authors WHERE book_id = ?", (book_id,))
                    self._link_names(conn, book_id, "authors", "book_authors", "author_id", authors)
                if categories is not None:
                    conn.execute("DELETE FROM book_categories WHERE book_id = ?", (book_id,))
                    self._link_names(conn, book_id, "categories", "book_categories", "category_id", categories)
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(f"Book with ISBN {isbn} already exists.") from e
        return self.get_book(book_id)

    def remove_book(self, book_id: int, now: Optional[datetime] = None) -> bool:
        """Soft delete: the row stays for loan history but disappears from the catalog."""
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "UPDATE books SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (to_iso(now or utc_now()), book_id),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def search_books(self, q: Optional[str] = None, author: Optional[str] = None,
                     category: Optional[str] = None, page: int = 1,
                     page_size: int = 20) -> Tuple[List[Book], int]:
        """Search live books by title/ISBN, author name and category name.

        Returns the requested page and the total number of matches.
        """
        where = ["b.deleted_at IS NULL"]
        params: List[Any] = []
        if q and q.strip():
            where.append("(b.title LIKE ? ESCAPE '\\' OR b.isbn LIKE ? ESCAPE '\\')")
            term = _like_term(q)
            params.extend([term, term])
        if author and author.strip():
            where.append("""EXISTS (SELECT 1 FROM book_authors ba JOIN authors a ON a.id = ba.author_id
                                    WHERE ba.book_id = b.id AND a.name LIKE ? ESCAPE '\\')""")
            params.append(_like_term(author))
        if category and category.strip():
            where.append("""EXISTS (SELECT 1 FROM book_categories bc JOIN categories c ON c.id = bc.category_id
                                    WHERE bc.book_id = b.id AND c.name LIKE ? ESCAPE '\\')""")
            params.append(_like_term(category))
        where_sql = " AND ".join(where)

        page = max(page, 1)
        page_size = max(page_size, 1)
        conn = get_db_connection()
        try:
            total = conn.execute(f"SELECT COUNT(*) FROM books b WHERE {where_sql}", params).fetchone()[0]
            rows = conn.execute(
                f"""SELECT b.* FROM books b WHERE {where_sql}
                    ORDER BY b.title COLLATE NOCASE, b.id LIMIT ? OFFSET ?""",
                (*params, page_size, (page - 1) * page_size),
            ).fetchall()
            return self._books_from_rows(conn, rows), total
        finally:
            conn.close()

    def list_authors(self) -> List[Author]:
        conn = get_db_connection()
        try:
            rows = conn.execute("""
                SELECT a.id, a.name, COUNT(b.id) AS book_count
                FROM authors a
                LEFT JOIN book_authors ba ON ba.author_id = a.id
                LEFT JOIN books b ON b.id = ba.book_id AND b.deleted_at IS NULL
                GROUP BY a.id, a.name
                ORDER BY a.name COLLATE NOCASE
            """).fetchall()
            return [Author(id=r["id"], name=r["name"], book_count=r["book_count"]) for r in rows]
        finally:
            conn.close()

    def list_categories(self) -> List[Category]:
        conn = get_db_connection()
        try:
            rows = conn.execute("""
                SELECT c.id, c.name, COUNT(b.id) AS book_count
                FROM categories c
                LEFT JOIN book_categories bc ON bc.category_id = c.id
                LEFT JOIN books b ON b.id = bc.book_id AND b.deleted_at IS NULL
                GROUP BY c.id, c.name
                ORDER BY c.name COLLATE NOCASE
            """).fetchall()
            return [Category(id=r["id"], name=r["name"], book_count=r["book_count"]) for r in rows]
        finally:
            conn.close()

    # ------------------------- Circulation ------------------------- #
    def count_active_loans(self, user_id: int) -> int:
        conn = get_db_connection()
        try:
            return conn.execute(
                "SELECT COUNT(*) FROM borrowed_books WHERE user_id = ? AND returned_at IS NULL",
                (user_id,),
            ).fetchone()[0]
        finally:
            conn.close()

    def borrow_book(self, user_id: int, book_id: int, now: Optional[datetime] = None) -> BorrowedBook:
        """Lend one copy of ``book_id`` to ``user_id`` for the loan period."""
        now = now or utc_now()
        with transaction() as conn:
            active = conn.execute(
                "SELECT COUNT(*) FROM borrowed_books WHERE user_id = ? AND returned_at IS NULL",
                (user_id,),
            ).fetchone()[0]
            if active >= self.borrowing_limit:
                raise BorrowingLimitError("Borrowing limit reached. Return a book to borrow another.")

            cursor = conn.execute(
                "UPDATE books SET copies = copies - 1 WHERE id = ? AND deleted_at IS NULL AND copies > 0",
                (book_id,),
            )
            if cursor.rowcount == 0:
                raise BookUnavailableError("Book not available.")

            cursor = conn.execute(
                "INSERT INTO borrowed_books (user_id, book_id, borrowed_at, due_date) VALUES (?, ?, ?, ?)",
                (user_id, book_id, to_iso(now), to_iso(due_date_from(now, self.loan_period_days))),
            )
            loan_id = cursor.lastrowid
        return self.get_borrowed_book(loan_id)

    def return_book(self, user_id: int, book_id: int, now: Optional[datetime] = None) -> BorrowedBook:
        """Close the user's open loan of ``book_id`` and record the fine owed."""
        now = now or utc_now()
        with transaction() as conn:
            row = conn.execute(
                """SELECT * FROM borrowed_books
                   WHERE user_id = ? AND book_id = ? AND returned_at IS NULL
                   ORDER BY borrowed_at LIMIT 1""",
                (user_id, book_id),
            ).fetchone()
            if not row:
                raise LookupError("Borrowing record not found.")
            loan = BorrowedBook.from_row(row)
            fine = loan.current_fine(self.daily_fine, now)
            conn.execute(
                "UPDATE borrowed_books SET returned_at = ?, fine = ? WHERE id = ?",
                (to_iso(now), fine, loan.id),
            )
            # A soft-deleted book still gets its copy back, it is just not listed.
            conn.execute("UPDATE books SET copies = copies + 1 WHERE id = ?", (book_id,))
        return self.get_borrowed_book(loan.id)

    def borrowing_limit_status(self, user_id: int) -> Dict[str, int]:
        borrowed = self.count_active_loans(user_id)
        return {
            "borrowingLimit": self.borrowing_limit,
            "borrowedCount": borrowed,
            "remaining": max(0, self.borrowing_limit - borrowed),
        }

    def get_borrowed_book(self, borrowed_book_id: int) -> Optional[BorrowedBook]:
        conn = get_db_connection()
        try:
            row = conn.execute(
                f"SELECT {_LOAN_COLUMNS} FROM borrowed_books bb JOIN books b ON b.id = bb.book_id WHERE bb.id = ?",
                (borrowed_book_id,),
            ).fetchone()
            return BorrowedBook.from_row(row) if row else None
        finally:
            conn.close()

    def list_active_loans(self, user_id: int) -> List[BorrowedBook]:
        conn = get_db_connection()
        try:
            rows = conn.execute(
                f"""SELECT {_LOAN_COLUMNS} FROM borrowed_books bb JOIN books b ON b.id = bb.book_id
                    WHERE bb.user_id = ? AND bb.returned_at IS NULL
                    ORDER BY bb.due_date""",
                (user_id,),
            ).fetchall()
            return [BorrowedBook.from_row(r) for r in rows]
        finally:
            conn.close()

    # ------------------------- Fines ------------------------- #
    def fine_summary(self, loan: BorrowedBook, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Fine accrued so far on a loan; returned loans report zero."""
        if loan.is_returned:
            return {"fine": 0, "message": "Book has already been returned."}
        days = loan.overdue_days(now)
        return {"overdueDays": days, "fine": days * self.daily_fine}

    def total_fine(self, user_id: int, now: Optional[datetime] = None) -> float:
        """Sum of fines accruing on the user's unreturned loans."""
        now = now or utc_now()
        return sum(loan.current_fine(self.daily_fine, now) for loan in self.list_active_loans(user_id))

    # ------------------------- Payments ------------------------- #
    def pay_fine(self, user_id: int, borrowed_book_id: int, amount: float,
                 now: Optional[datetime] = None) -> Transaction:
        """Settle the stored fine of a returned loan and record the payment."""
        if not math.isfinite(amount) or amount <= 0:
            raise PaymentError("Payment amount must be a positive number.")
        now = now or utc_now()
        with transaction() as conn:
            row = conn.execute(
                "SELECT id, fine FROM borrowed_books WHERE id = ? AND user_id = ?",
                (borrowed_book_id, user_id),
            ).fetchone()
            if not row:
                raise LookupError("Borrowing record not found.")
            fine = row["fine"]
            if fine <= 0:
                raise PaymentError("No fines to pay for this record.")
            if amount < fine:
                raise PaymentError(f"Insufficient payment. Fine is {fine:g}.")
            conn.execute("UPDATE borrowed_books SET fine = 0 WHERE id = ?", (borrowed_book_id,))
            cursor = conn.execute(
                "INSERT INTO transactions (user_id, borrowed_book_id, amount, payment_date) VALUES (?, ?, ?, ?)",
                (user_id, borrowed_book_id, amount, to_iso(now)),
            )
            transaction_id = cursor.lastrowid
        return self.get_transaction(transaction_id)

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        conn = get_db_connection()
        try:
            row = conn.execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,)).fetchone()
            return Transaction.from_row(row) if row else None
        finally:
            conn.close()

    def generate_invoice(self, transaction_id: int) -> Optional[Dict[str, Any]]:
        conn = get_db_connection()
        try:
            row = conn.execute("""
                SELECT t.id, t.user_id, t.amount, t.payment_date,
                       u.name AS user_name, u.email AS user_email,
                       b.title AS book_title, b.isbn AS book_isbn
                FROM transactions t
                JOIN users u ON u.id = t.user_id
                LEFT JOIN borrowed_books bb ON bb.id = t.borrowed_book_id
                LEFT JOIN books b ON b.id = bb.book_id
                WHERE t.id = ?
            """, (transaction_id,)).fetchone()
        finally:
            conn.close()
        if not row:
            return None
        book = None
        if row["book_title"] is not None:
            book = {"title": row["book_title"], "isbn": row["book_isbn"]}
        return {
            "transactionId": row["id"],
            "user": {"id": row["user_id"], "name": row["user_name"], "email": row["user_email"]},
            "book": book,
            "amount": row["amount"],
            "paymentDate": row["payment_date"],
        }

    # ------------------------- Analytics ------------------------- #
    def most_borrowed_books(self, limit: int = 10) -> List[Dict[str, Any]]:
        conn = get_db_connection()
        try:
            rows = conn.execute("""
                SELECT b.id, b.title, b.isbn, COUNT(bb.id) AS borrow_count
                FROM borrowed_books bb
                JOIN books b ON b.id = bb.book_id
                GROUP BY b.id, b.title, b.isbn
                ORDER BY borrow_count DESC, b.id
                LIMIT ?
            """, (limit,)).fetchall()
            return [
                {"id": r["id"], "title": r["title"], "isbn": r["isbn"], "borrowCount": r["borrow_count"]}
                for r in rows
            ]
        finally:
            conn.close()

    def monthly_usage_report(self, month: Optional[int] = None, year: Optional[int] = None,
                             now: Optional[datetime] = None) -> Dict[str, Any]:
        """Loans started in the given UTC month; defaults to the current month."""
        now = now or utc_now()
        month = now.month if month is None else month
        year = now.year if year is None else year
        if not 1 <= month <= 12:
            raise ValueError("Month must be between 1 and 12.")
        if not 1 <= year <= 9998:
            raise ValueError("Invalid year.")

        start = datetime(year, month, 1, tzinfo=timezone.utc)
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc) if month == 12 \
            else datetime(year, month + 1, 1, tzinfo=timezone.utc)

        conn = get_db_connection()
        try:
            rows = conn.execute(f"""
                SELECT {_LOAN_COLUMNS}, u.name AS user_name
                FROM borrowed_books bb
                JOIN books b ON b.id = bb.book_id
                JOIN users u ON u.id = bb.user_id
                WHERE bb.borrowed_at >= ? AND bb.borrowed_at < ?
                ORDER BY bb.borrowed_at, bb.id
            """, (to_iso(start), to_iso(end))).fetchall()
        finally:
            conn.close()

        loans = [BorrowedBook.from_row(r) for r in rows]
        return {
            "month": month,
            "year": year,
            "totalBorrowed": len(loans),
            "usersInvolved": len({loan.user_id for loan in loans}),
            "borrowedBooks": [loan.to_dict() for loan in loans],
        }

    def get_statistics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now_iso = to_iso(now or utc_now())
        conn = get_db_connection()
        try:
            cursor = conn.cursor()
            total_books = cursor.execute("SELECT COUNT(*) FROM books WHERE deleted_at IS NULL").fetchone()[0]
            copies = cursor.execute(
                "SELECT COALESCE(SUM(copies), 0) FROM books WHERE deleted_at IS NULL"
            ).fetchone()[0]
            total_users = cursor.execute("SELECT COUNT(*) FROM users WHERE deleted_at IS NULL").fetchone()[0]
            active_loans = cursor.execute(
                "SELECT COUNT(*) FROM borrowed_books WHERE returned_at IS NULL"
            ).fetchone()[0]
            overdue = cursor.execute(
                "SELECT COUNT(*) FROM borrowed_books WHERE returned_at IS NULL AND due_date < ?",
                (now_iso,),
            ).fetchone()[0]
            unpaid = cursor.execute("SELECT COALESCE(SUM(fine), 0) FROM borrowed_books").fetchone()[0]
            return {
                "total_books": total_books,
                "available_copies": copies,
                "total_users": total_users,
                "active_loans": active_loans,
                "overdue_loans": overdue,
                "unpaid_fines": unpaid,
            }
        finally:
            conn.close()

    # ------------------------- Reminders ------------------------- #
    def loans_due_soon(self, now: Optional[datetime] = None) -> List[BorrowedBook]:
        """Open loans falling due within the next day."""
        now = now or utc_now()
        return self._open_loans_with_users(
            "bb.due_date >= ? AND bb.due_date <= ?",
            (to_iso(now), to_iso(now + timedelta(days=1))),
        )

    def overdue_loans(self, now: Optional[datetime] = None) -> List[BorrowedBook]:
        now = now or utc_now()
        return self._open_loans_with_users("bb.due_date < ?", (to_iso(now),))

    def _open_loans_with_users(self, condition: str, params: tuple) -> List[BorrowedBook]:
        conn = get_db_connection()
        try:
            rows = conn.execute(f"""
                SELECT {_LOAN_COLUMNS}, u.name AS user_name, u.email AS user_email
                FROM borrowed_books bb
                JOIN books b ON b.id = bb.book_id
                JOIN users u ON u.id = bb.user_id
                WHERE bb.returned_at IS NULL AND {condition}
                ORDER BY bb.due_date, bb.id
            """, params).fetchall()
            return [BorrowedBook.from_row(r) for r in rows]
        finally:
            conn.close()

    # ------------------------- Persistence helpers ------------------------- #
    @staticmethod
    def _link_names(conn: sqlite3.Connection, book_id: int, table: str, link_table: str,
                    link_column: str, names: Optional[List[str]]) -> None:
        """Connect ``book_id`` to rows of ``table`` by name, creating missing ones."""
        for name in TextValidator.clean_names(names):
            row = conn.execute(f"SELECT id FROM {table} WHERE name = ? COLLATE NOCASE", (name,)).fetchone()
            if row:
                target_id = row["id"]
            else:
                target_id = conn.execute(f"INSERT INTO {table} (name) VALUES (?)", (name,)).lastrowid
            conn.execute(
                f"INSERT OR IGNORE INTO {link_table} (book_id, {link_column}) VALUES (?, ?)",
                (book_id, target_id),
            )

    @staticmethod
    def _books_from_rows(conn: sqlite3.Connection, rows: List[sqlite3.Row]) -> List[Book]:
        if not rows:
            return []
        ids = [r["id"] for r in rows]
        placeholders = ", ".join("?" for _ in ids)
        authors: Dict[int, List[str]] = {i: [] for i in ids}
        categories: Dict[int, List[str]] = {i: [] for i in ids}
        for r in conn.execute(
            f"""SELECT ba.book_id, a.name FROM book_authors ba JOIN authors a ON a.id = ba.author_id
                WHERE ba.book_id IN ({placeholders}) ORDER BY a.name COLLATE NOCASE""",
            ids,
        ):
            authors[r["book_id"]].append(r["name"])
        for r in conn.execute(
            f"""SELECT bc.book_id, c.name FROM book_categories bc JOIN categories c ON c.id = bc.category_id
                WHERE bc.book_id IN ({placeholders}) ORDER BY c.name COLLATE NOCASE""",
            ids,
        ):
            categories[r["book_id"]].append(r["name"])
        return [Book.from_row(r, authors[r["id"]], categories[r["id"]]) for r in rows]

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None


class DuplicateRecordError(ValueError):
    pass


class BorrowingLimitError(ValueError):
    pass


class BookUnavailableError(LookupError):
    pass


class PaymentError(ValueError):
    pass
