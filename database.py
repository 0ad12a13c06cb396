import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator

from dotenv import load_dotenv

# Load .env before reading LIBRARY_DB_FILE, config may not be imported yet.
load_dotenv()

logger = logging.getLogger(__name__)

# Default database file. Library(db_file=...) overrides this at runtime.
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or "library.db"


def get_db_connection() -> sqlite3.Connection:
    """Open a connection to the SQLite database with rows addressable by column name."""
    conn = sqlite3.connect(DATABASE_FILE)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run a block of statements as one write transaction.

    BEGIN IMMEDIATE takes the write lock up front, so checks made inside the
    block (borrow counts, available copies, outstanding fines) still hold at commit.
    """
    conn = get_db_connection()
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _existing_columns(cursor: sqlite3.Cursor, table: str) -> list[str]:
    cursor.execute(f"PRAGMA table_info({table})")
    return [column[1] for column in cursor.fetchall()]


def create_tables() -> None:
    """Create the tables the library needs if they are missing."""
    conn = get_db_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                password TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'member' CHECK(role IN ('admin', 'member')),
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS authors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT UNIQUE NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT UNIQUE NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                isbn TEXT UNIQUE NOT NULL,
                copies INTEGER NOT NULL DEFAULT 0 CHECK(copies >= 0),
                created_at TEXT NOT NULL,
                updated_at TEXT,
                deleted_at TEXT
            )
        """)

        # Book-Author and Book-Category link tables
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS book_authors (
                book_id INTEGER NOT NULL,
                author_id INTEGER NOT NULL,
                PRIMARY KEY (book_id, author_id),
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
                FOREIGN KEY (author_id) REFERENCES authors(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS book_categories (
                book_id INTEGER NOT NULL,
                category_id INTEGER NOT NULL,
                PRIMARY KEY (book_id, category_id),
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
                FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS borrowed_books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                borrowed_at TEXT NOT NULL,
                due_date TEXT NOT NULL,
                returned_at TEXT,
                fine REAL NOT NULL DEFAULT 0,
                FOREIGN KEY (user_id) REFERENCES users(id),
                FOREIGN KEY (book_id) REFERENCES books(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                borrowed_book_id INTEGER NOT NULL,
                amount REAL NOT NULL,
                payment_date TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id),
                FOREIGN KEY (borrowed_book_id) REFERENCES borrowed_books(id)
            )
        """)

        # Columns added after the first release of the users table
        columns = _existing_columns(cursor, "users")
        if "verified" not in columns:
            cursor.execute("ALTER TABLE users ADD COLUMN verified INTEGER NOT NULL DEFAULT 0")
        if "verification_token" not in columns:
            cursor.execute("ALTER TABLE users ADD COLUMN verification_token TEXT")
        if "deleted_at" not in columns:
            cursor.execute("ALTER TABLE users ADD COLUMN deleted_at TEXT")

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_deleted_at ON books(deleted_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrowed_user_open ON borrowed_books(user_id, returned_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrowed_due_date ON borrowed_books(due_date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_borrowed_borrowed_at ON borrowed_books(borrowed_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_users_verification_token ON users(verification_token)")

        conn.commit()
    finally:
        conn.close()


def initialize_database() -> None:
    """Create the schema (idempotent)."""
    create_tables()
    logger.debug("Database ready at %s", DATABASE_FILE)
