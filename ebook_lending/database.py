import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from ebook_lending.config import settings
from ebook_lending.models import EBook

logger = logging.getLogger(__name__)

# Module-level so tests (and the CLI) can point every helper at another file
# by assigning database.DATABASE_FILE before opening connections.
DATABASE_FILE = settings.database_file

# Catalog shipped with a fresh install: (title, author, copies, category, price, max loan days, description, cover)
DEFAULT_EBOOKS = [
    ("1984", "George Orwell", 10, "Dystopian", 12.99, 21, "A dystopian novel about totalitarianism.",
     "https://m.media-amazon.com/images/I/612ADI+BVlL._AC_UF894,1000_QL80_.jpg"),
    ("To Kill a Mockingbird", "Harper Lee", 7, "Classic", 10.50, 14, "A novel about racial injustice.",
     "https://m.media-amazon.com/images/I/81gepf1eMqL._AC_UF894,1000_QL80_.jpg"),
    ("The Great Gatsby", "F. Scott Fitzgerald", 5, "Classic", 11.00, 14, "A story of wealth and illusion.",
     "https://m.media-amazon.com/images/I/81TLiZrasVL._AC_UF894,1000_QL80_.jpg"),
    ("Pride and Prejudice", "Jane Austen", 6, "Romance", 9.99, 14, "A romantic novel of manners.",
     "https://m.media-amazon.com/images/I/81a3sr-RgdL.jpg"),
    ("The Hobbit", "J.R.R. Tolkien", 8, "Fantasy", 13.49, 21, "A fantasy adventure prelude to LOTR.",
     "https://m.media-amazon.com/images/I/81mCE+uclxL._UF1000,1000_QL80_.jpg"),
    ("Sapiens", "Yuval Noah Harari", 10, "History", 14.99, 30, "A brief history of humankind.",
     "https://m.media-amazon.com/images/I/713jIoMO3UL.jpg"),
    ("The Catcher in the Rye", "J.D. Salinger", 4, "Fiction", 10.75, 14, "A novel about teenage angst.",
     "https://m.media-amazon.com/images/I/8125BDk3l9L._AC_UF894,1000_QL80_.jpg"),
    ("Brave New World", "Aldous Huxley", 6, "Dystopian", 11.50, 21, "A dystopia of pleasure and control.",
     "https://m.media-amazon.com/images/I/71GNqqXuN3L._AC_UF894,1000_QL80_.jpg"),
    ("The Alchemist", "Paulo Coelho", 9, "Adventure", 9.25, 14, "A philosophical journey for treasure.",
     "https://m.media-amazon.com/images/I/71CaTj9MAFL.jpg"),
    ("Thinking, Fast and Slow", "Daniel Kahneman", 5, "Psychology", 15.00, 30, "A deep dive into human thinking.",
     "https://m.media-amazon.com/images/I/61fdrEuPJwL._AC_UF894,1000_QL80_.jpg"),
]


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite store.

    Connections run in autocommit mode; multi-statement work goes through
    ``transaction()`` which issues its own BEGIN/COMMIT.
    """
    conn = sqlite3.connect(
        db_file or DATABASE_FILE,
        timeout=settings.db_busy_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the enclosed statements as one atomic unit.

    BEGIN IMMEDIATE takes the database write lock before the first read, so a
    concurrent writer in another process waits (up to the busy timeout)
    instead of interleaving its read-modify-write with ours. Any exception
    rolls back everything done inside the block and is re-raised.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


def create_tables() -> None:
    """Create the schema if it does not exist yet."""
    conn = get_db_connection()
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS ebooks (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                category TEXT,
                price REAL NOT NULL DEFAULT 0 CHECK(price >= 0),
                description TEXT,
                cover_url TEXT,
                quantity_available INTEGER NOT NULL DEFAULT 0 CHECK(quantity_available >= 0),
                max_loan_duration INTEGER NOT NULL CHECK(max_loan_duration > 0),
                avg_rating REAL NOT NULL DEFAULT 0,
                UNIQUE (title, author)
            );

            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT 'Anonymous',
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                address TEXT NOT NULL DEFAULT 'No Address',
                balance REAL NOT NULL DEFAULT 0 CHECK(balance >= 0),
                logged_in INTEGER NOT NULL DEFAULT 0,
                admin INTEGER NOT NULL DEFAULT 0,
                total_loaned INTEGER NOT NULL DEFAULT 0 CHECK(total_loaned >= 0 AND total_loaned <= 10)
            );

            CREATE TABLE IF NOT EXISTS loans (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id),
                ebook_id TEXT NOT NULL REFERENCES ebooks(id),
                start_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                live INTEGER NOT NULL DEFAULT 1
            );

            CREATE TABLE IF NOT EXISTS payments (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id),
                amount REAL NOT NULL CHECK(amount >= 0),
                payment_date TEXT NOT NULL,
                payment_time TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS reviews (
                id TEXT PRIMARY KEY,
                loan_id TEXT NOT NULL UNIQUE REFERENCES loans(id),
                user_id TEXT NOT NULL REFERENCES users(id),
                ebook_id TEXT NOT NULL REFERENCES ebooks(id),
                rating INTEGER NOT NULL CHECK(rating >= 1 AND rating <= 5),
                comment TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS wishlist (
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                ebook_id TEXT NOT NULL REFERENCES ebooks(id) ON DELETE CASCADE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (user_id, ebook_id)
            );

            CREATE INDEX IF NOT EXISTS idx_loans_user_id ON loans(user_id);
            CREATE INDEX IF NOT EXISTS idx_loans_ebook_live ON loans(ebook_id, live);
            CREATE INDEX IF NOT EXISTS idx_loans_due_date ON loans(due_date);
            CREATE INDEX IF NOT EXISTS idx_reviews_ebook_id ON reviews(ebook_id);
            CREATE INDEX IF NOT EXISTS idx_ebooks_category ON ebooks(category);
        """)
    finally:
        conn.close()


def seed_default_ebooks() -> int:
    """Insert the default catalog when the ebooks table is empty.

    Returns the number of titles inserted.
    """
    conn = get_db_connection()
    try:
        with transaction(conn):
            count = conn.execute("SELECT COUNT(*) FROM ebooks").fetchone()[0]
            if count > 0:
                return 0
            books = [
                EBook(title=title, author=author, quantity_available=copies, category=category,
                      price=price, max_loan_duration=days, description=description, cover_url=cover)
                for title, author, copies, category, price, days, description, cover in DEFAULT_EBOOKS
            ]
            conn.executemany(
                """
                INSERT INTO ebooks (id, title, author, category, price, description, cover_url,
                                    quantity_available, max_loan_duration, avg_rating)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [(b.id, b.title, b.author, b.category, b.price, b.description, b.cover_url,
                  b.quantity_available, b.max_loan_duration, b.avg_rating) for b in books],
            )
        logger.info("Seeded %d default ebooks", len(books))
        return len(books)
    finally:
        conn.close()


def initialize_database(seed: Optional[bool] = None) -> None:
    """Create tables and, unless disabled, seed the default catalog."""
    create_tables()
    if settings.seed_default_ebooks if seed is None else seed:
        seed_default_ebooks()
