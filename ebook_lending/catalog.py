import logging
import random
import sqlite3
from typing import List, Optional

from ebook_lending.config import settings
from ebook_lending.database import get_db_connection, transaction
from ebook_lending.errors import NotFound, ValidationError
from ebook_lending.logging_config import fields
from ebook_lending.models import EBook
from ebook_lending.validators import TextValidator

_SELECT = """
    SELECT id, title, author, category, price, description, cover_url,
           quantity_available, max_loan_duration, avg_rating
    FROM ebooks
"""


def fetch_ebook(conn: sqlite3.Connection, ebook_id: str) -> Optional[EBook]:
    row = conn.execute(_SELECT + " WHERE id = ?", (ebook_id,)).fetchone()
    return EBook.from_row(row) if row else None


class EBookCatalog:
    """Catalog of titles. Stock counts are read here but only the inventory ledger changes them."""

    def __init__(self, rng: Optional[random.Random] = None, logger: Optional[logging.Logger] = None) -> None:
        self.rng = rng or random.Random(settings.recommendation_seed)
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------- Core operations ------------------------- #
    def add_ebook(self, ebook: EBook) -> EBook:
        """Add a new title. Titles are unique per (title, author)."""
        if not TextValidator.validate_title(ebook.title) or not TextValidator.validate_title(ebook.author):
            raise ValidationError("Title and author are required.")
        if ebook.price < 0:
            raise ValidationError("Price cannot be negative.")
        if ebook.quantity_available < 0:
            raise ValidationError("Quantity available cannot be negative.")
        if ebook.max_loan_duration <= 0:
            raise ValidationError("Max loan duration must be a positive number of days.")

        conn = get_db_connection()
        try:
            with transaction(conn):
                try:
                    conn.execute(
                        """
                        INSERT INTO ebooks (id, title, author, category, price, description, cover_url,
                                            quantity_available, max_loan_duration, avg_rating)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (ebook.id, ebook.title.strip(), ebook.author.strip(), ebook.category, ebook.price,
                         ebook.description, ebook.cover_url, ebook.quantity_available,
                         ebook.max_loan_duration, ebook.avg_rating),
                    )
                except sqlite3.IntegrityError as e:
                    raise ValidationError(
                        f"EBook with title: {ebook.title}, and Author: {ebook.author} already exists"
                    ) from e
            self.logger.info("EBook added", extra=fields(ebook_id=ebook.id, title=ebook.title))
            return ebook
        finally:
            conn.close()

    def get_ebook(self, ebook_id: str) -> Optional[EBook]:
        conn = get_db_connection()
        try:
            return fetch_ebook(conn, ebook_id)
        finally:
            conn.close()

    def list_ebooks(self) -> List[EBook]:
        conn = get_db_connection()
        try:
            rows = conn.execute(_SELECT + " ORDER BY title").fetchall()
            return [EBook.from_row(r) for r in rows]
        finally:
            conn.close()

    def search(self, *, title: Optional[str] = None, author: Optional[str] = None,
               category: Optional[str] = None, max_price: Optional[float] = None,
               min_rating: Optional[float] = None) -> List[EBook]:
        clauses, params = [], []
        if title:
            clauses.append("title LIKE ?")
            params.append(f"%{title}%")
        if author:
            clauses.append("author LIKE ?")
            params.append(f"%{author}%")
        if category:
            clauses.append("category = ?")
            params.append(category)
        if max_price is not None:
            clauses.append("price <= ?")
            params.append(max_price)
        if min_rating is not None:
            clauses.append("avg_rating >= ?")
            params.append(min_rating)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        conn = get_db_connection()
        try:
            rows = conn.execute(_SELECT + where + " ORDER BY title", params).fetchall()
            return [EBook.from_row(r) for r in rows]
        finally:
            conn.close()

    def update_ebook(self, ebook_id: str, *, title: Optional[str] = None, author: Optional[str] = None,
                     category: Optional[str] = None, description: Optional[str] = None,
                     price: Optional[float] = None, max_loan_duration: Optional[int] = None,
                     cover_url: Optional[str] = None) -> EBook:
        """Update descriptive fields. Stock is deliberately not updatable here."""
        if price is not None and price < 0:
            raise ValidationError("Price cannot be negative.")
        if max_loan_duration is not None and max_loan_duration <= 0:
            raise ValidationError("Max loan duration must be a positive number of days.")

        conn = get_db_connection()
        try:
            with transaction(conn):
                current = fetch_ebook(conn, ebook_id)
                if current is None:
                    raise NotFound(f"Ebook with id: {ebook_id} not found")
                current.title = title.strip() if title and title.strip() else current.title
                current.author = author.strip() if author and author.strip() else current.author
                current.category = category if category is not None else current.category
                current.description = description if description is not None else current.description
                current.price = price if price is not None else current.price
                current.max_loan_duration = max_loan_duration or current.max_loan_duration
                current.cover_url = cover_url if cover_url is not None else current.cover_url
                conn.execute(
                    """
                    UPDATE ebooks SET title = ?, author = ?, category = ?, description = ?,
                                      price = ?, max_loan_duration = ?, cover_url = ?
                    WHERE id = ?
                    """,
                    (current.title, current.author, current.category, current.description,
                     current.price, current.max_loan_duration, current.cover_url, ebook_id),
                )
            return current
        finally:
            conn.close()

    def delete_ebook(self, ebook_id: str) -> bool:
        conn = get_db_connection()
        try:
            with transaction(conn):
                active = conn.execute(
                    "SELECT COUNT(*) FROM loans WHERE ebook_id = ? AND live = 1", (ebook_id,)
                ).fetchone()[0]
                if active:
                    raise ValidationError("Cannot delete an ebook with active loans.")
                has_history = conn.execute(
                    "SELECT 1 FROM loans WHERE ebook_id = ? LIMIT 1", (ebook_id,)
                ).fetchone()
                if has_history:
                    raise ValidationError("Cannot delete an ebook referenced by past loans.")
                cursor = conn.execute("DELETE FROM ebooks WHERE id = ?", (ebook_id,))
            return cursor.rowcount > 0
        finally:
            conn.close()

    def recommend(self, count: Optional[int] = None) -> List[EBook]:
        """Pick a random handful of titles using the catalog's random source."""
        books = self.list_ebooks()
        count = settings.recommendation_count if count is None else count
        return self.rng.sample(books, min(count, len(books)))

    # ------------------------- Ratings ------------------------- #
    @staticmethod
    def refresh_rating(conn: sqlite3.Connection, ebook_id: str) -> float:
        """Recompute a title's average rating from its reviews."""
        row = conn.execute("SELECT AVG(rating) AS avg_rating FROM reviews WHERE ebook_id = ?",
                           (ebook_id,)).fetchone()
        avg = round(row["avg_rating"], 2) if row["avg_rating"] is not None else 0.0
        conn.execute("UPDATE ebooks SET avg_rating = ? WHERE id = ?", (avg, ebook_id))
        return avg
