import logging
import sqlite3
from typing import List, Optional

from ebook_lending.catalog import EBookCatalog
from ebook_lending.database import get_db_connection, transaction
from ebook_lending.errors import NotFound, ValidationError
from ebook_lending.loans import fetch_loan
from ebook_lending.logging_config import fields
from ebook_lending.models import Review
from ebook_lending.validators import RatingValidator, TextValidator

_SELECT = "SELECT id, loan_id, user_id, ebook_id, rating, comment, created_at FROM reviews"


class ReviewStore:
    """Reviews are attributed to a loan, so only someone who borrowed a title can rate it."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def create_review(self, loan_id: str, rating: int, comment: Optional[str] = None) -> Review:
        if not RatingValidator.is_valid(rating):
            raise ValidationError(
                f"Rating must be between {RatingValidator.MIN_RATING} and {RatingValidator.MAX_RATING}."
            )

        conn = get_db_connection()
        try:
            with transaction(conn):
                loan = fetch_loan(conn, loan_id)
                if loan is None:
                    raise NotFound("Loan not found.")
                if loan.live:
                    raise ValidationError("You can only review a loan once it has ended.")
                review = Review(loan_id=loan.id, user_id=loan.user_id, ebook_id=loan.ebook_id,
                                rating=rating, comment=TextValidator.sanitize_text(comment) or None)
                try:
                    conn.execute(
                        "INSERT INTO reviews (id, loan_id, user_id, ebook_id, rating, comment) VALUES (?, ?, ?, ?, ?, ?)",
                        (review.id, review.loan_id, review.user_id, review.ebook_id, review.rating, review.comment),
                    )
                except sqlite3.IntegrityError as e:
                    raise ValidationError("This loan has already been reviewed.") from e
                EBookCatalog.refresh_rating(conn, loan.ebook_id)
                row = conn.execute("SELECT created_at FROM reviews WHERE id = ?", (review.id,)).fetchone()
                review.created_at = row["created_at"]
            self.logger.info("Review added", extra=fields(review_id=review.id, loan_id=loan_id, rating=rating))
            return review
        finally:
            conn.close()

    def reviews_for_ebook(self, ebook_id: str) -> List[Review]:
        return self._query(" WHERE ebook_id = ? ORDER BY created_at DESC", (ebook_id,))

    def reviews_for_user(self, user_id: str) -> List[Review]:
        return self._query(" WHERE user_id = ? ORDER BY created_at DESC", (user_id,))

    def delete_review(self, review_id: str) -> bool:
        conn = get_db_connection()
        try:
            with transaction(conn):
                row = conn.execute("SELECT ebook_id FROM reviews WHERE id = ?", (review_id,)).fetchone()
                if row is None:
                    return False
                conn.execute("DELETE FROM reviews WHERE id = ?", (review_id,))
                EBookCatalog.refresh_rating(conn, row["ebook_id"])
            self.logger.info("Review deleted", extra=fields(review_id=review_id))
            return True
        finally:
            conn.close()

    def _query(self, where: str, params: tuple) -> List[Review]:
        conn = get_db_connection()
        try:
            return [Review.from_row(r) for r in conn.execute(_SELECT + where, params).fetchall()]
        finally:
            conn.close()
