import logging
from typing import List, Optional

from ebook_lending.catalog import fetch_ebook
from ebook_lending.config import settings
from ebook_lending.database import get_db_connection, transaction
from ebook_lending.errors import NotFound, ValidationError
from ebook_lending.logging_config import fields
from ebook_lending.models import WishlistEntry
from ebook_lending.users import fetch_user


class WishlistStore:
    def __init__(self, max_size: Optional[int] = None, logger: Optional[logging.Logger] = None) -> None:
        self.max_size = max_size or settings.max_wishlist_size
        self.logger = logger or logging.getLogger(__name__)

    def add(self, user_id: str, ebook_id: str) -> WishlistEntry:
        conn = get_db_connection()
        try:
            with transaction(conn):
                user = fetch_user(conn, user_id)
                if user is None:
                    raise NotFound("User not found.")
                ebook = fetch_ebook(conn, ebook_id)
                if ebook is None:
                    raise NotFound("Ebook not found.")
                size = conn.execute("SELECT COUNT(*) FROM wishlist WHERE user_id = ?", (user_id,)).fetchone()[0]
                if size >= self.max_size:
                    raise ValidationError(f"You cannot add more than {self.max_size} eBooks to your Wishlist.")
                exists = conn.execute("SELECT 1 FROM wishlist WHERE user_id = ? AND ebook_id = ?",
                                      (user_id, ebook_id)).fetchone()
                if exists:
                    raise ValidationError(f"{ebook.title} is already in {user.name}'s wishlist.")
                conn.execute("INSERT INTO wishlist (user_id, ebook_id) VALUES (?, ?)", (user_id, ebook_id))
                row = conn.execute("SELECT created_at FROM wishlist WHERE user_id = ? AND ebook_id = ?",
                                   (user_id, ebook_id)).fetchone()
            self.logger.info("Wishlist entry added", extra=fields(user_id=user_id, ebook_id=ebook_id))
            return WishlistEntry(user_id=user_id, ebook_id=ebook_id, created_at=row["created_at"])
        finally:
            conn.close()

    def remove(self, user_id: str, ebook_id: str) -> bool:
        conn = get_db_connection()
        try:
            with transaction(conn):
                if fetch_user(conn, user_id) is None:
                    raise NotFound("User not found.")
                if fetch_ebook(conn, ebook_id) is None:
                    raise NotFound("Ebook not found.")
                cursor = conn.execute("DELETE FROM wishlist WHERE user_id = ? AND ebook_id = ?", (user_id, ebook_id))
            removed = cursor.rowcount > 0
            if removed:
                self.logger.info("Wishlist entry removed", extra=fields(user_id=user_id, ebook_id=ebook_id))
            return removed
        finally:
            conn.close()

    def list_for_user(self, user_id: str) -> List[WishlistEntry]:
        conn = get_db_connection()
        try:
            if fetch_user(conn, user_id) is None:
                raise NotFound("User not found.")
            rows = conn.execute(
                "SELECT user_id, ebook_id, created_at FROM wishlist WHERE user_id = ? ORDER BY created_at",
                (user_id,),
            ).fetchall()
            return [WishlistEntry(**dict(r)) for r in rows]
        finally:
            conn.close()
