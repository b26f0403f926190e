import logging
import sqlite3
from typing import Optional

from ebook_lending.errors import NotFound, OutOfStock
from ebook_lending.logging_config import fields


class InventoryLedger:
    """Sole writer of ``ebooks.quantity_available``.

    Every mutator expects to run inside ``database.transaction()``; the
    decrement is a conditional UPDATE so the count can never go below zero
    even when two requests race for the last copy.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def reserve_copy(self, conn: sqlite3.Connection, ebook_id: str) -> int:
        """Take one copy of a title. Returns the remaining count."""
        cursor = conn.execute(
            "UPDATE ebooks SET quantity_available = quantity_available - 1 "
            "WHERE id = ? AND quantity_available > 0",
            (ebook_id,),
        )
        if cursor.rowcount == 0:
            self._require_title(conn, ebook_id)
            self.logger.info("Reservation refused, no copies left", extra=fields(ebook_id=ebook_id))
            raise OutOfStock("EBook is out of stock.")
        remaining = self.available(conn, ebook_id)
        self.logger.info("Copy reserved", extra=fields(ebook_id=ebook_id, remaining=remaining))
        return remaining

    def release_copy(self, conn: sqlite3.Connection, ebook_id: str) -> int:
        """Return one copy of a title. Returns the new count.

        There is no ceiling: the store does not record a title's original stock.
        """
        cursor = conn.execute(
            "UPDATE ebooks SET quantity_available = quantity_available + 1 WHERE id = ?",
            (ebook_id,),
        )
        if cursor.rowcount == 0:
            raise NotFound("EBook not found.")
        remaining = self.available(conn, ebook_id)
        self.logger.info("Copy released", extra=fields(ebook_id=ebook_id, remaining=remaining))
        return remaining

    def available(self, conn: sqlite3.Connection, ebook_id: str) -> int:
        row = conn.execute("SELECT quantity_available FROM ebooks WHERE id = ?", (ebook_id,)).fetchone()
        if row is None:
            raise NotFound("EBook not found.")
        return row["quantity_available"]

    @staticmethod
    def _require_title(conn: sqlite3.Connection, ebook_id: str) -> None:
        if conn.execute("SELECT 1 FROM ebooks WHERE id = ?", (ebook_id,)).fetchone() is None:
            raise NotFound("EBook not found.")
