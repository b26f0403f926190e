import logging
import sqlite3
from typing import Optional

from ebook_lending.errors import LoanLimitExceeded, NotFound, NotLoggedIn
from ebook_lending.logging_config import fields

MAX_LOANS = 10


class UserLoanQuota:
    """Sole writer of ``users.total_loaned``; enforces the fixed cap of concurrent loans."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def admit_loan(self, conn: sqlite3.Connection, user_id: str) -> int:
        row = conn.execute("SELECT logged_in FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise NotFound("User not found.")
        if not row["logged_in"]:
            raise NotLoggedIn("User not logged in.")

        cursor = conn.execute(
            "UPDATE users SET total_loaned = total_loaned + 1 WHERE id = ? AND total_loaned < ?",
            (user_id, MAX_LOANS),
        )
        if cursor.rowcount == 0:
            self.logger.info("Loan refused, quota reached", extra=fields(user_id=user_id, cap=MAX_LOANS))
            raise LoanLimitExceeded(f"You cannot have more than {MAX_LOANS} loans at a time.")
        total = self.total_loaned(conn, user_id)
        self.logger.info("Loan admitted", extra=fields(user_id=user_id, total_loaned=total))
        return total

    def release_loan(self, conn: sqlite3.Connection, user_id: str) -> int:
        cursor = conn.execute(
            "UPDATE users SET total_loaned = MAX(total_loaned - 1, 0) WHERE id = ?",
            (user_id,),
        )
        if cursor.rowcount == 0:
            raise NotFound("User not found.")
        total = self.total_loaned(conn, user_id)
        self.logger.info("Loan released", extra=fields(user_id=user_id, total_loaned=total))
        return total

    def total_loaned(self, conn: sqlite3.Connection, user_id: str) -> int:
        row = conn.execute("SELECT total_loaned FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise NotFound("User not found.")
        return row["total_loaned"]
