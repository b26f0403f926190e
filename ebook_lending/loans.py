import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ebook_lending.catalog import fetch_ebook
from ebook_lending.database import get_db_connection, transaction
from ebook_lending.errors import AlreadyEnded, LendingError, NotFound, NotLoggedIn, Outcome
from ebook_lending.inventory import InventoryLedger
from ebook_lending.logging_config import fields
from ebook_lending.models import Loan
from ebook_lending.quota import UserLoanQuota
from ebook_lending.services.email_service import EmailNotifier
from ebook_lending.users import fetch_user

_SELECT = "SELECT id, user_id, ebook_id, start_date, due_date, live FROM loans"


def fetch_loan(conn: sqlite3.Connection, loan_id: str) -> Optional[Loan]:
    row = conn.execute(_SELECT + " WHERE id = ?", (loan_id,)).fetchone()
    return Loan.from_row(row) if row else None


def _timestamp(value: datetime) -> str:
    # fixed width so due dates compare correctly as text
    return value.isoformat(timespec="seconds")


class LoanLifecycleManager:
    """Creates and ends loans.

    A loan's creation touches three rows (the title's stock, the user's loan
    count and the new loan) and ending it touches the same three. Each of
    those is done inside a single store transaction, so any failure part way
    through leaves none of the changes behind.
    """

    def __init__(self, inventory: Optional[InventoryLedger] = None, quota: Optional[UserLoanQuota] = None,
                 notifier: Optional[EmailNotifier] = None, clock: Callable[[], datetime] = datetime.now,
                 logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.inventory = inventory or InventoryLedger()
        self.quota = quota or UserLoanQuota()
        self.notifier = notifier or EmailNotifier()
        self.clock = clock

    # ------------------------- Core operations ------------------------- #
    def create_loan(self, user_id: str, ebook_id: str) -> Outcome[Loan]:
        conn = get_db_connection()
        try:
            with transaction(conn):
                user = fetch_user(conn, user_id)
                if user is None:
                    raise NotFound("User not found.")
                if not user.logged_in:
                    raise NotLoggedIn("User not logged in.")
                ebook = fetch_ebook(conn, ebook_id)
                if ebook is None:
                    raise NotFound("EBook not found.")

                self.inventory.reserve_copy(conn, ebook_id)
                self.quota.admit_loan(conn, user_id)

                now = self.clock().replace(microsecond=0)
                loan = Loan(user_id=user_id, ebook_id=ebook_id, start_date=now,
                            due_date=now + timedelta(days=ebook.max_loan_duration))
                conn.execute(
                    "INSERT INTO loans (id, user_id, ebook_id, start_date, due_date, live) VALUES (?, ?, ?, ?, ?, 1)",
                    (loan.id, loan.user_id, loan.ebook_id, _timestamp(loan.start_date), _timestamp(loan.due_date)),
                )
        except LendingError as e:
            self.logger.info("Loan refused: %s", e.message,
                             extra=fields(user_id=user_id, ebook_id=ebook_id, kind=e.kind.value))
            return Outcome.failure(e)
        finally:
            conn.close()

        self.logger.info("Loan created", extra=fields(loan_id=loan.id, user_id=user_id, ebook_id=ebook_id,
                                                      due_date=_timestamp(loan.due_date)))
        self.notifier.send_confirmation(loan)
        return Outcome.success(loan)

    def terminate_loan(self, loan_id: str) -> Outcome[Loan]:
        conn = get_db_connection()
        try:
            with transaction(conn):
                loan = fetch_loan(conn, loan_id)
                if loan is None:
                    raise NotFound("Loan hasn't been found. Please have another go")
                # check-and-set: only one terminate can flip a live loan
                cursor = conn.execute("UPDATE loans SET live = 0 WHERE id = ? AND live = 1", (loan_id,))
                if cursor.rowcount == 0:
                    raise AlreadyEnded("Loan has already ended.")
                self.inventory.release_copy(conn, loan.ebook_id)
                self.quota.release_loan(conn, loan.user_id)
                loan.live = False
        except LendingError as e:
            self.logger.info("Loan termination refused: %s", e.message,
                             extra=fields(loan_id=loan_id, kind=e.kind.value))
            return Outcome.failure(e)
        finally:
            conn.close()

        self.logger.info("Loan ended", extra=fields(loan_id=loan_id, user_id=loan.user_id, ebook_id=loan.ebook_id))
        self.notifier.send_cancellation(loan)
        return Outcome.success(loan)

    def get_loan(self, loan_id: str) -> Outcome[Loan]:
        conn = get_db_connection()
        try:
            loan = fetch_loan(conn, loan_id)
        finally:
            conn.close()
        if loan is None:
            return Outcome.failure(NotFound("Loan hasn't been found. Please have another go"))
        return Outcome.success(loan)

    def list_loans_for_user(self, user_id: str) -> Outcome[List[Loan]]:
        """All loans of a user, live and ended, oldest first."""
        conn = get_db_connection()
        try:
            if fetch_user(conn, user_id) is None:
                return Outcome.failure(NotFound("User not found."))
            rows = conn.execute(_SELECT + " WHERE user_id = ? ORDER BY start_date, id", (user_id,)).fetchall()
            return Outcome.success([Loan.from_row(r) for r in rows])
        finally:
            conn.close()

    # ------------------------- Reminders ------------------------- #
    def loans_due_soon(self, within_days: int) -> List[Loan]:
        """Live loans whose due date falls between now and ``within_days`` from now."""
        now = self.clock().replace(microsecond=0)
        conn = get_db_connection()
        try:
            rows = conn.execute(
                _SELECT + " WHERE live = 1 AND due_date >= ? AND due_date <= ? ORDER BY due_date",
                (_timestamp(now), _timestamp(now + timedelta(days=within_days))),
            ).fetchall()
            return [Loan.from_row(r) for r in rows]
        finally:
            conn.close()

    def send_due_reminders(self, within_days: int) -> int:
        """Email every borrower whose loan is about to end. Returns the number of emails sent."""
        sent = 0
        now = self.clock().replace(microsecond=0)
        for loan in self.loans_due_soon(within_days):
            if self.notifier.send_reminder(loan, now):
                sent += 1
        self.logger.info("Due-date reminders sent", extra=fields(sent=sent, within_days=within_days))
        return sent
