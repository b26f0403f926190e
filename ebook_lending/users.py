import hashlib
import logging
import math
import secrets
import sqlite3
from typing import Optional

from ebook_lending.database import get_db_connection, transaction
from ebook_lending.errors import NotFound, NotLoggedIn, ValidationError
from ebook_lending.logging_config import fields
from ebook_lending.models import User
from ebook_lending.validators import EmailValidator, TextValidator

_SELECT = """
    SELECT id, name, email, address, balance, logged_in, admin, total_loaned
    FROM users
"""

_PBKDF2_ITERATIONS = 120_000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), _PBKDF2_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    salt, _, _digest = stored.partition("$")
    return secrets.compare_digest(hash_password(password, salt), stored)


def fetch_user(conn: sqlite3.Connection, user_id: str) -> Optional[User]:
    row = conn.execute(_SELECT + " WHERE id = ?", (user_id,)).fetchone()
    return User.from_row(row) if row else None


class UserDirectory:
    """Accounts and their logged-in flag. ``total_loaned`` belongs to the loan quota."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def register(self, email: str, password: str, name: Optional[str] = None) -> User:
        email = EmailValidator.normalize(email)
        if not EmailValidator.is_valid(email):
            raise ValidationError("Invalid email address.")
        if not TextValidator.validate_password(password):
            raise ValidationError(
                f"Password must be at least {TextValidator.MIN_PASSWORD_LENGTH} characters long."
            )

        user = User(email=email, name=(name or "").strip() or "Anonymous")
        conn = get_db_connection()
        try:
            with transaction(conn):
                try:
                    conn.execute(
                        """
                        INSERT INTO users (id, name, email, password_hash, address, balance,
                                           logged_in, admin, total_loaned)
                        VALUES (?, ?, ?, ?, ?, ?, 0, 0, 0)
                        """,
                        (user.id, user.name, user.email, hash_password(password), user.address, user.balance),
                    )
                except sqlite3.IntegrityError as e:
                    raise ValidationError("An account with this email already exists.") from e
            self.logger.info("User registered", extra=fields(user_id=user.id))
            return user
        finally:
            conn.close()

    def login(self, email: str, password: str) -> User:
        email = EmailValidator.normalize(email)
        conn = get_db_connection()
        try:
            with transaction(conn):
                row = conn.execute("SELECT id, password_hash FROM users WHERE email = ?", (email,)).fetchone()
                if row is None or not verify_password(password, row["password_hash"]):
                    raise NotLoggedIn("Invalid email or password.")
                conn.execute("UPDATE users SET logged_in = 1 WHERE id = ?", (row["id"],))
                user = fetch_user(conn, row["id"])
            self.logger.info("User logged in", extra=fields(user_id=user.id))
            return user
        finally:
            conn.close()

    def logout(self, user_id: str) -> User:
        conn = get_db_connection()
        try:
            with transaction(conn):
                cursor = conn.execute("UPDATE users SET logged_in = 0 WHERE id = ?", (user_id,))
                if cursor.rowcount == 0:
                    raise NotFound("User not found.")
                user = fetch_user(conn, user_id)
            self.logger.info("User logged out", extra=fields(user_id=user_id))
            return user
        finally:
            conn.close()

    def get_user(self, user_id: str) -> Optional[User]:
        conn = get_db_connection()
        try:
            return fetch_user(conn, user_id)
        finally:
            conn.close()

    def get_user_by_email(self, email: str) -> Optional[User]:
        conn = get_db_connection()
        try:
            row = conn.execute(_SELECT + " WHERE email = ?", (EmailValidator.normalize(email),)).fetchone()
            return User.from_row(row) if row else None
        finally:
            conn.close()

    def top_up_balance(self, user_id: str, amount: float) -> User:
        """Add funds to a logged-in user's balance. Independent of gateway payments."""
        if amount is None or not math.isfinite(amount) or amount < 0:
            raise ValidationError("Top-up amount must be a non-negative number.")

        conn = get_db_connection()
        try:
            with transaction(conn):
                user = fetch_user(conn, user_id)
                if user is None:
                    raise NotFound("User not found.")
                if not user.logged_in:
                    raise NotLoggedIn("User not logged in.")
                conn.execute("UPDATE users SET balance = balance + ? WHERE id = ?", (amount, user_id))
                user = fetch_user(conn, user_id)
            self.logger.info("Balance topped up", extra=fields(user_id=user_id, amount=amount, balance=user.balance))
            return user
        finally:
            conn.close()

    def promote_to_admin(self, user_id: str) -> User:
        conn = get_db_connection()
        try:
            with transaction(conn):
                cursor = conn.execute("UPDATE users SET admin = 1 WHERE id = ?", (user_id,))
                if cursor.rowcount == 0:
                    raise NotFound("User not found.")
                user = fetch_user(conn, user_id)
            self.logger.info("User promoted to admin", extra=fields(user_id=user_id))
            return user
        finally:
            conn.close()
