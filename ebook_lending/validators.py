import re
from typing import Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class EmailValidator:
    """Loose address check; delivery is the mail server's problem."""

    @staticmethod
    def normalize(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        return raw.strip().lower()

    @staticmethod
    def is_valid(email: Optional[str]) -> bool:
        if not email:
            return False
        return bool(_EMAIL_RE.match(EmailValidator.normalize(email)))


class TextValidator:
    MIN_PASSWORD_LENGTH = 8

    @staticmethod
    def validate_password(password: Optional[str]) -> bool:
        return password is not None and len(password) >= TextValidator.MIN_PASSWORD_LENGTH

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        if title is None:
            return False
        return bool(title.strip())

    @staticmethod
    def sanitize_text(text: Optional[str]) -> str:
        if text is None:
            return ""
        # strip markup from free-text fields such as review comments
        cleaned = re.sub(r"<[^>]*>", "", text)
        return cleaned.strip()


class RatingValidator:
    MIN_RATING = 1
    MAX_RATING = 5

    @staticmethod
    def is_valid(rating: object) -> bool:
        if isinstance(rating, bool) or not isinstance(rating, int):
            return False
        return RatingValidator.MIN_RATING <= rating <= RatingValidator.MAX_RATING
