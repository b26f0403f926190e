from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Optional


def new_id() -> str:
    return str(uuid.uuid4())


class LoanState(str, Enum):
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


@dataclass
class EBook:
    """A catalog title. ``quantity_available`` is owned by the inventory ledger."""

    title: str
    author: str
    category: str = ""
    price: float = 0.0
    description: str = ""
    cover_url: Optional[str] = None
    quantity_available: int = 0
    max_loan_duration: int = 14
    avg_rating: float = 0.0
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "price": self.price,
            "description": self.description,
            "cover_url": self.cover_url,
            "quantity_available": self.quantity_available,
            "max_loan_duration": self.max_loan_duration,
            "avg_rating": self.avg_rating,
        }

    @staticmethod
    def from_row(row: Any) -> "EBook":
        data = dict(row)
        return EBook(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            category=data.get("category") or "",
            price=data.get("price") or 0.0,
            description=data.get("description") or "",
            cover_url=data.get("cover_url"),
            quantity_available=data["quantity_available"],
            max_loan_duration=data["max_loan_duration"],
            avg_rating=data.get("avg_rating") or 0.0,
        )


@dataclass
class User:
    email: str
    name: str = "Anonymous"
    address: str = "No Address"
    balance: float = 0.0
    logged_in: bool = False
    admin: bool = False
    total_loaned: int = 0
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        # password hashes never leave the directory
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "address": self.address,
            "balance": self.balance,
            "logged_in": self.logged_in,
            "admin": self.admin,
            "total_loaned": self.total_loaned,
        }

    @staticmethod
    def from_row(row: Any) -> "User":
        data = dict(row)
        return User(
            id=data["id"],
            email=data["email"],
            name=data.get("name") or "Anonymous",
            address=data.get("address") or "No Address",
            balance=data.get("balance") or 0.0,
            logged_in=bool(data.get("logged_in")),
            admin=bool(data.get("admin")),
            total_loaned=data.get("total_loaned") or 0,
        )


@dataclass
class Loan:
    """One user borrowing one title. Holds identifiers only, never embedded entities."""

    user_id: str
    ebook_id: str
    start_date: datetime
    due_date: datetime
    live: bool = True
    id: str = field(default_factory=new_id)

    @property
    def state(self) -> LoanState:
        return LoanState.ACTIVE if self.live else LoanState.ENDED

    def days_remaining(self, now: datetime) -> int:
        return (self.due_date.date() - now.date()).days

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "ebook_id": self.ebook_id,
            "start_date": self.start_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "live": self.live,
            "state": self.state.value,
        }

    @staticmethod
    def from_row(row: Any) -> "Loan":
        data = dict(row)
        return Loan(
            id=data["id"],
            user_id=data["user_id"],
            ebook_id=data["ebook_id"],
            start_date=datetime.fromisoformat(data["start_date"]),
            due_date=datetime.fromisoformat(data["due_date"]),
            live=bool(data["live"]),
        )


@dataclass
class Payment:
    user_id: str
    amount: float
    payment_date: date = field(default_factory=date.today)
    payment_time: time = field(default_factory=lambda: datetime.now().time())
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": self.amount,
            "payment_date": self.payment_date.isoformat(),
            "payment_time": self.payment_time.isoformat(),
        }

    @staticmethod
    def from_row(row: Any) -> "Payment":
        data = dict(row)
        return Payment(
            id=data["id"],
            user_id=data["user_id"],
            amount=data["amount"],
            payment_date=date.fromisoformat(data["payment_date"]),
            payment_time=time.fromisoformat(data["payment_time"]),
        )


@dataclass
class Review:
    loan_id: str
    user_id: str
    ebook_id: str
    rating: int
    comment: Optional[str] = None
    created_at: Optional[str] = None
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "loan_id": self.loan_id,
            "user_id": self.user_id,
            "ebook_id": self.ebook_id,
            "rating": self.rating,
            "comment": self.comment,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_row(row: Any) -> "Review":
        data = dict(row)
        return Review(
            id=data["id"],
            loan_id=data["loan_id"],
            user_id=data["user_id"],
            ebook_id=data["ebook_id"],
            rating=data["rating"],
            comment=data.get("comment"),
            created_at=data.get("created_at"),
        )


@dataclass
class WishlistEntry:
    user_id: str
    ebook_id: str
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "ebook_id": self.ebook_id, "created_at": self.created_at}
