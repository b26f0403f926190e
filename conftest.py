import itertools
from datetime import datetime

import pytest

from ebook_lending import database
from ebook_lending.catalog import EBookCatalog
from ebook_lending.loans import LoanLifecycleManager
from ebook_lending.models import EBook
from ebook_lending.services.email_service import EmailNotifier
from ebook_lending.users import UserDirectory

NOW = datetime(2026, 10, 19, 9, 30, 0)


@pytest.fixture
def db(tmp_path, request, monkeypatch):
    # Each test gets its own database file
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setattr(database, "DATABASE_FILE", db_file)
    database.initialize_database(seed=False)
    yield db_file


@pytest.fixture
def sent_emails():
    return []


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def manager(db, sent_emails, clock):
    return LoanLifecycleManager(notifier=EmailNotifier(transport=sent_emails.append), clock=clock)


@pytest.fixture
def make_user(db):
    directory = UserDirectory()
    counter = itertools.count(1)

    def _make(logged_in: bool = True, name: str = "Reader"):
        n = next(counter)
        email = f"reader{n}@example.com"
        user = directory.register(email, "correct-horse", name=f"{name} {n}")
        if logged_in:
            user = directory.login(email, "correct-horse")
        return user

    return _make


@pytest.fixture
def make_ebook(db):
    catalog = EBookCatalog()
    counter = itertools.count(1)

    def _make(quantity: int = 1, max_loan_duration: int = 14, **kwargs):
        n = next(counter)
        kwargs.setdefault("title", f"Title {n}")
        kwargs.setdefault("author", f"Author {n}")
        return catalog.add_ebook(EBook(quantity_available=quantity, max_loan_duration=max_loan_duration, **kwargs))

    return _make
