import pytest

from ebook_lending.database import get_db_connection, transaction
from ebook_lending.errors import LoanLimitExceeded, NotFound, NotLoggedIn, OutOfStock
from ebook_lending.inventory import InventoryLedger
from ebook_lending.quota import MAX_LOANS, UserLoanQuota


@pytest.fixture
def conn(db):
    c = get_db_connection()
    yield c
    c.close()


def test_reserve_and_release_copy(conn, make_ebook):
    book = make_ebook(quantity=2)
    ledger = InventoryLedger()

    with transaction(conn):
        assert ledger.reserve_copy(conn, book.id) == 1
    assert ledger.available(conn, book.id) == 1

    with transaction(conn):
        assert ledger.release_copy(conn, book.id) == 2
    assert ledger.available(conn, book.id) == 2


def test_reserve_last_copy_then_out_of_stock(conn, make_ebook):
    book = make_ebook(quantity=1)
    ledger = InventoryLedger()

    with transaction(conn):
        assert ledger.reserve_copy(conn, book.id) == 0

    with pytest.raises(OutOfStock, match="EBook is out of stock."):
        with transaction(conn):
            ledger.reserve_copy(conn, book.id)
    assert ledger.available(conn, book.id) == 0


def test_release_has_no_ceiling(conn, make_ebook):
    book = make_ebook(quantity=0)
    ledger = InventoryLedger()
    with transaction(conn):
        ledger.release_copy(conn, book.id)
        ledger.release_copy(conn, book.id)
    assert ledger.available(conn, book.id) == 2


def test_inventory_unknown_title(conn):
    ledger = InventoryLedger()
    with pytest.raises(NotFound):
        with transaction(conn):
            ledger.reserve_copy(conn, "missing")
    with pytest.raises(NotFound):
        with transaction(conn):
            ledger.release_copy(conn, "missing")


def test_rolled_back_reservation_leaves_stock_untouched(conn, make_ebook):
    book = make_ebook(quantity=3)
    ledger = InventoryLedger()

    with pytest.raises(RuntimeError):
        with transaction(conn):
            ledger.reserve_copy(conn, book.id)
            raise RuntimeError("boom")
    assert ledger.available(conn, book.id) == 3


def test_admit_up_to_cap(conn, make_user):
    user = make_user()
    quota = UserLoanQuota()

    for expected in range(1, MAX_LOANS + 1):
        with transaction(conn):
            assert quota.admit_loan(conn, user.id) == expected

    with pytest.raises(LoanLimitExceeded):
        with transaction(conn):
            quota.admit_loan(conn, user.id)
    assert quota.total_loaned(conn, user.id) == MAX_LOANS


def test_release_loan_never_goes_negative(conn, make_user):
    user = make_user()
    quota = UserLoanQuota()
    with transaction(conn):
        assert quota.release_loan(conn, user.id) == 0
    assert quota.total_loaned(conn, user.id) == 0


def test_admit_requires_logged_in_user(conn, make_user):
    user = make_user(logged_in=False)
    quota = UserLoanQuota()
    with pytest.raises(NotLoggedIn):
        with transaction(conn):
            quota.admit_loan(conn, user.id)
    assert quota.total_loaned(conn, user.id) == 0


def test_quota_unknown_user(conn):
    quota = UserLoanQuota()
    with pytest.raises(NotFound):
        with transaction(conn):
            quota.admit_loan(conn, "missing")
    with pytest.raises(NotFound):
        with transaction(conn):
            quota.release_loan(conn, "missing")
