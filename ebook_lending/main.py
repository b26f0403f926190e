import subprocess
import sys
from typing import Optional

import typer

from ebook_lending import database
from ebook_lending.catalog import EBookCatalog
from ebook_lending.config import settings
from ebook_lending.errors import LendingError, Outcome
from ebook_lending.loans import LoanLifecycleManager
from ebook_lending.logging_config import setup_logging
from ebook_lending.services.payment_gateway import PaymentService
from ebook_lending.ui_helpers import print_books_result, print_loan_result, print_loans_result, set_output_mode

APP_NAME = "E-Book Lending CLI"

app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db_file: Optional[str] = typer.Option(None, "--db", help="SQLite database file to use"),
):
    """Global CLI options."""
    if output:
        set_output_mode(output)
    if db_file:
        database.DATABASE_FILE = db_file
    setup_logging(settings.log_level, use_json=settings.log_format == "json")


def _fail(error: LendingError) -> None:
    print(f"Error ({error.status_code}): {error.message}")
    raise typer.Exit(code=1)


def _unwrap(outcome: Outcome):
    if not outcome.ok:
        _fail(outcome.error)
    return outcome.value


@app.command("init-db")
def cli_init_db(seed: bool = typer.Option(True, "--seed/--no-seed", help="Insert the default catalog")):
    """Create the schema and optionally seed the default catalog."""
    database.create_tables()
    added = database.seed_default_ebooks() if seed else 0
    print(f"Database ready at {database.DATABASE_FILE} ({added} ebooks seeded)")


@app.command("books")
def cli_books(category: Optional[str] = typer.Option(None, "--category", "-c")):
    """List catalog titles with their available copies."""
    print_books_result(EBookCatalog().search(category=category))


@app.command("rent")
def cli_rent(user_id: str, ebook_id: str):
    """Borrow a title for a user."""
    loan = _unwrap(LoanLifecycleManager().create_loan(user_id, ebook_id))
    print_loan_result(loan)


@app.command("return")
def cli_return(loan_id: str):
    """End a loan and give the copy back."""
    loan = _unwrap(LoanLifecycleManager().terminate_loan(loan_id))
    print(f"Loan {loan.id} has ended.")


@app.command("loans")
def cli_loans(user_id: str):
    """Show every loan a user has taken out."""
    print_loans_result(_unwrap(LoanLifecycleManager().list_loans_for_user(user_id)))


@app.command("pay")
def cli_pay(user_id: str, amount: float):
    """Submit a payment to the payment gateway."""
    payment = _unwrap(PaymentService().create_payment(user_id, amount))
    print(f"Payment {payment.id} accepted: {payment.amount:.2f} {settings.payment_currency}")


@app.command("remind")
def cli_remind(within_days: int = typer.Option(settings.reminder_window_days, "--within-days", "-d")):
    """Email borrowers whose loans end soon."""
    sent = LoanLifecycleManager().send_due_reminders(within_days)
    print(f"{sent} reminder(s) sent")


@app.command("serve")
def cli_serve(host: str = typer.Option(settings.api_host), port: int = typer.Option(settings.api_port)):
    """Run the HTTP API with uvicorn."""
    print(f"Starting API on http://{host}:{port}")
    subprocess.run([sys.executable, "-m", "uvicorn", "ebook_lending.api:app", "--host", host, "--port", str(port)])


if __name__ == "__main__":
    app()
