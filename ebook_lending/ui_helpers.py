import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LENDING_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _print_rows(title: str, columns: List[str], rows: List[Dict[str, Any]], plain_fmt: str) -> None:
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for col in columns:
            table.add_column(col.replace("_", " ").title())
        for row in rows:
            table.add_row(*(str(row.get(col, "")) for col in columns))
        _console.print(table)
    else:
        for row in rows:
            print(plain_fmt.format(**row))


def print_books_result(books: List[Any]) -> None:
    """Print catalog titles.
    - plain: 'id - Title by Author (n available)' lines, or 'No ebooks in catalog.'
    - json: JSON array of the ebook dicts
    - rich: Rich table
    """
    if not books:
        print("No ebooks in catalog.")
        return
    _print_rows("📚 EBooks", ["id", "title", "author", "quantity_available", "max_loan_duration"],
                [b.to_dict() for b in books],
                "{id} - {title} by {author} ({quantity_available} available)")


def print_loans_result(loans: List[Any]) -> None:
    if not loans:
        print("No loans found.")
        return
    _print_rows("📖 Loans", ["id", "ebook_id", "state", "start_date", "due_date"],
                [loan.to_dict() for loan in loans],
                "{id} - {ebook_id} [{state}] due {due_date}")


def print_loan_result(loan: Any) -> None:
    if get_output_mode() == "json":
        print(json.dumps(loan.to_dict(), ensure_ascii=False))
        return
    data = loan.to_dict()
    print(f"Loan {data['id']} [{data['state']}]")
    print(f"EBook: {data['ebook_id']}")
    print(f"Due: {data['due_date']}")
