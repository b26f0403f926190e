"""E-Book Lending - core application package

This package contains:
- Lending core: inventory ledger, user loan quota, loan lifecycle (inventory.py, quota.py, loans.py)
- Collaborators: catalog, user directory, reviews, wishlist
- External integrations under services/ (payment gateway, email, HTTP client)
- HTTP API (api.py) and CLI (main.py)
"""

__version__ = "1.0.0"
