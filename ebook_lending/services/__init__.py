"""E-Book Lending - services package

Service modules for external integrations:
- Payment gateway adapter and payment service
- Email notifications
- HTTP client abstraction
"""
