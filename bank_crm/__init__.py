"""
Bank CRM

A single-tenant banking customer-relationship-management library tracking
customers, accounts, ledger transactions, staff, and service requests on
top of SQLite with an in-memory fallback.
"""

__version__ = "1.0.0"
