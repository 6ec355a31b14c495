"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models (statements, expenses, categories, tags)
used by ``statement_ingest``.
"""

from .ledger import Base, Category, Expense, ExpenseTag, Statement, Tag

__all__ = [
    "Base",
    "Category",
    "Expense",
    "ExpenseTag",
    "Statement",
    "Tag",
]
