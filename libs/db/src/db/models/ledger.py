from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: categories / tags
# ---------------------------


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Titles are matched case-insensitively against model output; duplicates
    # are tolerated (first match wins) so no unique index here.
    title: Mapped[str] = mapped_column(String(64), nullable=False)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)


# ---------------------------
# Core: statements / expenses
# ---------------------------


class Statement(Base):
    __tablename__ = "statements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # One of DBS/CITI/CIMB/UOB/HSBC, or the sentinel "No" when unknown.
    bank: Mapped[str] = mapped_column(String(16), nullable=False)
    file: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    # Staging task the statement was committed from; NULL for direct uploads.
    source_task_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    expenses: Mapped[list[Expense]] = relationship(
        back_populates="statement",
        cascade="all, delete-orphan",
        order_by="Expense.id",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "source_task_id", name="uq_statements_user_source_task"),
    )


class Expense(Base):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    category_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    statement_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("statements.id", ondelete="CASCADE"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    statement: Mapped[Statement | None] = relationship(back_populates="expenses")
    category: Mapped[Category | None] = relationship()
    tags: Mapped[list[ExpenseTag]] = relationship(
        back_populates="expense",
        cascade="all, delete-orphan",
    )


class ExpenseTag(Base):
    __tablename__ = "expense_tags"

    expense_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("expenses.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    expense: Mapped[Expense] = relationship(back_populates="tags")
    tag: Mapped[Tag] = relationship()


__all__ = [
    "Base",
    "Category",
    "Expense",
    "ExpenseTag",
    "Statement",
    "Tag",
]
