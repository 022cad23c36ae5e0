from datetime import datetime

from sqlalchemy import (
    JSON, Column, Date, DateTime, Enum, ForeignKey, Integer, String, Text,
)
from sqlalchemy.orm import relationship

from planpal.database import Base
from planpal.ledger import EventStatus, ExpenseStatus, PaymentStatus


def status_column(enum_cls, default):
    # Stored as plain strings so each table only accepts its own statuses
    return Column(
        Enum(enum_cls, native_enum=False, length=16, validate_strings=True),
        nullable=False,
        default=default,
    )


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(32), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    date = Column(Date, nullable=False)
    location = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    chat_group_id = Column(String(64), unique=True, nullable=True, index=True)
    status = status_column(EventStatus, EventStatus.CREATED)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    expenses = relationship(
        "Expense", back_populates="event", cascade="all, delete-orphan", order_by="Expense.id",
    )
    payments = relationship(
        "Payment", back_populates="event", cascade="all, delete-orphan", order_by="Payment.id",
    )


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    payer = Column(String(64), nullable=False)
    description = Column(String(500), nullable=False)
    amount = Column(Integer, nullable=False)  # minor units
    split_among = Column(JSON, nullable=False, default=list)
    votes = Column(JSON, nullable=False, default=dict)
    status = status_column(ExpenseStatus, ExpenseStatus.PENDING)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    resolved_at = Column(DateTime, nullable=True)

    event = relationship("Event", back_populates="expenses")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    from_handle = Column(String(64), nullable=False)
    to_handle = Column(String(64), nullable=False)
    amount = Column(Integer, nullable=False)  # minor units
    status = status_column(PaymentStatus, PaymentStatus.PENDING)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)

    event = relationship("Event", back_populates="payments")
