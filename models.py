import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RecurrenceType(str, Enum):
    none = "none"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"
    custom = "custom"


class ExpenseCategory(str, Enum):
    bills = "bills"
    subscriptions = "subscriptions"
    rent = "rent"
    insurance = "insurance"
    utilities = "utilities"
    entertainment = "entertainment"
    transportation = "transportation"
    healthcare = "healthcare"
    other = "other"


class InstanceStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    # Derived at read time only, never stored.
    overdue = "overdue"
    snoozed = "snoozed"
    skipped = "skipped"


class Theme(str, Enum):
    light = "light"
    dark = "dark"
    system = "system"


class NotificationChannel(str, Enum):
    push = "push"
    email = "email"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    first_due_date: Mapped[date] = mapped_column(Date, nullable=False)
    recurrence: Mapped[RecurrenceType] = mapped_column(
        SAEnum(RecurrenceType), nullable=False, default=RecurrenceType.none
    )
    custom_recurrence_days: Mapped[Optional[int]] = mapped_column(Integer)
    category: Mapped[ExpenseCategory] = mapped_column(
        SAEnum(ExpenseCategory), nullable=False, default=ExpenseCategory.other
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    instances: Mapped[list["ExpenseInstance"]] = relationship(
        "ExpenseInstance",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpenseInstance.id",
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_expense_amount_positive"),
        CheckConstraint(
            "(recurrence = 'custom' AND custom_recurrence_days > 0)"
            " OR (recurrence != 'custom' AND custom_recurrence_days IS NULL)",
            name="ck_expense_custom_days",
        ),
    )


class ExpenseInstance(Base, TimestampMixin):
    __tablename__ = "expense_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[InstanceStatus] = mapped_column(
        SAEnum(InstanceStatus), nullable=False, default=InstanceStatus.pending
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    snoozed_until: Mapped[Optional[date]] = mapped_column(Date)
    skipped: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    expense: Mapped["Expense"] = relationship("Expense", back_populates="instances")

    __table_args__ = (
        UniqueConstraint("expense_id", "due_date", name="uq_instance_expense_due"),
        Index("ix_instances_due_date", "due_date"),
        CheckConstraint("status != 'overdue'", name="ck_instance_status_stored"),
    )


class AppSettings(Base, TimestampMixin):
    __tablename__ = "app_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    theme: Mapped[Theme] = mapped_column(
        SAEnum(Theme), nullable=False, default=Theme.system
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    language: Mapped[str] = mapped_column(String(10), nullable=False, default="en")
    notifications_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    notification_days_before: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3
    )
    notification_channels_json: Mapped[Optional[str]] = mapped_column(Text)

    @property
    def notification_channels(self) -> list[NotificationChannel]:
        if not self.notification_channels_json:
            return [NotificationChannel.push]
        raw = json.loads(self.notification_channels_json)
        return [NotificationChannel(c) for c in raw]

    @notification_channels.setter
    def notification_channels(self, channels: list[NotificationChannel]) -> None:
        self.notification_channels_json = json.dumps(
            [NotificationChannel(c).value for c in channels]
        )
