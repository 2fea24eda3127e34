from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Literal, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from models import (
    AppSettings,
    Expense,
    ExpenseCategory,
    ExpenseInstance,
    InstanceStatus,
    Theme,
    utcnow,
)
from periods import month_period
from recurrence import (
    InstanceGenerator,
    as_calendar_day,
    days_between,
    default_horizon,
    local_today,
)
from schemas import AppSettingsIn, ExpenseIn

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥", "INR": "₹"}

SortField = Literal["name", "amount", "due_date", "category", "status"]
SortDirection = Literal["asc", "desc"]


def format_currency(cents: int, currency: str = "USD") -> str:
    code = (currency or "USD").upper()
    sign = "-" if cents < 0 else ""
    value = f"{abs(cents) / 100:,.2f}"
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{sign}{symbol}{value}"
    return f"{sign}{code} {value}"


def cents_to_amount(cents: int) -> float:
    return cents / 100


def amount_to_cents(amount: float) -> int:
    cents = (Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def effective_status(
    due_date: date,
    status: InstanceStatus,
    today: date,
    snoozed_until: Optional[date] = None,
) -> InstanceStatus:
    """The status shown to readers; ``overdue`` is never stored.

    A pending instance due before today is overdue. A snoozed instance turns
    overdue once its snooze date has passed.
    """
    today = as_calendar_day(today)
    if status == InstanceStatus.pending and as_calendar_day(due_date) < today:
        return InstanceStatus.overdue
    if (
        status == InstanceStatus.snoozed
        and snoozed_until is not None
        and as_calendar_day(snoozed_until) < today
    ):
        return InstanceStatus.overdue
    return InstanceStatus(status)


def urgency_level(due_date: date, today: date) -> str:
    days_until_due = days_between(today, due_date)
    if days_until_due <= 7:
        return "high"
    if days_until_due <= 30:
        return "medium"
    return "low"


class InvalidTransitionError(ValueError):
    pass


@dataclass
class InstanceFilters:
    category: Optional[ExpenseCategory] = None
    status: Optional[InstanceStatus] = None
    start: Optional[date] = None
    end: Optional[date] = None
    search: Optional[str] = None


@dataclass(frozen=True)
class InstanceRow:
    instance: ExpenseInstance
    expense: Expense
    status: InstanceStatus
    urgency: str


@dataclass(frozen=True)
class MonthlySummary:
    period_slug: str
    total_expected_cents: int
    total_paid_cents: int
    total_unpaid_cents: int
    progress_percentage: float
    instance_count: int
    paid_count: int


@dataclass(frozen=True)
class Reminder:
    title: str
    body: str
    expense_id: Optional[int] = None
    instance_id: Optional[int] = None
    due_date: Optional[date] = None


class ExpenseService:
    """Owns expense definitions and keeps their instances generated.

    Every definition write regenerates the missing instances in the same
    transaction, so reads after a successful call see a consistent set.
    """

    def __init__(
        self,
        session: Session,
        generator: Optional[InstanceGenerator] = None,
        horizon_months: Optional[int] = None,
    ) -> None:
        self.session = session
        self.generator = generator or InstanceGenerator()
        self.horizon_months = horizon_months

    def get(self, expense_id: int) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if not expense:
            raise ValueError("Expense not found")
        return expense

    def list(self) -> list[Expense]:
        stmt = select(Expense).order_by(Expense.id)
        return list(self.session.scalars(stmt).all())

    def create(self, data: ExpenseIn, today: Optional[date] = None) -> Expense:
        expense = Expense(**data.model_dump())
        self.session.add(expense)
        self.session.flush()
        created = self.regenerate([expense], today=today)
        self.session.commit()
        logger.info(f"expense_created: expense_id={expense.id} instances={created}")
        return expense

    def update(
        self, expense_id: int, data: ExpenseIn, today: Optional[date] = None
    ) -> Expense:
        expense = self.get(expense_id)
        for field, value in data.model_dump().items():
            setattr(expense, field, value)
        self.session.flush()
        # Instances generated under the previous rule are kept as history.
        created = self.regenerate([expense], today=today)
        self.session.commit()
        logger.info(f"expense_updated: expense_id={expense.id} instances={created}")
        return expense

    def delete(self, expense_id: int) -> int:
        expense = self.get(expense_id)
        # Reload so instances added since the collection was read are included.
        self.session.expire(expense, ["instances"])
        removed = len(expense.instances)
        try:
            self.session.delete(expense)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(f"expense_deleted: expense_id={expense_id} instances={removed}")
        return removed

    def regenerate(
        self,
        expenses: Optional[Iterable[Expense]] = None,
        today: Optional[date] = None,
    ) -> int:
        definitions = list(expenses) if expenses is not None else self.list()
        if not definitions:
            return 0
        today = today or local_today()
        horizon = default_horizon(today, self.horizon_months)
        ids = [expense.id for expense in definitions]
        existing = self.session.scalars(
            select(ExpenseInstance).where(ExpenseInstance.expense_id.in_(ids))
        ).all()
        new_instances = self.generator.generate(
            definitions, existing, horizon, since=today
        )
        self.session.add_all(new_instances)
        self.session.flush()
        return len(new_instances)

    def regenerate_all(self, today: Optional[date] = None) -> int:
        count = self.regenerate(today=today)
        self.session.commit()
        return count


class InstanceLifecycleService:
    """Applies paid/snoozed/skipped transitions to single instances.

    Repeating the action an instance already carries is a no-op. Moving
    between the terminal states (paid <-> skipped) or snoozing a settled
    instance raises ``InvalidTransitionError``.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, instance_id: int) -> ExpenseInstance:
        instance = self.session.get(ExpenseInstance, instance_id)
        if not instance:
            raise ValueError("Instance not found")
        return instance

    def mark_paid(
        self, instance_id: int, paid_at: Optional[datetime] = None
    ) -> ExpenseInstance:
        instance = self.get(instance_id)
        if instance.status == InstanceStatus.paid:
            return instance
        if instance.status == InstanceStatus.skipped:
            raise InvalidTransitionError("Skipped expenses cannot be marked as paid")
        instance.status = InstanceStatus.paid
        instance.paid_at = paid_at or utcnow()
        instance.snoozed_until = None
        self.session.commit()
        logger.info(f"instance_paid: instance_id={instance.id}")
        return instance

    def snooze(self, instance_id: int, snoozed_until: date) -> ExpenseInstance:
        if snoozed_until is None:
            raise ValueError("Snooze date is required")
        instance = self.get(instance_id)
        if instance.status in (InstanceStatus.paid, InstanceStatus.skipped):
            raise InvalidTransitionError(
                f"Cannot snooze an expense that is already {instance.status.value}"
            )
        instance.status = InstanceStatus.snoozed
        instance.snoozed_until = as_calendar_day(snoozed_until)
        self.session.commit()
        logger.info(
            f"instance_snoozed: instance_id={instance.id} until={snoozed_until}"
        )
        return instance

    def skip(self, instance_id: int) -> ExpenseInstance:
        instance = self.get(instance_id)
        if instance.status == InstanceStatus.skipped:
            return instance
        if instance.status == InstanceStatus.paid:
            raise InvalidTransitionError("Paid expenses cannot be skipped")
        instance.status = InstanceStatus.skipped
        instance.skipped = True
        instance.snoozed_until = None
        self.session.commit()
        logger.info(f"instance_skipped: instance_id={instance.id}")
        return instance


class AggregationService:
    def __init__(self, session: Session, currency: Optional[str] = None) -> None:
        self.session = session
        self._currency = currency

    @property
    def currency(self) -> str:
        if self._currency is None:
            self._currency = SettingsService(self.session).get().currency
        return self._currency

    def _instances(self, *criteria) -> list[ExpenseInstance]:
        stmt = (
            select(ExpenseInstance)
            .options(joinedload(ExpenseInstance.expense))
            .order_by(ExpenseInstance.id)
        )
        if criteria:
            stmt = stmt.where(*criteria)
        return list(self.session.scalars(stmt).all())

    def _row(self, instance: ExpenseInstance, today: date) -> InstanceRow:
        return InstanceRow(
            instance=instance,
            expense=instance.expense,
            status=effective_status(
                instance.due_date, instance.status, today, instance.snoozed_until
            ),
            urgency=urgency_level(instance.due_date, today),
        )

    def upcoming(
        self, limit: int = 5, today: Optional[date] = None
    ) -> list[ExpenseInstance]:
        today = today or local_today()
        stmt = (
            select(ExpenseInstance)
            .options(joinedload(ExpenseInstance.expense))
            .where(
                ExpenseInstance.status == InstanceStatus.pending,
                ExpenseInstance.due_date > today,
            )
            .order_by(ExpenseInstance.due_date, ExpenseInstance.id)
            .limit(max(limit, 0))
        )
        return list(self.session.scalars(stmt).all())

    def monthly_summary(self, year: int, month: int) -> MonthlySummary:
        period = month_period(year, month)
        in_month = self._instances(
            ExpenseInstance.due_date.between(period.start, period.end)
        )
        total_expected = sum(inst.expense.amount_cents for inst in in_month)
        paid = [inst for inst in in_month if inst.status == InstanceStatus.paid]
        total_paid = sum(inst.expense.amount_cents for inst in paid)
        progress = (total_paid / total_expected * 100) if total_expected > 0 else 0.0
        return MonthlySummary(
            period_slug=period.slug,
            total_expected_cents=total_expected,
            total_paid_cents=total_paid,
            total_unpaid_cents=total_expected - total_paid,
            progress_percentage=progress,
            instance_count=len(in_month),
            paid_count=len(paid),
        )

    def summary_payload(self, summary: MonthlySummary) -> dict[str, object]:
        return {
            "period": summary.period_slug,
            "total_expected_cents": summary.total_expected_cents,
            "total_paid_cents": summary.total_paid_cents,
            "total_unpaid_cents": summary.total_unpaid_cents,
            "progress_percentage": summary.progress_percentage,
            "total_expected": format_currency(
                summary.total_expected_cents, self.currency
            ),
            "total_paid": format_currency(summary.total_paid_cents, self.currency),
            "total_unpaid": format_currency(
                summary.total_unpaid_cents, self.currency
            ),
        }

    def filtered(
        self, criteria: Optional[InstanceFilters] = None, today: Optional[date] = None
    ) -> list[InstanceRow]:
        today = today or local_today()
        criteria = criteria or InstanceFilters()
        needle = (criteria.search or "").strip().casefold()

        bounds = []
        if criteria.start:
            bounds.append(ExpenseInstance.due_date >= criteria.start)
        if criteria.end:
            bounds.append(ExpenseInstance.due_date <= criteria.end)

        rows: list[InstanceRow] = []
        for instance in self._instances(*bounds):
            row = self._row(instance, today)
            expense = row.expense
            if criteria.category and expense.category != criteria.category:
                continue
            if criteria.status and row.status != criteria.status:
                continue
            if needle:
                haystack = f"{expense.name}\n{expense.notes or ''}".casefold()
                if needle not in haystack:
                    continue
            rows.append(row)
        return rows

    @staticmethod
    def sorted(
        rows: Iterable[InstanceRow],
        field: SortField = "due_date",
        direction: SortDirection = "asc",
    ) -> list[InstanceRow]:
        keys = {
            "name": lambda row: row.expense.name.casefold(),
            "amount": lambda row: row.expense.amount_cents,
            "due_date": lambda row: row.instance.due_date,
            "category": lambda row: row.expense.category.value,
            "status": lambda row: row.status.value,
        }
        if field not in keys:
            raise ValueError(f"Unsupported sort field: {field}")
        if direction not in ("asc", "desc"):
            raise ValueError(f"Unsupported sort direction: {direction}")
        # sorted() keeps equal rows in input order even when reversed.
        return sorted(rows, key=keys[field], reverse=direction == "desc")

    def list_rows(
        self,
        criteria: Optional[InstanceFilters] = None,
        field: SortField = "due_date",
        direction: SortDirection = "asc",
        today: Optional[date] = None,
    ) -> list[InstanceRow]:
        return self.sorted(self.filtered(criteria, today), field, direction)


class SettingsService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self) -> AppSettings:
        settings = self.session.scalar(select(AppSettings).order_by(AppSettings.id))
        if settings is None:
            settings = AppSettings(
                theme=Theme.system,
                currency="USD",
                language="en",
                notifications_enabled=True,
                notification_days_before=3,
            )
            self.session.add(settings)
            self.session.flush()
        return settings

    def update(self, data: AppSettingsIn) -> AppSettings:
        settings = self.get()
        if data.theme is not None:
            settings.theme = data.theme
        if data.currency is not None:
            settings.currency = data.currency.upper()
        if data.language is not None:
            settings.language = data.language
        if data.notifications is not None:
            notifications = data.notifications
            if notifications.enabled is not None:
                settings.notifications_enabled = notifications.enabled
            if notifications.days_before is not None:
                settings.notification_days_before = notifications.days_before
            if notifications.channels is not None:
                settings.notification_channels = notifications.channels
        self.session.commit()
        return settings

    @staticmethod
    def to_payload(settings: AppSettings) -> dict[str, object]:
        return {
            "theme": settings.theme.value,
            "currency": settings.currency,
            "language": settings.language,
            "notifications": {
                "enabled": settings.notifications_enabled,
                "days_before": settings.notification_days_before,
                "channels": [c.value for c in settings.notification_channels],
            },
        }


class ReminderService:
    """Builds reminder messages; delivering them is up to the caller."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def due_reminders(self, today: Optional[date] = None) -> list[Reminder]:
        today = today or local_today()
        settings = SettingsService(self.session).get()
        if not settings.notifications_enabled:
            return []

        stmt = (
            select(ExpenseInstance)
            .options(joinedload(ExpenseInstance.expense))
            .where(ExpenseInstance.status == InstanceStatus.pending)
            .order_by(ExpenseInstance.due_date, ExpenseInstance.id)
        )
        reminders: list[Reminder] = []
        for instance in self.session.scalars(stmt).all():
            days_until_due = days_between(today, instance.due_date)
            if not 0 <= days_until_due <= settings.notification_days_before:
                continue
            expense = instance.expense
            amount = format_currency(expense.amount_cents, settings.currency)
            if days_until_due == 0:
                title = "Expense Due Today!"
                body = f"{expense.name} is due today. Amount: {amount}"
            elif days_until_due == 1:
                title = "Expense Due Tomorrow!"
                body = f"{expense.name} is due tomorrow. Amount: {amount}"
            else:
                title = "Upcoming Expense Reminder"
                body = (
                    f"{expense.name} is due in {days_until_due} days. "
                    f"Amount: {amount}"
                )
            reminders.append(
                Reminder(
                    title=title,
                    body=body,
                    expense_id=expense.id,
                    instance_id=instance.id,
                    due_date=instance.due_date,
                )
            )
        return reminders

    def weekly_summary(self, today: Optional[date] = None) -> Optional[Reminder]:
        today = today or local_today()
        settings = SettingsService(self.session).get()
        if not settings.notifications_enabled:
            return None

        period = month_period(today.year, today.month)
        aggregation = AggregationService(self.session, currency=settings.currency)
        summary = aggregation.monthly_summary(today.year, today.month)
        rows = aggregation.filtered(
            InstanceFilters(start=period.start, end=period.end), today
        )
        open_count = sum(
            1
            for row in rows
            if row.instance.status in (InstanceStatus.pending, InstanceStatus.snoozed)
        )
        if open_count == 0:
            return None
        remaining = format_currency(summary.total_unpaid_cents, settings.currency)
        return Reminder(
            title="Weekly Expense Summary",
            body=(
                f"You have {open_count} expenses pending this month. "
                f"Total remaining: {remaining}"
            ),
        )


def default_snooze_until(today: Optional[date] = None) -> date:
    today = today or local_today()
    return today + timedelta(days=get_settings().snooze_days)
