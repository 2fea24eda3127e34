import logging
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import ExpenseInstance, InstanceStatus, RecurrenceType

logger = logging.getLogger(__name__)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def as_calendar_day(value: date) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = desired_day or base.day
    return date(year, month, min(day, days_in_month(year, month)))


def add_interval(
    value: date,
    recurrence: RecurrenceType,
    custom_days: Optional[int] = None,
    *,
    anchor_day: Optional[int] = None,
) -> date:
    """Return the occurrence following ``value`` for the given recurrence.

    Month and year steps clamp to the last day of shorter months. Passing
    ``anchor_day`` lets a series that was clamped (Jan 31 -> Feb 29) return to
    its original day of month afterwards.
    """
    value = as_calendar_day(value)
    if recurrence == RecurrenceType.weekly:
        return value + timedelta(weeks=1)
    if recurrence == RecurrenceType.monthly:
        return add_months(value, 1, desired_day=anchor_day)
    if recurrence == RecurrenceType.yearly:
        return add_months(value, 12, desired_day=anchor_day)
    if recurrence == RecurrenceType.custom:
        if not custom_days or custom_days <= 0:
            raise ValueError("Custom recurrence requires a positive day count")
        return value + timedelta(days=custom_days)
    raise ValueError("One-time expenses have no next occurrence")


def days_between(a: date, b: date) -> int:
    return (as_calendar_day(b) - as_calendar_day(a)).days


def is_same_calendar_day(a: date, b: date) -> bool:
    return as_calendar_day(a) == as_calendar_day(b)


def default_horizon(
    today: Optional[date] = None, months: Optional[int] = None
) -> date:
    today = today or local_today()
    if months is None:
        months = get_settings().horizon_months
    return add_months(today, months)


class InstanceGenerator:
    """Expands expense definitions into the instances missing before a horizon.

    ``generate`` only ever returns new, transient ``ExpenseInstance`` objects;
    callers decide whether to persist them. A slot is identified by
    ``(expense_id, calendar day)``, so a second run over the union of
    existing and generated instances yields nothing.

    ``max_occurrences`` bounds the dates on or after ``since`` (today by
    default). Dates between ``first_due_date`` and ``since`` are history and
    are always walked, so a long-running series still reaches the horizon.
    """

    def __init__(self, max_occurrences: int = 5000) -> None:
        self.max_occurrences = max_occurrences

    def occurrences(
        self, definition, horizon: date, since: Optional[date] = None
    ) -> Iterator[date]:
        horizon = as_calendar_day(horizon)
        since = as_calendar_day(since) if since else local_today()
        current = as_calendar_day(definition.first_due_date)
        if definition.recurrence == RecurrenceType.none:
            if current < horizon:
                yield current
            return

        anchor_day = current.day
        count = 0
        while current < horizon:
            if current >= since:
                if count >= self.max_occurrences:
                    logger.warning(
                        f"generate: expense_id={definition.id} "
                        f"occurrence_cap_reached={self.max_occurrences}"
                    )
                    return
                count += 1
            yield current
            current = add_interval(
                current,
                definition.recurrence,
                definition.custom_recurrence_days,
                anchor_day=anchor_day,
            )

    def generate(
        self,
        definitions: Iterable,
        existing_instances: Iterable,
        horizon: date,
        since: Optional[date] = None,
    ) -> list[ExpenseInstance]:
        since = as_calendar_day(since) if since else local_today()
        taken = {
            (inst.expense_id, as_calendar_day(inst.due_date))
            for inst in existing_instances
        }
        created: list[ExpenseInstance] = []
        for definition in definitions:
            for due_date in self.occurrences(definition, horizon, since):
                slot = (definition.id, due_date)
                if slot in taken:
                    continue
                taken.add(slot)
                created.append(
                    ExpenseInstance(
                        expense_id=definition.id,
                        due_date=due_date,
                        status=InstanceStatus.pending,
                        skipped=False,
                    )
                )
        return created
