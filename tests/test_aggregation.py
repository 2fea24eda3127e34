from datetime import date

import pytest
from sqlalchemy import select

from database import Base, create_db_engine, make_sessionmaker
from models import ExpenseCategory, ExpenseInstance, InstanceStatus, RecurrenceType
from periods import resolve_month
from schemas import ExpenseIn
from services import (
    AggregationService,
    ExpenseService,
    InstanceFilters,
    InstanceLifecycleService,
    format_currency,
)

TODAY = date(2024, 2, 10)


def make_session():
    engine = create_db_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return make_sessionmaker(engine)()


def _seed(session):
    service = ExpenseService(session, horizon_months=2)
    netflix = service.create(
        ExpenseIn(
            name="Netflix Subscription",
            amount_cents=1599,
            first_due_date=date(2024, 1, 15),
            recurrence=RecurrenceType.monthly,
            category=ExpenseCategory.subscriptions,
            notes="Premium plan",
        ),
        today=TODAY,
    )
    rent = service.create(
        ExpenseIn(
            name="Rent Payment",
            amount_cents=120_000,
            first_due_date=date(2024, 1, 1),
            recurrence=RecurrenceType.monthly,
            category=ExpenseCategory.rent,
            notes="Monthly rent payment",
        ),
        today=TODAY,
    )
    dentist = service.create(
        ExpenseIn(
            name="Dentist",
            amount_cents=1599,
            first_due_date=date(2024, 2, 20),
            category=ExpenseCategory.healthcare,
            notes="Annual CHECKUP",
        ),
        today=TODAY,
    )
    return netflix, rent, dentist


def _instance(session, expense, due_date) -> ExpenseInstance:
    return session.scalars(
        select(ExpenseInstance).where(
            ExpenseInstance.expense_id == expense.id,
            ExpenseInstance.due_date == due_date,
        )
    ).one()


def test_monthly_summary_for_empty_month_is_all_zero() -> None:
    session = make_session()
    summary = AggregationService(session, currency="USD").monthly_summary(2024, 5)
    assert summary.total_expected_cents == 0
    assert summary.total_paid_cents == 0
    assert summary.total_unpaid_cents == 0
    assert summary.progress_percentage == 0
    assert summary.instance_count == 0


def test_monthly_summary_totals_paid_and_unpaid() -> None:
    session = make_session()
    netflix, rent, _ = _seed(session)
    InstanceLifecycleService(session).mark_paid(
        _instance(session, netflix, date(2024, 1, 15)).id
    )

    service = AggregationService(session, currency="USD")
    summary = service.monthly_summary(2024, 1)

    assert summary.period_slug == "2024-01"
    assert summary.total_expected_cents == 121_599
    assert summary.total_paid_cents == 1599
    assert summary.total_unpaid_cents == 120_000
    assert summary.progress_percentage == pytest.approx(1599 / 121_599 * 100)
    payload = service.summary_payload(summary)
    assert payload["total_expected"] == "$1,215.99"
    assert payload["total_unpaid"] == "$1,200.00"


def test_upcoming_returns_future_pending_sorted_and_truncated() -> None:
    session = make_session()
    netflix, rent, dentist = _seed(session)
    InstanceLifecycleService(session).mark_paid(
        _instance(session, netflix, date(2024, 2, 15)).id
    )

    upcoming = AggregationService(session).upcoming(limit=2, today=TODAY)

    assert [(inst.expense_id, inst.due_date) for inst in upcoming] == [
        (dentist.id, date(2024, 2, 20)),
        (rent.id, date(2024, 3, 1)),
    ]
    everything = AggregationService(session).upcoming(limit=50, today=TODAY)
    assert all(inst.due_date > TODAY for inst in everything)
    assert all(inst.status == InstanceStatus.pending for inst in everything)


def test_filtered_combines_criteria_with_and() -> None:
    session = make_session()
    netflix, rent, dentist = _seed(session)
    service = AggregationService(session)

    rent_rows = service.filtered(InstanceFilters(category=ExpenseCategory.rent), TODAY)
    assert {row.expense.id for row in rent_rows} == {rent.id}

    overdue = service.filtered(InstanceFilters(status=InstanceStatus.overdue), TODAY)
    assert sorted(row.instance.due_date for row in overdue) == [
        date(2024, 1, 1),
        date(2024, 1, 15),
        date(2024, 2, 1),
    ]

    february = service.filtered(
        InstanceFilters(start=date(2024, 2, 1), end=date(2024, 2, 29)), TODAY
    )
    assert sorted(row.instance.due_date for row in february) == [
        date(2024, 2, 1),
        date(2024, 2, 15),
        date(2024, 2, 20),
    ]

    notes_match = service.filtered(InstanceFilters(search="checkup"), TODAY)
    assert [row.expense.id for row in notes_match] == [dentist.id]

    combined = service.filtered(
        InstanceFilters(
            search="PAYMENT",
            status=InstanceStatus.pending,
            start=date(2024, 2, 1),
        ),
        TODAY,
    )
    assert [(row.expense.id, row.instance.due_date) for row in combined] == [
        (rent.id, date(2024, 3, 1)),
        (rent.id, date(2024, 4, 1)),
    ]


def test_sorted_is_stable_for_ties_in_both_directions() -> None:
    session = make_session()
    netflix, rent, dentist = _seed(session)
    service = AggregationService(session)
    rows = service.filtered(
        InstanceFilters(start=date(2024, 2, 15), end=date(2024, 2, 20)), TODAY
    )
    assert [row.expense.id for row in rows] == [netflix.id, dentist.id]

    ascending = service.sorted(rows, "amount", "asc")
    descending = service.sorted(rows, "amount", "desc")
    assert [row.expense.id for row in ascending] == [netflix.id, dentist.id]
    assert [row.expense.id for row in descending] == [netflix.id, dentist.id]

    by_name = service.list_rows(field="name", direction="desc", today=TODAY)
    assert by_name[0].expense.name == "Rent Payment"
    assert by_name[-1].expense.name == "Dentist"


def test_sorted_by_status_uses_derived_status() -> None:
    session = make_session()
    _seed(session)
    rows = AggregationService(session).list_rows(field="status", today=TODAY)
    statuses = [row.status.value for row in rows]
    assert statuses == sorted(statuses)
    assert "overdue" in statuses


def test_sorted_rejects_unknown_field() -> None:
    session = make_session()
    with pytest.raises(ValueError):
        AggregationService(session).list_rows(field="color", today=TODAY)


def test_format_currency() -> None:
    assert format_currency(1599, "USD") == "$15.99"
    assert format_currency(123_456, "eur") == "€1,234.56"
    assert format_currency(500, "CHF") == "CHF 5.00"


def test_resolve_month() -> None:
    assert resolve_month("2024-02").end == date(2024, 2, 29)
    assert resolve_month("last_month", today=date(2024, 1, 10)).slug == "2023-12"
    assert resolve_month(None, today=date(2024, 1, 10)).start == date(2024, 1, 1)
    with pytest.raises(ValueError):
        resolve_month("2024-13")


def test_monthly_summary_and_upcoming_respect_date_bounds() -> None:
    session = make_session()
    service = ExpenseService(session, horizon_months=2)
    for name, due in [
        ("Jan 31", date(2024, 1, 31)),
        ("Feb 1", date(2024, 2, 1)),
        ("Feb 29 a", date(2024, 2, 29)),
        ("Feb 29 b", date(2024, 2, 29)),
        ("Mar 1", date(2024, 3, 1)),
    ]:
        service.create(
            ExpenseIn(name=name, amount_cents=100, first_due_date=due),
            today=date(2024, 1, 1),
        )

    summary = AggregationService(session, currency="USD").monthly_summary(2024, 2)
    assert summary.instance_count == 3
    assert summary.total_expected_cents == 300

    upcoming = AggregationService(session).upcoming(limit=2, today=date(2024, 2, 1))
    assert [inst.expense.name for inst in upcoming] == ["Feb 29 a", "Feb 29 b"]
