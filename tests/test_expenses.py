from datetime import date, datetime

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from database import Base, create_db_engine, make_sessionmaker
from models import ExpenseCategory, ExpenseInstance, InstanceStatus, RecurrenceType
from schemas import ExpenseIn
from services import ExpenseService, InstanceLifecycleService


def make_session():
    engine = create_db_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return make_sessionmaker(engine)()


def _instances(session, expense_id=None) -> list[ExpenseInstance]:
    stmt = select(ExpenseInstance).order_by(ExpenseInstance.due_date)
    if expense_id is not None:
        stmt = stmt.where(ExpenseInstance.expense_id == expense_id)
    return list(session.scalars(stmt).all())


def _netflix(**overrides) -> ExpenseIn:
    data = dict(
        name="Netflix Subscription",
        amount_cents=1599,
        first_due_date=date(2024, 1, 15),
        recurrence=RecurrenceType.monthly,
        category=ExpenseCategory.subscriptions,
        notes="Premium plan",
    )
    data.update(overrides)
    return ExpenseIn(**data)


def test_create_generates_instances_up_to_horizon() -> None:
    session = make_session()
    service = ExpenseService(session, horizon_months=3)

    expense = service.create(_netflix(), today=date(2024, 1, 10))

    assert [inst.due_date for inst in _instances(session, expense.id)] == [
        date(2024, 1, 15),
        date(2024, 2, 15),
        date(2024, 3, 15),
    ]
    assert expense.created_at is not None
    assert expense.updated_at is not None


def test_paying_january_leaves_other_months_pending() -> None:
    session = make_session()
    service = ExpenseService(session, horizon_months=3)
    # horizon 2024-04-20
    expense = service.create(_netflix(), today=date(2024, 1, 20))

    instances = _instances(session, expense.id)
    assert [inst.due_date for inst in instances] == [
        date(2024, 1, 15),
        date(2024, 2, 15),
        date(2024, 3, 15),
        date(2024, 4, 15),
    ]

    paid_at = datetime(2024, 1, 15, 9, 30)
    InstanceLifecycleService(session).mark_paid(instances[0].id, paid_at=paid_at)

    refreshed = _instances(session, expense.id)
    assert refreshed[0].status == InstanceStatus.paid
    assert refreshed[0].paid_at == paid_at
    for inst in refreshed[1:]:
        assert inst.status == InstanceStatus.pending
        assert inst.paid_at is None


def test_regenerate_all_is_idempotent_and_rolls_horizon() -> None:
    session = make_session()
    service = ExpenseService(session, horizon_months=2)
    service.create(_netflix(), today=date(2024, 1, 1))
    service.create(
        _netflix(
            name="Gym",
            recurrence=RecurrenceType.weekly,
            first_due_date=date(2024, 1, 2),
        ),
        today=date(2024, 1, 1),
    )
    before = len(_instances(session))

    assert service.regenerate_all(today=date(2024, 1, 1)) == 0
    assert len(_instances(session)) == before

    assert service.regenerate_all(today=date(2024, 2, 1)) > 0
    slots = [(inst.expense_id, inst.due_date) for inst in _instances(session)]
    assert len(slots) == len(set(slots))


def test_update_keeps_history_and_generates_new_rule() -> None:
    session = make_session()
    service = ExpenseService(session, horizon_months=2)
    expense = service.create(_netflix(), today=date(2024, 1, 1))
    january = _instances(session, expense.id)[0]
    InstanceLifecycleService(session).mark_paid(january.id)

    service.update(
        expense.id,
        _netflix(
            recurrence=RecurrenceType.custom,
            custom_recurrence_days=20,
            first_due_date=date(2024, 1, 15),
        ),
        today=date(2024, 1, 1),
    )

    dates = [inst.due_date for inst in _instances(session, expense.id)]
    # 2024-02-15 is left over from the monthly rule.
    assert dates == [
        date(2024, 1, 15),
        date(2024, 2, 4),
        date(2024, 2, 15),
        date(2024, 2, 24),
    ]
    assert session.get(ExpenseInstance, january.id).status == InstanceStatus.paid
    assert service.get(expense.id).recurrence == RecurrenceType.custom


def test_delete_cascades_to_owned_instances_only() -> None:
    session = make_session()
    service = ExpenseService(session, horizon_months=3)
    rent = service.create(
        _netflix(name="Rent", amount_cents=120_000, category=ExpenseCategory.rent),
        today=date(2024, 1, 1),
    )
    netflix = service.create(_netflix(), today=date(2024, 1, 1))
    netflix_count = len(_instances(session, netflix.id))
    InstanceLifecycleService(session).mark_paid(_instances(session, rent.id)[0].id)

    removed = service.delete(rent.id)

    assert removed == 3
    remaining = _instances(session)
    assert len(remaining) == netflix_count
    assert all(inst.expense_id == netflix.id for inst in remaining)
    with pytest.raises(ValueError, match="Expense not found"):
        service.get(rent.id)


def test_delete_includes_instances_generated_after_first_read() -> None:
    session = make_session()
    service = ExpenseService(session, horizon_months=1)
    expense = service.create(_netflix(), today=date(2024, 1, 1))
    assert len(expense.instances) == 1

    service.regenerate_all(today=date(2024, 6, 1))
    assert service.delete(expense.id) == 6
    assert _instances(session) == []


def test_delete_unknown_expense_raises() -> None:
    session = make_session()
    with pytest.raises(ValueError, match="Expense not found"):
        ExpenseService(session).delete(999)


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "   "},
        {"amount_cents": 0},
        {"amount_cents": -5},
        {"recurrence": RecurrenceType.custom},
        {"recurrence": RecurrenceType.custom, "custom_recurrence_days": 0},
        {"recurrence": RecurrenceType.monthly, "custom_recurrence_days": 14},
    ],
)
def test_invalid_definitions_are_rejected_at_the_boundary(overrides) -> None:
    with pytest.raises(ValidationError):
        _netflix(**overrides)


def test_missing_due_date_is_rejected() -> None:
    with pytest.raises(ValidationError):
        ExpenseIn(name="Rent", amount_cents=100)


def test_daily_series_started_years_ago_covers_today() -> None:
    session = make_session()
    service = ExpenseService(session, horizon_months=1)
    expense = service.create(
        _netflix(
            name="Parking",
            recurrence=RecurrenceType.custom,
            custom_recurrence_days=1,
            first_due_date=date(2009, 6, 1),
        ),
        today=date(2024, 6, 1),
    )

    dates = [inst.due_date for inst in _instances(session, expense.id)]
    assert date(2024, 6, 1) in dates
    assert dates[-1] == date(2024, 6, 30)
    assert service.regenerate_all(today=date(2024, 7, 1)) == 31
