from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from sqlalchemy.orm import Session

from config import get_settings
from data_transfer import DataTransferService, ImportFormatError
from database import SessionLocal
from encryption import DecryptionError
from models import Expense, ExpenseCategory, ExpenseInstance, InstanceStatus
from periods import resolve_month
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import AppSettingsIn, EncryptedExportIn, ExpenseIn, ImportIn, SnoozeIn
from services import (
    AggregationService,
    ExpenseService,
    InstanceFilters,
    InstanceLifecycleService,
    InstanceRow,
    SettingsService,
    cents_to_amount,
    default_snooze_until,
    effective_status,
    format_currency,
)

app = FastAPI(title="Panic Pocket")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def raise_http(exc: ValueError) -> None:
    message = str(exc)
    status_code = 404 if message.endswith("not found") else 400
    raise HTTPException(status_code=status_code, detail=message) from exc


def expense_payload(expense: Expense, currency: str) -> dict[str, object]:
    return {
        "id": expense.id,
        "name": expense.name,
        "amount_cents": expense.amount_cents,
        "amount": cents_to_amount(expense.amount_cents),
        "amount_display": format_currency(expense.amount_cents, currency),
        "first_due_date": expense.first_due_date.isoformat(),
        "recurrence": expense.recurrence.value,
        "custom_recurrence_days": expense.custom_recurrence_days,
        "category": expense.category.value,
        "notes": expense.notes,
        "created_at": expense.created_at.isoformat(),
        "updated_at": expense.updated_at.isoformat(),
    }


def instance_payload(
    instance: ExpenseInstance, today: date, row: Optional[InstanceRow] = None
) -> dict[str, object]:
    status = (
        row.status
        if row
        else effective_status(
            instance.due_date, instance.status, today, instance.snoozed_until
        )
    )
    payload = {
        "id": instance.id,
        "expense_id": instance.expense_id,
        "due_date": instance.due_date.isoformat(),
        "status": status.value,
        "stored_status": instance.status.value,
        "paid_at": instance.paid_at.isoformat() if instance.paid_at else None,
        "snoozed_until": (
            instance.snoozed_until.isoformat() if instance.snoozed_until else None
        ),
        "skipped": instance.skipped,
    }
    if row is not None:
        payload["name"] = row.expense.name
        payload["amount_cents"] = row.expense.amount_cents
        payload["category"] = row.expense.category.value
        payload["urgency"] = row.urgency
    return payload


def filters_from_request(request: Request) -> InstanceFilters:
    params = request.query_params
    try:
        category = (
            ExpenseCategory(params["category"]) if params.get("category") else None
        )
        status = InstanceStatus(params["status"]) if params.get("status") else None
        start = date.fromisoformat(params["start"]) if params.get("start") else None
        end = date.fromisoformat(params["end"]) if params.get("end") else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return InstanceFilters(
        category=category, status=status, start=start, end=end, search=params.get("q")
    )


@app.get("/api/expenses")
def api_list_expenses(db: Session = Depends(get_db)):
    currency = SettingsService(db).get().currency
    return [expense_payload(e, currency) for e in ExpenseService(db).list()]


@app.post("/api/expenses", status_code=201)
def api_create_expense(data: ExpenseIn, db: Session = Depends(get_db)):
    expense = ExpenseService(db).create(data)
    return expense_payload(expense, SettingsService(db).get().currency)


@app.get("/api/expenses/{expense_id}")
def api_get_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).get(expense_id)
    except ValueError as exc:
        raise_http(exc)
    return expense_payload(expense, SettingsService(db).get().currency)


@app.put("/api/expenses/{expense_id}")
def api_update_expense(expense_id: int, data: ExpenseIn, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).update(expense_id, data)
    except ValueError as exc:
        raise_http(exc)
    return expense_payload(expense, SettingsService(db).get().currency)


@app.delete("/api/expenses/{expense_id}")
def api_delete_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        removed = ExpenseService(db).delete(expense_id)
    except ValueError as exc:
        raise_http(exc)
    return {"deleted": expense_id, "instances_removed": removed}


@app.get("/api/instances")
def api_instances(request: Request, db: Session = Depends(get_db)):
    today = local_today()
    criteria = filters_from_request(request)
    field = request.query_params.get("sort", "due_date")
    direction = request.query_params.get("direction", "asc")
    try:
        rows = AggregationService(db).list_rows(criteria, field, direction, today)
    except ValueError as exc:
        raise_http(exc)
    return {
        "items": [instance_payload(row.instance, today, row) for row in rows],
        "count": len(rows),
    }


@app.post("/api/instances/{instance_id}/pay")
def api_mark_paid(instance_id: int, db: Session = Depends(get_db)):
    try:
        instance = InstanceLifecycleService(db).mark_paid(instance_id)
    except ValueError as exc:
        raise_http(exc)
    return instance_payload(instance, local_today())


@app.post("/api/instances/{instance_id}/snooze")
def api_snooze(instance_id: int, data: SnoozeIn, db: Session = Depends(get_db)):
    snoozed_until = data.snoozed_until or default_snooze_until()
    try:
        instance = InstanceLifecycleService(db).snooze(instance_id, snoozed_until)
    except ValueError as exc:
        raise_http(exc)
    return instance_payload(instance, local_today())


@app.post("/api/instances/{instance_id}/skip")
def api_skip(instance_id: int, db: Session = Depends(get_db)):
    try:
        instance = InstanceLifecycleService(db).skip(instance_id)
    except ValueError as exc:
        raise_http(exc)
    return instance_payload(instance, local_today())


@app.get("/api/upcoming")
def api_upcoming(limit: int = 5, db: Session = Depends(get_db)):
    today = local_today()
    limit = min(max(limit, 1), 100)
    items = AggregationService(db).upcoming(limit=limit, today=today)
    return [instance_payload(inst, today) for inst in items]


@app.get("/api/summary")
def api_summary(month: Optional[str] = None, db: Session = Depends(get_db)):
    try:
        period = resolve_month(month, today=local_today())
    except ValueError as exc:
        raise_http(exc)
    service = AggregationService(db)
    summary = service.monthly_summary(period.start.year, period.start.month)
    return service.summary_payload(summary)


@app.get("/api/settings")
def api_get_settings(db: Session = Depends(get_db)):
    settings = SettingsService(db).get()
    db.commit()
    return SettingsService.to_payload(settings)


@app.put("/api/settings")
def api_update_settings(data: AppSettingsIn, db: Session = Depends(get_db)):
    settings = SettingsService(db).update(data)
    return SettingsService.to_payload(settings)


@app.get("/api/export")
def api_export(db: Session = Depends(get_db)):
    return DataTransferService(db).export_document()


@app.post("/api/export/encrypted")
def api_export_encrypted(data: EncryptedExportIn, db: Session = Depends(get_db)):
    try:
        return DataTransferService(db).export_encrypted(data.password)
    except ValueError as exc:
        raise_http(exc)


@app.post("/api/import")
def api_import(data: ImportIn, db: Session = Depends(get_db)):
    try:
        result = DataTransferService(db).import_document(data.document, data.password)
    except DecryptionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ImportFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "expenses": result.expenses,
        "instances": result.instances,
        "dropped_instances": result.dropped_instances,
        "generated": result.generated,
    }
