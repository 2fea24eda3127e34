from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from encryption import decrypt_payload, validate_password, wrap_encrypted
from models import (
    AppSettings,
    Expense,
    ExpenseInstance,
    InstanceStatus,
    RecurrenceType,
    utcnow,
)
from schemas import (
    EXPORT_VERSION,
    EncryptedExportDocument,
    ExportDocument,
    ExportedExpense,
    ExportedInstance,
    ExportedNotifications,
    ExportedSettings,
)
from services import ExpenseService, SettingsService, amount_to_cents, cents_to_amount

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("expenses", "expenseInstances", "settings")


class ImportFormatError(ValueError):
    pass


@dataclass(frozen=True)
class ImportResult:
    expenses: int
    instances: int
    dropped_instances: int
    generated: int


class DataTransferService:
    """Whole-state export and import in the portable JSON document format."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def export_document(self, now: Optional[datetime] = None) -> dict[str, Any]:
        expenses = self.session.scalars(select(Expense).order_by(Expense.id)).all()
        instances = self.session.scalars(
            select(ExpenseInstance).order_by(ExpenseInstance.id)
        ).all()
        settings = SettingsService(self.session).get()

        document = ExportDocument(
            version=EXPORT_VERSION,
            exported_at=now or datetime.now(timezone.utc),
            expenses=[
                ExportedExpense(
                    id=str(expense.id),
                    name=expense.name,
                    amount=cents_to_amount(expense.amount_cents),
                    first_due_date=expense.first_due_date,
                    recurrence=expense.recurrence,
                    custom_recurrence=expense.custom_recurrence_days,
                    category=expense.category,
                    notes=expense.notes,
                    created_at=expense.created_at,
                    updated_at=expense.updated_at,
                )
                for expense in expenses
            ],
            expense_instances=[
                ExportedInstance(
                    id=str(instance.id),
                    expense_id=str(instance.expense_id),
                    due_date=instance.due_date,
                    status=instance.status,
                    paid_at=instance.paid_at,
                    snoozed_until=instance.snoozed_until,
                    skipped=instance.skipped,
                )
                for instance in instances
            ],
            settings=ExportedSettings(
                theme=settings.theme,
                notifications=ExportedNotifications(
                    enabled=settings.notifications_enabled,
                    days_before=settings.notification_days_before,
                    channels=settings.notification_channels,
                ),
                currency=settings.currency,
                language=settings.language,
            ),
        )
        return document.model_dump(mode="json", by_alias=True)

    def export_encrypted(self, password: str) -> dict[str, Any]:
        if not validate_password(password):
            raise ValueError(
                "Password must be at least 8 characters and contain a letter "
                "and a number"
            )
        return wrap_encrypted(self.export_document(), password)

    @staticmethod
    def load_document(payload: Any, password: Optional[str] = None) -> ExportDocument:
        if not isinstance(payload, dict):
            raise ImportFormatError("Import file must contain a JSON object")

        if password is not None:
            if payload.get("encrypted") is not True or "data" not in payload:
                raise ImportFormatError("Invalid encrypted file format")
            try:
                envelope = EncryptedExportDocument.model_validate(payload)
            except ValidationError as exc:
                raise ImportFormatError("Invalid encrypted file format") from exc
            payload = decrypt_payload(envelope.data, password)
            if not isinstance(payload, dict):
                raise ImportFormatError("Import file must contain a JSON object")
        elif payload.get("encrypted"):
            raise ImportFormatError("Password is required for encrypted import")

        missing = [key for key in REQUIRED_KEYS if key not in payload]
        if missing:
            raise ImportFormatError(
                f"Invalid import file: missing {', '.join(missing)}"
            )
        try:
            return ExportDocument.model_validate(payload)
        except ValidationError as exc:
            raise ImportFormatError(
                f"Invalid import file: {exc.error_count()} invalid field(s)"
            ) from exc

    def import_document(
        self,
        payload: Any,
        password: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ImportResult:
        document = self.load_document(payload, password)
        try:
            result = self._replace_state(document, today)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"import_committed: expenses={result.expenses} "
            f"instances={result.instances} dropped={result.dropped_instances} "
            f"generated={result.generated}"
        )
        return result

    def _replace_state(
        self, document: ExportDocument, today: Optional[date]
    ) -> ImportResult:
        self.session.execute(delete(ExpenseInstance))
        self.session.execute(delete(Expense))
        self.session.execute(delete(AppSettings))
        self.session.expire_all()

        id_map: dict[str, Expense] = {}
        for item in document.expenses:
            if item.recurrence == RecurrenceType.custom and not item.custom_recurrence:
                raise ImportFormatError(
                    f"Expense {item.name!r} has custom recurrence without a day count"
                )
            amount_cents = amount_to_cents(item.amount)
            if amount_cents <= 0:
                raise ImportFormatError(
                    f"Expense {item.name!r} has an amount below one cent"
                )
            expense = Expense(
                name=item.name,
                amount_cents=amount_cents,
                first_due_date=item.first_due_date,
                recurrence=item.recurrence,
                custom_recurrence_days=(
                    item.custom_recurrence
                    if item.recurrence == RecurrenceType.custom
                    else None
                ),
                category=item.category,
                notes=item.notes,
            )
            if item.created_at:
                expense.created_at = _naive_utc(item.created_at)
            if item.updated_at:
                expense.updated_at = _naive_utc(item.updated_at)
            self.session.add(expense)
            id_map[item.id] = expense
        self.session.flush()

        seen: set[tuple[int, date]] = set()
        imported = 0
        dropped = 0
        for item in document.expense_instances:
            expense = id_map.get(item.expense_id)
            if expense is None or (expense.id, item.due_date) in seen:
                dropped += 1
                continue
            seen.add((expense.id, item.due_date))
            self.session.add(_instance_from_export(item, expense.id))
            imported += 1

        exported = document.settings
        settings = AppSettings(
            theme=exported.theme,
            currency=exported.currency.upper(),
            language=exported.language,
            notifications_enabled=exported.notifications.enabled,
            notification_days_before=exported.notifications.days_before,
        )
        settings.notification_channels = exported.notifications.channels
        self.session.add(settings)
        self.session.flush()

        generated = ExpenseService(self.session).regenerate(today=today)
        if dropped:
            logger.warning(f"import_dropped_instances: count={dropped}")
        return ImportResult(
            expenses=len(id_map),
            instances=imported,
            dropped_instances=dropped,
            generated=generated,
        )


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _instance_from_export(item: ExportedInstance, expense_id: int) -> ExpenseInstance:
    status = item.status
    if status == InstanceStatus.overdue:
        status = InstanceStatus.pending
    if status == InstanceStatus.snoozed and item.snoozed_until is None:
        status = InstanceStatus.pending
    if item.skipped and status == InstanceStatus.pending:
        status = InstanceStatus.skipped

    paid_at = None
    if status == InstanceStatus.paid:
        paid_at = _naive_utc(item.paid_at) if item.paid_at else utcnow()
    return ExpenseInstance(
        expense_id=expense_id,
        due_date=item.due_date,
        status=status,
        paid_at=paid_at,
        snoozed_until=item.snoozed_until if status == InstanceStatus.snoozed else None,
        skipped=status == InstanceStatus.skipped,
    )
