from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from models import (
    ExpenseCategory,
    InstanceStatus,
    NotificationChannel,
    RecurrenceType,
    Theme,
)

EXPORT_VERSION = "1.0.0"


def strip_expense_name(value: str) -> str:
    clean = value.strip()
    if not clean:
        raise ValueError("Expense name is required")
    return clean


def parse_calendar_day(value):
    """Accept plain dates as well as ISO timestamps, keeping only the day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return value


class ExpenseIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., gt=0)
    first_due_date: date
    recurrence: RecurrenceType = RecurrenceType.none
    custom_recurrence_days: Optional[int] = Field(default=None, gt=0)
    category: ExpenseCategory = ExpenseCategory.other
    notes: Optional[str] = Field(default=None, max_length=2000)

    _name = field_validator("name")(strip_expense_name)

    @model_validator(mode="after")
    def _custom_days_match_recurrence(self) -> "ExpenseIn":
        if self.recurrence == RecurrenceType.custom:
            if self.custom_recurrence_days is None:
                raise ValueError("Custom recurrence days is required")
        elif self.custom_recurrence_days is not None:
            raise ValueError("Custom recurrence days only apply to custom recurrence")
        return self


class SnoozeIn(BaseModel):
    snoozed_until: Optional[date] = None


class NotificationSettingsIn(BaseModel):
    enabled: Optional[bool] = None
    days_before: Optional[int] = Field(default=None, ge=0, le=60)
    channels: Optional[list[NotificationChannel]] = None


class AppSettingsIn(BaseModel):
    theme: Optional[Theme] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    language: Optional[str] = Field(default=None, min_length=2, max_length=10)
    notifications: Optional[NotificationSettingsIn] = None


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class ExportedExpense(_CamelModel):
    id: str
    name: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    first_due_date: date
    recurrence: RecurrenceType = RecurrenceType.none
    custom_recurrence: Optional[int] = Field(default=None, gt=0)
    category: ExpenseCategory = ExpenseCategory.other
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    _name = field_validator("name")(strip_expense_name)
    _due_day = field_validator("first_due_date", mode="before")(parse_calendar_day)


class ExportedInstance(_CamelModel):
    id: str
    expense_id: str
    due_date: date
    status: InstanceStatus = InstanceStatus.pending
    paid_at: Optional[datetime] = None
    snoozed_until: Optional[date] = None
    skipped: bool = False

    _due_day = field_validator("due_date", "snoozed_until", mode="before")(
        parse_calendar_day
    )


class ExportedNotifications(_CamelModel):
    enabled: bool = True
    days_before: int = Field(default=3, ge=0)
    channels: list[NotificationChannel] = Field(
        default_factory=lambda: [NotificationChannel.push]
    )


class ExportedSettings(_CamelModel):
    theme: Theme = Theme.system
    notifications: ExportedNotifications = Field(
        default_factory=ExportedNotifications
    )
    currency: str = "USD"
    language: str = "en"


class ExportDocument(_CamelModel):
    version: str = EXPORT_VERSION
    exported_at: Optional[datetime] = None
    expenses: list[ExportedExpense]
    expense_instances: list[ExportedInstance]
    settings: ExportedSettings


class EncryptedExportDocument(_CamelModel):
    version: str = EXPORT_VERSION
    encrypted_at: Optional[datetime] = None
    encrypted: Literal[True]
    data: str


class EncryptedExportIn(BaseModel):
    password: str


class ImportIn(BaseModel):
    document: dict[str, Any]
    password: Optional[str] = None
