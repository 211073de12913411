from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ImportField(str, Enum):
    date = "date"
    amount = "amount"
    payee = "payee"
    notes = "notes"
    category = "category"
    skip = "skip"


REQUIRED_IMPORT_FIELDS = (ImportField.date, ImportField.amount, ImportField.payee)

# Largest absolute amount in thousandths (one trillion currency units).
MAX_ABS_AMOUNT = 10**15


class NameIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name cannot be empty")
        return value


class AccountIn(NameIn):
    pass


class CategoryIn(NameIn):
    pass


class BulkDeleteIn(BaseModel):
    ids: list[int] = Field(default_factory=list)


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: int = Field(..., ge=-MAX_ABS_AMOUNT, le=MAX_ABS_AMOUNT)
    date: date
    payee: str = Field(..., min_length=1, max_length=200)
    notes: Optional[str] = None
    account_id: int
    category_id: Optional[int] = None

    @field_validator("payee")
    @classmethod
    def _strip_payee(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Payee cannot be empty")
        return value


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class TransactionOut(BaseModel):
    id: int
    amount: int
    date: date
    payee: str
    notes: Optional[str]
    account_id: int
    account: str
    category_id: Optional[int]
    category: Optional[str]


class ImportRow(BaseModel):
    date: date
    amount: int = Field(..., ge=-MAX_ABS_AMOUNT, le=MAX_ABS_AMOUNT)
    payee: str
    notes: Optional[str] = None
    category: Optional[str] = None


class ImportIn(BaseModel):
    account_id: int
    headers: list[str]
    rows: list[list[str]]
    mapping: dict[int, ImportField]
    dry_run: bool = False


class ImportPreviewOut(BaseModel):
    progress: int
    rows: list[ImportRow]
    errors: list[str]


class CSVUploadOut(BaseModel):
    headers: list[str]
    rows: list[list[str]]
    suggested_mapping: dict[int, ImportField]
    progress: int


class PeriodOut(BaseModel):
    start: date
    end: date


class DayTotals(BaseModel):
    date: date
    income: int
    expenses: int


class CategoryTotal(BaseModel):
    name: str
    value: int


class SummaryOut(BaseModel):
    period: PeriodOut
    previous_period: PeriodOut
    income_amount: int
    income_change: float
    expenses_amount: int
    expenses_change: float
    remaining_amount: int
    remaining_change: float
    categories: list[CategoryTotal]
    days: list[DayTotals]
