import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import get_settings
from models import MAX_ROW_ID, Priority, TransactionType


def normalize_instant(value: object) -> object:
    """Date-only input means local midnight; aware datetimes become local wall time."""
    if isinstance(value, str) and len(value.strip()) == 10:
        value = date.fromisoformat(value.strip())
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, dt.time.min)
    if isinstance(value, datetime) and value.tzinfo is not None:
        local = value.astimezone(ZoneInfo(get_settings().timezone))
        return local.replace(tzinfo=None)
    return value


class OwnerIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=100)
    email: str = Field(..., max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class OwnerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    created_at: datetime


class OwnerRegistered(BaseModel):
    owner: OwnerOut
    token: str


class CategoryIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[TransactionType] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: Optional[int]
    name: str
    slug: str
    type: TransactionType
    is_system: bool
    created_at: datetime


class TransactionIn(BaseModel):
    type: TransactionType
    amount: Decimal = Field(..., ge=0, max_digits=14, decimal_places=2)
    description: str = Field(default="", max_length=500)
    category_id: Optional[int] = Field(default=None, ge=1, le=MAX_ROW_ID)
    category_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: datetime
    priority: Priority = Priority.medium

    @field_validator("date", mode="before")
    @classmethod
    def _normalize_date(cls, value: object) -> object:
        return normalize_instant(value)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        return value.strip()


class TransactionPatch(BaseModel):
    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=14, decimal_places=2
    )
    description: Optional[str] = Field(default=None, max_length=500)
    category_id: Optional[int] = Field(default=None, ge=1, le=MAX_ROW_ID)
    category_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: Optional[dt.datetime] = None
    priority: Optional[Priority] = None

    @field_validator("date", mode="before")
    @classmethod
    def _normalize_date(cls, value: object) -> object:
        return normalize_instant(value)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value is not None else None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: TransactionType
    amount: float
    description: str
    category_id: int
    category_name: str
    date: datetime
    priority: Priority
    created_at: datetime
    updated_at: datetime


class TransactionPage(BaseModel):
    items: list[TransactionOut]
    total: int
    page: int
    page_size: int
    total_pages: int


class TypeTotalOut(BaseModel):
    type: TransactionType
    total: float


class CategoryTotalOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: TransactionType
    category_name: str = Field(alias="categoryName")
    total: float


class DayTotalsOut(BaseModel):
    day: str
    income: float
    expense: float
    total: float


class DayTotalOut(BaseModel):
    day: str
    total: float


class SummaryOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_from: date = Field(alias="dateFrom")
    date_to: date = Field(alias="dateTo")
    totals: list[TypeTotalOut]
    by_category: list[CategoryTotalOut] = Field(alias="byCategory")
    time_series: list[DayTotalsOut] = Field(alias="timeSeries")


class BalanceOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_from: date = Field(alias="dateFrom")
    date_to: date = Field(alias="dateTo")
    income_series: list[DayTotalOut] = Field(alias="incomeSeries")
    expense_series: list[DayTotalOut] = Field(alias="expenseSeries")
