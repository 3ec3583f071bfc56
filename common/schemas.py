from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Annotated, Optional
from pydantic import AfterValidator, BaseModel, ConfigDict, Field

CENT = Decimal("0.01")

def to_cents(points) -> int:
    """Points (decimal, two fractional digits) to integer hundredths."""
    return int((Decimal(str(points)) / CENT).quantize(Decimal(1), rounding=ROUND_HALF_UP))

def from_cents(cents: int) -> float:
    return float(Decimal(cents) * CENT)

def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]

class OrderStatus(str, Enum):
    NEW = "NEW"
    PROCESSING = "PROCESSING"
    INVALID = "INVALID"
    PROCESSED = "PROCESSED"

TERMINAL_STATUSES = (OrderStatus.INVALID, OrderStatus.PROCESSED)

class Credentials(BaseModel):
    login: str
    password: str

class WithdrawRequest(BaseModel):
    order: str
    sum: Decimal

class OrderOut(BaseModel):
    number: str
    status: OrderStatus
    accrual: Optional[float] = None
    uploaded_at: UtcDatetime

class BalanceOut(BaseModel):
    current: float
    withdrawn: float

class WithdrawalOut(BaseModel):
    order: str
    sum: float
    processed_at: UtcDatetime

class AccrualOrder(BaseModel):
    """Body returned by the accrual system for one order."""
    model_config = ConfigDict(populate_by_name=True)

    number: str = Field(alias="order")
    status: str
    accrual: Optional[Decimal] = None
