import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ledger import Transaction, new_entry_id, to_amount
from models import Frequency, TransactionType


class TransactionIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    type: TransactionType
    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    date: dt.date
    recurring: Frequency = Frequency.one_time

    def to_transaction(self, entry_id: Optional[str] = None) -> Transaction:
        return Transaction(
            id=entry_id or new_entry_id(),
            type=self.type,
            description=self.description.strip(),
            amount=to_amount(self.amount),
            category=self.category.strip(),
            date=self.date,
            recurring=self.recurring.value,
        )


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    type: Optional[TransactionType] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: Optional[dt.date] = None
    recurring: Optional[Frequency] = None


class LedgerRecord(BaseModel):
    """Flat persistence record; ``recurring`` is kept verbatim, known or not."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=new_entry_id, min_length=1)
    type: TransactionType
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    category: str
    date: dt.date
    recurring: str = Frequency.one_time.value

    @field_validator("description")
    @classmethod
    def _description_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("description must not be blank")
        return value

    def to_transaction(self) -> Transaction:
        return Transaction(
            id=self.id,
            type=self.type,
            description=self.description,
            amount=to_amount(self.amount),
            category=self.category,
            date=self.date,
            recurring=self.recurring,
        )


class BudgetIn(BaseModel):
    limit: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)


class BudgetRecord(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    limit: Decimal = Field(..., ge=0)


class SavingsGoalIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=120)
    target: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    icon: Optional[str] = Field(default=None, max_length=16)


class SavingsGoalRecord(BaseModel):
    id: str = Field(default_factory=new_entry_id)
    name: str = Field(..., min_length=1, max_length=120)
    target: Decimal = Field(..., gt=0)
    saved: Decimal = Field(default=Decimal(0), ge=0)
    icon: Optional[str] = Field(default=None, max_length=16)


class DepositIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class CSVRow(BaseModel):
    type: TransactionType
    description: str
    amount: Decimal
    category: str
    date: dt.date
    recurring: str


class BackupPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transactions: list[LedgerRecord] = Field(default_factory=list)
    budgets: list[BudgetRecord] = Field(default_factory=list)
    savings_goals: list[SavingsGoalRecord] = Field(
        default_factory=list, alias="savingsGoals"
    )
