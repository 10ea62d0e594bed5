from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable, Optional, Protocol, Sequence, Union
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import Frequency, TransactionRecord, TransactionType


logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

Clock = Callable[[], date]
IdentityKey = tuple[str, str, Decimal, date]


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def to_amount(value: object) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def amount_to_cents(amount: Decimal) -> int:
    return int((to_amount(amount) * 100).quantize(Decimal("1")))


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def new_entry_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Transaction:
    id: str
    type: TransactionType
    description: str
    amount: Decimal
    category: str
    date: date
    recurring: str = Frequency.one_time.value

    def with_date(self, occurrence_date: date) -> "Transaction":
        """Clone for another occurrence: fresh id, same everything else."""
        return replace(self, id=new_entry_id(), date=occurrence_date)


@dataclass(frozen=True)
class OneTimeEntry:
    entry: Transaction


@dataclass(frozen=True)
class RecurringTemplate:
    entry: Transaction
    frequency: Frequency

    @property
    def anchor_date(self) -> date:
        return self.entry.date

    def series_key(self) -> tuple[TransactionType, str, str, Decimal, Frequency]:
        e = self.entry
        return (e.type, e.description, e.category, e.amount, self.frequency)


LedgerEntry = Union[OneTimeEntry, RecurringTemplate]


def classify(txn: Transaction) -> LedgerEntry:
    frequency = Frequency.parse(txn.recurring)
    if frequency is None:
        logger.warning(
            "unknown_frequency: id=%s recurring=%r treated as one-time",
            txn.id,
            txn.recurring,
        )
        return OneTimeEntry(txn)
    if frequency == Frequency.one_time:
        return OneTimeEntry(txn)
    return RecurringTemplate(txn, frequency)


def templates(ledger: Iterable[Transaction]) -> list[RecurringTemplate]:
    return [e for e in map(classify, ledger) if isinstance(e, RecurringTemplate)]


def identity_key(txn: Transaction) -> IdentityKey:
    return (txn.description, txn.category, to_amount(txn.amount), txn.date)


class LedgerStore(Protocol):
    def read(self) -> list[Transaction]: ...

    def append(self, entries: Sequence[Transaction]) -> None: ...


def record_to_transaction(record: TransactionRecord) -> Transaction:
    return Transaction(
        id=record.id,
        type=record.type,
        description=record.description,
        amount=cents_to_amount(record.amount_cents),
        category=record.category,
        date=record.date,
        recurring=record.recurring,
    )


def transaction_to_record(txn: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=txn.id,
        type=txn.type,
        description=txn.description,
        amount_cents=amount_to_cents(txn.amount),
        category=txn.category,
        date=txn.date,
        recurring=txn.recurring,
    )


class SqlLedgerStore:
    """Ledger store over the ``transactions`` table.

    ``append`` only adds rows and flushes; committing is left to the caller
    so a reconciliation pass lands in the same unit of work as its reads.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def read(self) -> list[Transaction]:
        stmt = select(TransactionRecord)
        return [record_to_transaction(r) for r in self.session.scalars(stmt)]

    def get(self, entry_id: str) -> Optional[Transaction]:
        record = self.session.get(TransactionRecord, entry_id)
        return record_to_transaction(record) if record else None

    def append(self, entries: Sequence[Transaction]) -> None:
        for txn in entries:
            self.session.add(transaction_to_record(txn))
        self.session.flush()
