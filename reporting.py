from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Union

from ledger import OneTimeEntry, RecurringTemplate, Transaction, classify
from models import TransactionType
from recurrence import monthly_multiplier


DateBound = Union[date, str, None]


def monthly_equivalent(amount: object, frequency: object) -> Decimal:
    multiplier = monthly_multiplier(frequency)
    return Decimal(str(amount)) * multiplier.numerator / multiplier.denominator


def aggregate_monthly_recurring(ledger: Iterable[Transaction]) -> dict[str, Decimal]:
    expenses = Decimal(0)
    income = Decimal(0)
    for item in map(classify, ledger):
        if isinstance(item, OneTimeEntry):
            continue
        monthly = monthly_equivalent(item.entry.amount, item.frequency)
        if item.entry.type == TransactionType.expense:
            expenses += monthly
        else:
            income += monthly
    return {"expenses": expenses, "income": income, "net": income - expenses}


def _iso(bound: DateBound) -> Optional[str]:
    if bound is None or bound == "":
        return None
    if isinstance(bound, date):
        return bound.isoformat()
    return str(bound)


@dataclass(frozen=True)
class LedgerFilter:
    """Inclusive date bounds plus an optional category; unset parts match all.

    Dates compare as ISO strings, which order the same way as the calendar.
    """

    start: DateBound = None
    end: DateBound = None
    category: Optional[str] = None

    def matches(self, txn: Transaction) -> bool:
        day = txn.date.isoformat()
        start = _iso(self.start)
        end = _iso(self.end)
        if start is not None and day < start:
            return False
        if end is not None and day > end:
            return False
        if self.category is not None and txn.category != self.category:
            return False
        return True

    def apply(self, ledger: Iterable[Transaction]) -> list[Transaction]:
        return [txn for txn in ledger if self.matches(txn)]


def filter_ledger(
    ledger: Iterable[Transaction],
    start: DateBound = None,
    end: DateBound = None,
    category: Optional[str] = None,
) -> list[Transaction]:
    return LedgerFilter(start=start, end=end, category=category).apply(ledger)


def totals(ledger: Iterable[Transaction]) -> dict[str, Decimal]:
    income = Decimal(0)
    expenses = Decimal(0)
    for txn in ledger:
        if txn.type == TransactionType.income:
            income += txn.amount
        else:
            expenses += txn.amount
    return {"income": income, "expenses": expenses, "net": income - expenses}


def category_breakdown(
    ledger: Iterable[Transaction],
    txn_type: TransactionType = TransactionType.expense,
) -> list[dict[str, object]]:
    by_category: dict[str, Decimal] = {}
    for txn in ledger:
        if txn.type != txn_type:
            continue
        running = by_category.get(txn.category, Decimal(0))
        by_category[txn.category] = running + txn.amount

    total = sum(by_category.values(), Decimal(0))
    if total == 0:
        return []
    items = sorted(by_category.items(), key=lambda x: (-x[1], x[0]))
    return [
        {
            "category": name,
            "amount": amount,
            "percent": float(amount / total * 100),
        }
        for name, amount in items
    ]


def monthly_series(ledger: Iterable[Transaction]) -> list[dict[str, object]]:
    months: dict[str, dict[str, Decimal]] = {}
    for txn in ledger:
        key = txn.date.isoformat()[:7]
        bucket = months.setdefault(
            key, {"income": Decimal(0), "expenses": Decimal(0)}
        )
        if txn.type == TransactionType.income:
            bucket["income"] += txn.amount
        else:
            bucket["expenses"] += txn.amount
    return [
        {
            "month": key,
            "income": bucket["income"],
            "expenses": bucket["expenses"],
            "net": bucket["income"] - bucket["expenses"],
        }
        for key, bucket in sorted(months.items())
    ]


def recurring_items(ledger: Iterable[Transaction]) -> list[dict[str, object]]:
    rows = [
        {
            "transaction": item.entry,
            "frequency": item.frequency.value,
            "monthly": monthly_equivalent(item.entry.amount, item.frequency),
        }
        for item in map(classify, ledger)
        if isinstance(item, RecurringTemplate)
    ]
    rows.sort(key=lambda row: row["monthly"], reverse=True)
    return rows


def recurring_breakdown(ledger: Iterable[Transaction]) -> dict[str, object]:
    entries = list(ledger)
    income_by_category: dict[str, Decimal] = {}
    expense_by_category: dict[str, Decimal] = {}
    for row in recurring_items(entries):
        txn: Transaction = row["transaction"]
        bucket = (
            income_by_category
            if txn.type == TransactionType.income
            else expense_by_category
        )
        bucket[txn.category] = bucket.get(txn.category, Decimal(0)) + row["monthly"]

    def build_breakdown(by_category: dict[str, Decimal]) -> list[dict[str, object]]:
        total = sum(by_category.values(), Decimal(0))
        if total == 0:
            return []
        items = sorted(by_category.items(), key=lambda x: x[1], reverse=True)
        return [
            {
                "category": name,
                "monthly": amount,
                "percent": float(amount / total * 100),
            }
            for name, amount in items
        ]

    summary = aggregate_monthly_recurring(entries)
    return {
        **summary,
        "expense_breakdown": build_breakdown(expense_by_category),
        "income_breakdown": build_breakdown(income_by_category),
    }
