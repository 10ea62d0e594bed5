from datetime import date
from decimal import Decimal

import pytest

from ledger import Transaction, new_entry_id
from models import TransactionType
from periods import resolve_period
from reporting import (
    LedgerFilter,
    aggregate_monthly_recurring,
    category_breakdown,
    filter_ledger,
    monthly_equivalent,
    monthly_series,
    recurring_breakdown,
    recurring_items,
    totals,
)


def _txn(
    day: date,
    amount: str,
    *,
    txn_type: TransactionType = TransactionType.expense,
    category: str = "food",
    recurring: str = "one-time",
    description: str = "Item",
) -> Transaction:
    return Transaction(
        id=new_entry_id(),
        type=txn_type,
        description=description,
        amount=Decimal(amount),
        category=category,
        date=day,
        recurring=recurring,
    )


def test_monthly_equivalent_per_frequency():
    assert abs(monthly_equivalent(100, "weekly") - Decimal("433.33")) < Decimal("0.01")
    assert monthly_equivalent(1200, "yearly") == 100
    assert monthly_equivalent(Decimal("120"), "biweekly") == 260
    assert monthly_equivalent(75, "monthly") == 75
    assert monthly_equivalent(500, "one-time") == 0
    assert monthly_equivalent(500, "hourly") == 0


def test_aggregate_excludes_one_time_entries():
    ledger = [
        _txn(date(2026, 1, 3), "500"),
        _txn(date(2026, 1, 5), "50", recurring="monthly"),
    ]
    assert aggregate_monthly_recurring(ledger) == {
        "expenses": Decimal("50"),
        "income": Decimal("0"),
        "net": Decimal("-50"),
    }


def test_aggregate_mixes_income_and_expenses():
    ledger = [
        _txn(
            date(2026, 1, 1),
            "3000",
            txn_type=TransactionType.income,
            recurring="monthly",
        ),
        _txn(date(2026, 1, 1), "1200", recurring="yearly"),
        _txn(date(2026, 1, 1), "100", recurring="weekly"),
        _txn(date(2026, 1, 1), "40", recurring="sometimes"),
    ]
    result = aggregate_monthly_recurring(ledger)
    assert result["income"] == 3000
    assert abs(result["expenses"] - Decimal("533.33")) < Decimal("0.01")
    assert result["net"] == result["income"] - result["expenses"]


def test_aggregate_of_empty_ledger_is_zero():
    assert aggregate_monthly_recurring([]) == {"expenses": 0, "income": 0, "net": 0}


def test_range_filter_is_inclusive():
    ledger = [
        _txn(date(2026, 1, 31), "1"),
        _txn(date(2026, 2, 1), "2"),
        _txn(date(2026, 2, 28), "3"),
        _txn(date(2026, 3, 1), "4"),
    ]
    result = filter_ledger(ledger, start="2026-02-01", end="2026-02-28")
    assert [t.date for t in result] == [date(2026, 2, 1), date(2026, 2, 28)]

    same = LedgerFilter(start=date(2026, 2, 1), end=date(2026, 2, 28)).apply(ledger)
    assert same == result


def test_filter_without_constraints_returns_everything():
    ledger = [_txn(date(2026, 1, 1), "1"), _txn(date(2026, 5, 1), "2")]
    assert filter_ledger(ledger) == ledger
    assert filter_ledger(ledger, start="", end="") == ledger


def test_filter_combines_open_bound_and_category():
    ledger = [
        _txn(date(2026, 1, 1), "1", category="food"),
        _txn(date(2026, 2, 1), "2", category="travel"),
        _txn(date(2026, 3, 1), "3", category="food"),
    ]
    result = filter_ledger(ledger, start=date(2026, 2, 1), category="food")
    assert [t.amount for t in result] == [Decimal("3")]


def test_totals_and_category_breakdown():
    ledger = [
        _txn(date(2026, 1, 2), "60", category="food"),
        _txn(date(2026, 1, 3), "40", category="travel"),
        _txn(
            date(2026, 1, 4), "200", txn_type=TransactionType.income, category="salary"
        ),
    ]
    assert totals(ledger) == {"income": 200, "expenses": 100, "net": 100}

    breakdown = category_breakdown(ledger)
    assert [row["category"] for row in breakdown] == ["food", "travel"]
    assert breakdown[0]["percent"] == pytest.approx(60.0)
    assert category_breakdown([]) == []


def test_monthly_series_is_sorted_by_month():
    ledger = [
        _txn(date(2026, 3, 2), "10"),
        _txn(date(2026, 1, 2), "30"),
        _txn(date(2026, 1, 9), "100", txn_type=TransactionType.income),
    ]
    series = monthly_series(ledger)
    assert [row["month"] for row in series] == ["2026-01", "2026-03"]
    assert series[0]["net"] == 70
    assert series[1]["net"] == -10


def test_recurring_items_sorted_by_monthly_equivalent():
    ledger = [
        _txn(date(2026, 1, 1), "1200", recurring="yearly", description="Insurance"),
        _txn(date(2026, 1, 1), "100", recurring="weekly", description="Groceries"),
        _txn(date(2026, 1, 1), "5", description="Coffee"),
    ]
    items = recurring_items(ledger)
    assert [row["transaction"].description for row in items] == [
        "Groceries",
        "Insurance",
    ]


def test_recurring_breakdown_splits_by_category():
    ledger = [
        _txn(date(2026, 1, 1), "900", recurring="monthly", category="housing"),
        _txn(date(2026, 1, 1), "100", recurring="monthly", category="utilities"),
        _txn(
            date(2026, 1, 1),
            "2000",
            txn_type=TransactionType.income,
            recurring="monthly",
            category="salary",
        ),
    ]
    stats = recurring_breakdown(ledger)
    assert stats["net"] == 1000
    assert [row["category"] for row in stats["expense_breakdown"]] == [
        "housing",
        "utilities",
    ]
    assert stats["expense_breakdown"][0]["percent"] == pytest.approx(90.0)
    assert stats["income_breakdown"][0]["percent"] == pytest.approx(100.0)


def test_resolve_period_presets():
    today = date(2026, 4, 10)
    assert resolve_period("this-month", today=today).start == date(2026, 4, 1)
    last3 = resolve_period("last-3-months", today=today)
    assert (last3.start, last3.end) == (date(2026, 2, 1), today)
    last_year = resolve_period("last-year", today=today)
    assert (last_year.start, last_year.end) == (date(2025, 1, 1), date(2025, 12, 31))
    assert resolve_period("this-year", today=today).start == date(2026, 1, 1)
    everything = resolve_period(None, today=today)
    assert (everything.start, everything.end) == (None, None)


def test_resolve_period_custom_and_errors():
    period = resolve_period(None, "2026-02-01", "2026-02-28")
    assert (period.slug, period.start, period.end) == (
        "custom",
        date(2026, 2, 1),
        date(2026, 2, 28),
    )
    with pytest.raises(ValueError):
        resolve_period(None, "2026-03-01", "2026-02-01")
    with pytest.raises(ValueError):
        resolve_period("next-decade")
