from __future__ import annotations

import logging
import threading
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from csv_utils import export_transactions, parse_csv
from ledger import (
    Clock,
    RecurringTemplate,
    SqlLedgerStore,
    Transaction,
    amount_to_cents,
    cents_to_amount,
    classify,
    local_today,
    new_entry_id,
    to_amount,
)
from legacy_import import parse_backup
from models import Budget, SavingsGoal, TransactionRecord, TransactionType
from recurrence import RecurringEngine, series_heads
from reporting import LedgerFilter, recurring_breakdown, recurring_items
from schemas import (
    BackupPayload,
    BudgetIn,
    BudgetRecord,
    DepositIn,
    LedgerRecord,
    SavingsGoalIn,
    SavingsGoalRecord,
    TransactionIn,
    TransactionUpdate,
)


logger = logging.getLogger(__name__)

# Scheduler jobs and API requests share it: one reconciliation pass at a time.
_reconcile_lock = threading.Lock()


class NotFoundError(ValueError):
    pass


def _sorted_newest_first(entries: Sequence[Transaction]) -> list[Transaction]:
    return sorted(entries, key=lambda t: (t.date, t.description, t.id), reverse=True)


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.store = SqlLedgerStore(session)

    def list(self, filters: Optional[LedgerFilter] = None) -> list[Transaction]:
        entries = self.store.read()
        if filters is not None:
            entries = filters.apply(entries)
        return _sorted_newest_first(entries)

    def get(self, entry_id: str) -> Transaction:
        txn = self.store.get(entry_id)
        if txn is None:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        txn = data.to_transaction()
        self.store.append([txn])
        self.session.commit()
        logger.info("transaction_created: id=%s recurring=%s", txn.id, txn.recurring)
        return txn

    def update(self, entry_id: str, data: TransactionUpdate) -> Transaction:
        record = self.session.get(TransactionRecord, entry_id)
        if record is None:
            raise NotFoundError("Transaction not found")
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None:
                raise ValueError(f"{field} cannot be empty")
            if field == "amount":
                record.amount_cents = amount_to_cents(value)
            elif field == "recurring":
                record.recurring = value.value
            elif isinstance(value, str):
                setattr(record, field, value.strip())
            else:
                setattr(record, field, value)
        self.session.commit()
        self.session.refresh(record)
        return self.get(entry_id)

    def delete(self, entry_id: str) -> None:
        record = self.session.get(TransactionRecord, entry_id)
        if record is None:
            raise NotFoundError("Transaction not found")
        self.session.delete(record)
        self.session.commit()

    def import_entries(self, entries: Sequence[Transaction]) -> int:
        count = self.add_new(entries)
        self.session.commit()
        return count

    def add_new(self, entries: Sequence[Transaction]) -> int:
        """Append entries, skipping any whose id is already in the ledger."""
        existing = set(self.session.scalars(select(TransactionRecord.id)))
        fresh: list[Transaction] = []
        for txn in entries:
            if txn.id in existing:
                continue
            existing.add(txn.id)
            fresh.append(txn)
        self.store.append(fresh)
        return len(fresh)


class RecurringService:
    def __init__(self, session: Session, clock: Clock = local_today) -> None:
        self.session = session
        self.store = SqlLedgerStore(session)
        self.clock = clock

    def catch_up(self, today: Optional[date] = None) -> int:
        engine = RecurringEngine(self.store, self.clock)
        with _reconcile_lock:
            try:
                count = engine.run(today)
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        return count

    def pending(self, today: Optional[date] = None) -> list[Transaction]:
        return RecurringEngine(self.store, self.clock).pending(today)

    def list(self) -> list[dict[str, object]]:
        return recurring_items(series_heads(self.store.read()))

    def statistics(self) -> dict[str, object]:
        heads = series_heads(self.store.read())
        stats = recurring_breakdown(heads)
        stats["counts"] = {
            "income": sum(1 for t in heads if t.type == TransactionType.income),
            "expense": sum(1 for t in heads if t.type == TransactionType.expense),
            "total": len(heads),
        }
        return stats

    def occurrences(self, entry_id: str) -> list[Transaction]:
        txn = self.store.get(entry_id)
        if txn is None:
            raise NotFoundError("Transaction not found")
        template = classify(txn)
        if not isinstance(template, RecurringTemplate):
            raise ValueError("Transaction is not recurring")
        key = template.series_key()
        members = [
            item.entry
            for item in map(classify, self.store.read())
            if isinstance(item, RecurringTemplate) and item.series_key() == key
        ]
        return _sorted_newest_first(members)


class BudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Budget]:
        stmt = select(Budget).order_by(Budget.category)
        return self.session.scalars(stmt).all()

    def set_limit(self, category: str, data: BudgetIn) -> Budget:
        budget = self.upsert(category, data.limit)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def upsert(self, category: str, limit: Decimal) -> Budget:
        clean = category.strip()
        if not clean:
            raise ValueError("Category is required")
        budget = self.session.scalars(
            select(Budget).where(Budget.category == clean)
        ).one_or_none()
        if budget is None:
            budget = Budget(category=clean, limit_cents=0)
            self.session.add(budget)
        budget.limit_cents = amount_to_cents(limit)
        self.session.flush()
        return budget

    def delete(self, category: str) -> None:
        budget = self.session.scalars(
            select(Budget).where(Budget.category == category)
        ).one_or_none()
        if budget is None:
            raise NotFoundError("Budget not found")
        self.session.delete(budget)
        self.session.commit()

    def progress(self, entries: Sequence[Transaction]) -> list[dict[str, object]]:
        spent_by_category: dict[str, Decimal] = {}
        for txn in entries:
            if txn.type != TransactionType.expense:
                continue
            spent_by_category[txn.category] = (
                spent_by_category.get(txn.category, Decimal(0)) + txn.amount
            )

        rows: list[dict[str, object]] = []
        for budget in self.list_all():
            limit = cents_to_amount(budget.limit_cents)
            spent = spent_by_category.get(budget.category, Decimal(0))
            rows.append(
                {
                    "category": budget.category,
                    "limit": limit,
                    "spent": spent,
                    "remaining": limit - spent,
                    "percent": float(spent / limit * 100) if limit > 0 else 0.0,
                    "over_budget": limit > 0 and spent > limit,
                }
            )
        return rows


def goal_to_dict(goal: SavingsGoal) -> dict[str, object]:
    target = cents_to_amount(goal.target_cents)
    saved = cents_to_amount(goal.saved_cents)
    percent = min(round(saved / target * 100), 100) if target > 0 else 0
    return {
        "id": goal.id,
        "name": goal.name,
        "icon": goal.icon,
        "target": target,
        "saved": saved,
        "percent": percent,
        "complete": saved >= target,
    }


class SavingsGoalService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[SavingsGoal]:
        stmt = select(SavingsGoal).order_by(SavingsGoal.created_at, SavingsGoal.name)
        return self.session.scalars(stmt).all()

    def get(self, goal_id: str) -> SavingsGoal:
        goal = self.session.get(SavingsGoal, goal_id)
        if goal is None:
            raise NotFoundError("Savings goal not found")
        return goal

    def create(self, data: SavingsGoalIn) -> SavingsGoal:
        goal = SavingsGoal(
            id=new_entry_id(),
            name=data.name.strip(),
            icon=data.icon,
            target_cents=amount_to_cents(data.target),
            saved_cents=0,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def deposit(self, goal_id: str, data: DepositIn) -> SavingsGoal:
        goal = self.get(goal_id)
        goal.saved_cents += amount_to_cents(data.amount)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: str) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()


class CSVService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def preview(self, content: str) -> tuple[list[dict[str, object]], list[str]]:
        rows, errors = parse_csv(content)
        return [row.model_dump() for row in rows], errors

    def commit(self, content: str) -> int:
        rows, errors = parse_csv(content)
        if errors:
            raise ValueError("; ".join(errors))
        entries = [
            Transaction(
                id=new_entry_id(),
                type=row.type,
                description=row.description,
                amount=to_amount(row.amount),
                category=row.category,
                date=row.date,
                recurring=row.recurring,
            )
            for row in rows
        ]
        count = TransactionService(self.session).import_entries(entries)
        logger.info("csv_import: rows=%d imported=%d", len(rows), count)
        return count

    def export(self, transactions: Sequence[Transaction]) -> str:
        return export_transactions(transactions)


class BackupService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def export(self) -> dict[str, Any]:
        transactions = [
            LedgerRecord.model_validate(txn)
            for txn in TransactionService(self.session).list()
        ]
        budgets = [
            BudgetRecord(category=b.category, limit=cents_to_amount(b.limit_cents))
            for b in BudgetService(self.session).list_all()
        ]
        goals = [
            SavingsGoalRecord(
                id=g.id,
                name=g.name,
                icon=g.icon,
                target=cents_to_amount(g.target_cents),
                saved=cents_to_amount(g.saved_cents),
            )
            for g in SavingsGoalService(self.session).list_all()
        ]
        payload = BackupPayload(
            transactions=transactions, budgets=budgets, savings_goals=goals
        )
        return payload.model_dump(mode="json", by_alias=True)

    def _add_goals(self, records: Sequence[SavingsGoalRecord]) -> int:
        existing = set(self.session.scalars(select(SavingsGoal.id)))
        added = 0
        for record in records:
            if record.id in existing:
                continue
            existing.add(record.id)
            self.session.add(
                SavingsGoal(
                    id=record.id,
                    name=record.name,
                    icon=record.icon,
                    target_cents=amount_to_cents(record.target),
                    saved_cents=amount_to_cents(record.saved),
                )
            )
            added += 1
        self.session.flush()
        return added

    def restore(self, raw: Any) -> dict[str, object]:
        """Apply a backup in one unit of work; nothing is kept if any part fails."""
        parsed = parse_backup(raw)
        payload = parsed.payload

        try:
            transactions = TransactionService(self.session).add_new(
                [record.to_transaction() for record in payload.transactions]
            )
            budget_service = BudgetService(self.session)
            for record in payload.budgets:
                budget_service.upsert(record.category, to_amount(record.limit))
            goals = self._add_goals(payload.savings_goals)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        for warning in parsed.warnings:
            logger.warning("backup_restore: %s", warning)
        logger.info(
            "backup_restore: legacy=%s transactions=%d budgets=%d goals=%d",
            parsed.legacy,
            transactions,
            len(payload.budgets),
            goals,
        )
        return {
            "legacy": parsed.legacy,
            "transactions": transactions,
            "budgets": len(payload.budgets),
            "savings_goals": goals,
            "warnings": parsed.warnings,
        }
