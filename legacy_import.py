from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from models import Frequency, TransactionType
from schemas import BackupPayload, BudgetRecord, LedgerRecord, SavingsGoalRecord


@dataclass
class ParsedBackup:
    payload: BackupPayload
    legacy: bool
    warnings: list[str] = field(default_factory=list)


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


def _validate_rows(
    rows: Any, model: type[BaseModel], label: str, warnings: list[str]
) -> list:
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise ValueError(f"Backup field '{label}' must be a list")
    parsed = []
    for idx, raw in enumerate(rows, start=1):
        try:
            parsed.append(model.model_validate(raw))
        except ValidationError as exc:
            warnings.append(f"{label} #{idx} skipped: {_first_error(exc)}")
    return parsed


def _migrate_legacy_expense(raw: Any) -> Any:
    if not isinstance(raw, dict):
        return raw
    return {
        **raw,
        "type": TransactionType.expense.value,
        "recurring": Frequency.one_time.value,
    }


def parse_backup(raw: Any) -> ParsedBackup:
    """Accept a full data export or the older bare list of expenses.

    The older format predates income and recurrence, so every row becomes a
    one-time expense.
    """
    warnings: list[str] = []
    if isinstance(raw, list):
        migrated = [_migrate_legacy_expense(row) for row in raw]
        transactions = _validate_rows(migrated, LedgerRecord, "transactions", warnings)
        return ParsedBackup(
            payload=BackupPayload(transactions=transactions),
            legacy=True,
            warnings=warnings,
        )

    if not isinstance(raw, dict):
        raise ValueError("Backup must be a JSON object or a list of expenses")

    transactions = _validate_rows(
        raw.get("transactions"), LedgerRecord, "transactions", warnings
    )
    budgets = _validate_rows(raw.get("budgets"), BudgetRecord, "budgets", warnings)
    goals = _validate_rows(
        raw.get("savingsGoals"), SavingsGoalRecord, "savingsGoals", warnings
    )
    return ParsedBackup(
        payload=BackupPayload(
            transactions=transactions, budgets=budgets, savings_goals=goals
        ),
        legacy=False,
        warnings=warnings,
    )
