import json
import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from ledger import Clock, Transaction, local_today
from models import TransactionType
from periods import Period, resolve_period
from reporting import (
    LedgerFilter,
    category_breakdown,
    monthly_series,
    totals,
)
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    DepositIn,
    LedgerRecord,
    SavingsGoalIn,
    TransactionIn,
    TransactionUpdate,
)
from services import (
    BackupService,
    BudgetService,
    CSVService,
    NotFoundError,
    RecurringService,
    SavingsGoalService,
    TransactionService,
    goal_to_dict,
)


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="BreadWinner")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def get_clock() -> Clock:
    return local_today


def period_from_request(request: Request, today: date) -> Period:
    params = request.query_params
    try:
        return resolve_period(
            params.get("preset"),
            params.get("from"),
            params.get("to"),
            today=today,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(
    request: Request, clock: Clock = Depends(get_clock)
) -> LedgerFilter:
    period = period_from_request(request, clock())
    category = request.query_params.get("category")
    if not category or category == "all":
        category = None
    return LedgerFilter(start=period.start, end=period.end, category=category)


def serialize(txn: Transaction) -> dict:
    return LedgerRecord.model_validate(txn).model_dump(mode="json")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    filters: LedgerFilter = Depends(filters_from_request),
    db: Session = Depends(get_db),
):
    type_param = request.query_params.get("type")
    items = TransactionService(db).list(filters)
    if type_param:
        try:
            txn_type = TransactionType(type_param)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid type") from exc
        items = [txn for txn in items if txn.type == txn_type]
    return {"items": [serialize(txn) for txn in items], "count": len(items)}


@app.post("/api/transactions", status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    txn = TransactionService(db).create(data)
    return serialize(txn)


@app.get("/api/transactions/{entry_id}")
def get_transaction(entry_id: str, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).get(entry_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return serialize(txn)


@app.patch("/api/transactions/{entry_id}")
def update_transaction(
    entry_id: str, data: TransactionUpdate, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).update(entry_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialize(txn)


@app.delete("/api/transactions/{entry_id}", status_code=204)
def delete_transaction(entry_id: str, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(entry_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/recurring/reconcile")
def reconcile_now(
    clock: Clock = Depends(get_clock), db: Session = Depends(get_db)
):
    created = RecurringService(db, clock=clock).catch_up()
    logger.info("reconcile_run: source=api created=%d", created)
    return {"created": created}


@app.get("/api/recurring")
def list_recurring(db: Session = Depends(get_db)):
    items = RecurringService(db).list()
    return {
        "items": [
            {
                **serialize(row["transaction"]),
                "monthly": row["monthly"],
            }
            for row in items
        ]
    }


@app.get("/api/recurring/summary")
def recurring_summary(db: Session = Depends(get_db)):
    return RecurringService(db).statistics()


@app.get("/api/recurring/{entry_id}/occurrences")
def recurring_occurrences(entry_id: str, db: Session = Depends(get_db)):
    try:
        items = RecurringService(db).occurrences(entry_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"items": [serialize(txn) for txn in items]}


@app.get("/api/summary")
def summary(
    filters: LedgerFilter = Depends(filters_from_request),
    db: Session = Depends(get_db),
):
    return totals(TransactionService(db).list(filters))


@app.get("/api/category-breakdown")
def api_category_breakdown(
    request: Request,
    filters: LedgerFilter = Depends(filters_from_request),
    db: Session = Depends(get_db),
):
    entries = TransactionService(db).list(filters)
    type_param = request.query_params.get("type", TransactionType.expense.value)
    try:
        txn_type = TransactionType(type_param)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid type") from exc
    return {"items": category_breakdown(entries, txn_type)}


@app.get("/api/monthly")
def api_monthly(
    filters: LedgerFilter = Depends(filters_from_request),
    db: Session = Depends(get_db),
):
    return {"items": monthly_series(TransactionService(db).list(filters))}


@app.get("/api/budgets")
def list_budgets(
    filters: LedgerFilter = Depends(filters_from_request),
    db: Session = Depends(get_db),
):
    entries = TransactionService(db).list(filters)
    return {"items": BudgetService(db).progress(entries)}


@app.put("/api/budgets/{category}")
def set_budget(category: str, data: BudgetIn, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).set_limit(category, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"category": budget.category, "limit": data.limit}


@app.delete("/api/budgets/{category}", status_code=204)
def delete_budget(category: str, db: Session = Depends(get_db)):
    try:
        BudgetService(db).delete(category)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/savings-goals")
def list_goals(db: Session = Depends(get_db)):
    return {"items": [goal_to_dict(g) for g in SavingsGoalService(db).list_all()]}


@app.post("/api/savings-goals", status_code=201)
def create_goal(data: SavingsGoalIn, db: Session = Depends(get_db)):
    goal = SavingsGoalService(db).create(data)
    return goal_to_dict(goal)


@app.post("/api/savings-goals/{goal_id}/deposit")
def deposit_to_goal(goal_id: str, data: DepositIn, db: Session = Depends(get_db)):
    try:
        goal = SavingsGoalService(db).deposit(goal_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return goal_to_dict(goal)


@app.delete("/api/savings-goals/{goal_id}", status_code=204)
def delete_goal(goal_id: str, db: Session = Depends(get_db)):
    try:
        SavingsGoalService(db).delete(goal_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/export.csv")
def export_csv(
    filters: LedgerFilter = Depends(filters_from_request),
    db: Session = Depends(get_db),
):
    entries = TransactionService(db).list(filters)
    content = CSVService(db).export(entries)
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="transactions.csv"'},
    )


async def _read_upload(file: UploadFile) -> str:
    raw = await file.read()
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="File must be UTF-8") from exc


@app.post("/api/import/preview")
async def import_preview(
    file: UploadFile = File(...), db: Session = Depends(get_db)
):
    content = await _read_upload(file)
    rows, errors = CSVService(db).preview(content)
    return {"rows": rows, "errors": errors}


@app.post("/api/import/commit")
async def import_commit(
    file: UploadFile = File(...), db: Session = Depends(get_db)
):
    content = await _read_upload(file)
    try:
        count = CSVService(db).commit(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"imported": count}


@app.get("/api/backup")
def export_backup(db: Session = Depends(get_db)):
    return BackupService(db).export()


@app.post("/api/backup")
async def restore_backup(request: Request, db: Session = Depends(get_db)):
    try:
        raw = json.loads(await request.body())
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON") from exc
    try:
        result = BackupService(db).restore(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return result


def main(host: Optional[str] = None, port: int = 8000):
    import uvicorn

    uvicorn.run("main:app", host=host or "0.0.0.0", port=port, reload=False)


if __name__ == "__main__":
    main()
