import logging

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response, StreamingResponse
from sqlalchemy.orm import Session

from auth import bridge_secret_matches, current_user_id, issue_session_token
from config import get_settings
from database import get_session, init_schema
from legacy_json_import import LegacyJsonImportService
from numeric_input import NumericInput
from periods import PeriodSelection, local_today
from schemas import (
    BulkDeleteIn,
    ExpenseIn,
    ExpenseUpdate,
    FormatAmountIn,
    RateIn,
    SessionIn,
    SettingsIn,
)
from services import (
    DashboardService,
    ExpenseService,
    ImportService,
    RateService,
    SettingsService,
)
from store import LedgerStore, RecordNotFound, StoreError, get_store

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MAX_IMPORT_BYTES = 2 * 1024 * 1024
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

app = FastAPI(title="Expense Ledger")


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


@app.on_event("startup")
def startup_event():
    settings = get_settings()
    if settings.storage_backend == "sql":
        init_schema()
    logger.info(
        f"startup: backend={settings.storage_backend} version={APP_VERSION}"
    )


@app.exception_handler(StoreError)
def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"store_unavailable: path={request.url.path} error={exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage temporarily unavailable", "retryable": True},
    )


def get_ledger(db: Session = Depends(get_session)) -> LedgerStore:
    return get_store(db)


def year_from_request(request: Request) -> int:
    try:
        selection = PeriodSelection.from_query(request.query_params.get("year"), None)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return selection.year


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION, "today": local_today().isoformat()}


@app.post("/auth/session")
def create_session(data: SessionIn):
    if not bridge_secret_matches(data.bridge_secret):
        raise HTTPException(status_code=403, detail="Invalid bridge secret")
    return {"token": issue_session_token(data.subject), "subject": data.subject}


@app.get("/api/expenses")
def list_expenses(
    request: Request,
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    year = year_from_request(request)
    records = ExpenseService(store, user_id).list_for_year(year)
    return {"year": year, "items": [r.to_dict() for r in records]}


@app.post("/api/expenses", status_code=201)
def create_expense(
    data: ExpenseIn,
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    try:
        record = ExpenseService(store, user_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return record.to_dict()


@app.put("/api/expenses/{expense_id}")
def update_expense(
    expense_id: str,
    data: ExpenseUpdate,
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    try:
        record = ExpenseService(store, user_id).update(expense_id, data)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return record.to_dict()


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: str,
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    try:
        ExpenseService(store, user_id).delete(expense_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"ok": True}


@app.post("/api/expenses/bulk-delete")
def bulk_delete_expenses(
    data: BulkDeleteIn,
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    removed = ExpenseService(store, user_id).delete_many(data.ids)
    return {"ok": True, "deleted": removed}


@app.get("/api/rates")
def get_rates(
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    rates = RateService(store, user_id).rates()
    return {"usd_rates": {k: str(v) for k, v in rates.items()}}


@app.put("/api/rates")
def upsert_rate(
    data: RateIn,
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    try:
        rates = RateService(store, user_id).upsert(data.month_key, data.rate)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"usd_rates": {k: str(v) for k, v in rates.items()}}


@app.get("/api/rates/resolve")
def resolve_rate_endpoint(
    month_key: str,
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    try:
        resolved = RateService(store, user_id).resolve(month_key)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {**resolved, "rate": str(resolved["rate"])}


@app.get("/api/settings")
def get_user_settings(
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    return SettingsService(store, user_id).get().to_dict()


@app.put("/api/settings")
def save_user_settings(
    data: SettingsIn,
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    return SettingsService(store, user_id).save(data).to_dict()


@app.get("/api/dashboard")
def dashboard(
    request: Request,
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    try:
        selection = PeriodSelection.from_query(
            request.query_params.get("year"), request.query_params.get("month")
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return DashboardService(store, user_id).month(selection.year, selection.month)


@app.get("/api/yearly")
def yearly(
    request: Request,
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    year = year_from_request(request)
    return DashboardService(store, user_id).year(year)


async def _read_upload_bytes(file: UploadFile) -> bytes:
    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(raw) > MAX_IMPORT_BYTES:
        raise HTTPException(status_code=400, detail="File too large (max 2MB)")
    return raw


async def _read_upload(file: UploadFile) -> str:
    raw = await _read_upload_bytes(file)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="File must be UTF-8 text") from exc


@app.get("/api/import/template")
def import_template(
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    content = ImportService(store, user_id).template()
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="expenses_template.xlsx"'},
    )


@app.post("/api/import/preview")
async def import_preview(
    file: UploadFile = File(...),
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    raw = await _read_upload_bytes(file)
    try:
        rows, errors = ImportService(store, user_id).preview(raw, file.filename)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"rows": rows, "errors": errors}


@app.post("/api/import/commit")
async def import_commit(
    file: UploadFile = File(...),
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    raw = await _read_upload_bytes(file)
    try:
        result = ImportService(store, user_id).commit(raw, file.filename)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return result.to_dict()


@app.get("/api/export.csv")
def export_expenses_endpoint(
    request: Request,
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    year = year_from_request(request)
    csv_text = ExpenseService(store, user_id).export_year(year)
    filename = f"expenses_{year}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/format-amount")
def format_amount(data: FormatAmountIn, user_id: str = Depends(current_user_id)):
    field = NumericInput()
    if data.value is not None:
        field.reset(data.value)
    else:
        field.on_change(data.raw, data.caret)
    return field.to_dict()


@app.post("/api/import/legacy/preview")
async def legacy_import_preview(
    file: UploadFile = File(...),
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    content = await _read_upload(file)
    try:
        preview = LegacyJsonImportService(store, user_id).preview(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return preview.to_dict()


@app.post("/api/import/legacy/commit")
async def legacy_import_commit(
    file: UploadFile = File(...),
    store: LedgerStore = Depends(get_ledger),
    user_id: str = Depends(current_user_id),
):
    content = await _read_upload(file)
    try:
        result = LegacyJsonImportService(store, user_id).commit(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return result.to_dict()
