import logging
from datetime import date
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File,
    Form,
    Header,
    HTTPException,
    Request,
    UploadFile,
)
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import Settings, get_settings
from database import build_engine, build_session_factory, session_scope
from errors import Conflict, LedgerError, NotFound
from models import DeleteMode, Transaction
from periods import Period, resolve_period
from reconciliation import ImportPlan
from schemas import (
    CategoryRenameIn,
    ForecastIn,
    ForecastOut,
    ForecastUpdateIn,
    ImportBatchOut,
    ImportCommitIn,
    ImportPlanIn,
    RealizeIn,
    TransactionOut,
)
from services import (
    CategoryService,
    ForecastService,
    ImportService,
    RealizationService,
    ReportService,
    TransactionService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_db(request: Request):
    with session_scope(request.app.state.session_factory) as db:
        yield db


def get_account_id(x_account_id: int = Header(default=1, alias="X-Account-Id")) -> int:
    if x_account_id < 1:
        raise HTTPException(status_code=400, detail="Invalid account id")
    return x_account_id


def period_from_request(request: Request) -> Period:
    return resolve_period(
        request.query_params.get("period"),
        request.query_params.get("start"),
        request.query_params.get("end"),
    )


def bank_from_request(request: Request) -> Optional[int]:
    value = request.query_params.get("bank_account_id")
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid bank account id") from exc


def _status_for(exc: LedgerError) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, Conflict):
        return 409
    return 400


async def ledger_error_handler(_request: Request, exc: LedgerError) -> JSONResponse:
    return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})


def serialize_plan(plan: ImportPlan) -> dict:
    return {
        "clean": [c.model_dump(mode="json") for c in plan.clean],
        "conflicts": [
            {
                "candidate": conflict.candidate.model_dump(mode="json"),
                "existing": TransactionOut.model_validate(conflict.existing).model_dump(
                    mode="json"
                ),
                "resolution": conflict.resolution.value,
            }
            for conflict in plan.conflicts
        ],
    }


@router.get("/forecasts")
def list_forecasts(
    request: Request,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    period = period_from_request(request)
    service = ForecastService(db, account_id)
    items = service.list(
        period if request.query_params.get("period") else None,
        bank_account_id=bank_from_request(request),
    )
    projection = service.monthly_projection(
        period, bank_account_id=bank_from_request(request)
    )
    return {
        "items": [ForecastOut.model_validate(f) for f in items],
        "projection": projection,
    }


@router.get("/forecasts/groups/{group_id}")
def list_forecast_group(
    group_id: str,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    members = ForecastService(db, account_id).group_members(group_id)
    return [ForecastOut.model_validate(f) for f in members]


@router.post("/forecasts", status_code=201)
def create_forecasts(
    payload: ForecastIn,
    request: Request,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    forecasts = ForecastService(db, account_id).create(
        payload, horizon=request.app.state.settings.fixed_series_months
    )
    return {"forecast_ids": [f.id for f in forecasts]}


@router.post("/forecasts/instant", status_code=201)
def create_forecasts_instant(
    payload: ForecastIn,
    request: Request,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    txn, forecasts = ForecastService(db, account_id).create_with_first_realized(
        payload, horizon=request.app.state.settings.fixed_series_months
    )
    return {"transaction_id": txn.id, "forecast_ids": [f.id for f in forecasts]}


@router.post("/forecasts/{forecast_id}/realize", status_code=201)
def realize_forecast(
    forecast_id: int,
    payload: Optional[RealizeIn] = None,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    effective_date = payload.effective_date if payload else None
    txn = RealizationService(db, account_id).realize(forecast_id, effective_date)
    return TransactionOut.model_validate(txn)


@router.put("/forecasts/{forecast_id}")
def update_forecast(
    forecast_id: int,
    payload: ForecastUpdateIn,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    forecast = ForecastService(db, account_id).update(forecast_id, payload)
    return ForecastOut.model_validate(forecast)


@router.delete("/forecasts/{forecast_id}")
def delete_forecast(
    forecast_id: int,
    mode: DeleteMode = DeleteMode.single,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    deleted = ForecastService(db, account_id).delete(forecast_id, mode)
    return {"deleted": deleted}


@router.post("/imports/plan")
def plan_import(
    payload: ImportPlanIn,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    plan = ImportService(db, account_id).plan(
        payload.bank_account_id, payload.candidates
    )
    return serialize_plan(plan)


@router.post("/imports/preview")
async def preview_import(
    bank_account_id: int = Form(...),
    start: Optional[date] = Form(default=None),
    end: Optional[date] = Form(default=None),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    raw = await file.read()
    try:
        content = raw.decode("utf-8")
    except UnicodeDecodeError:
        # OFX 1.x files from Brazilian banks are commonly latin-1
        content = raw.decode("latin-1")
    preview = ImportService(db, account_id).preview_statement(
        content, bank_account_id, start=start, end=end
    )
    body = serialize_plan(preview.plan)
    body.update(
        {
            "file_name": file.filename,
            "errors": preview.errors,
            "ignored": preview.ignored,
        }
    )
    return body


@router.post("/imports/commit", status_code=201)
def commit_import(
    payload: ImportCommitIn,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    result = ImportService(db, account_id).commit(payload)
    return {
        "import_batch_id": result.import_batch_id,
        "inserted_count": result.inserted_count,
        "deleted_count": result.deleted_count,
    }


@router.get("/imports")
def list_imports(
    db: Session = Depends(get_db), account_id: int = Depends(get_account_id)
):
    batches = ImportService(db, account_id).list_batches()
    return [ImportBatchOut.model_validate(b) for b in batches]


@router.delete("/imports/{batch_id}")
def delete_import(
    batch_id: int,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    removed = ImportService(db, account_id).delete_batch(batch_id)
    return {"deleted_transactions": removed}


@router.patch("/categories/{category_id}")
def rename_category(
    category_id: int,
    payload: CategoryRenameIn,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    category = CategoryService(db, account_id).rename(category_id, payload.name)
    return {"id": category.id, "name": category.name, "type": category.type.value}


@router.patch("/transactions/{transaction_id}/reconcile")
def reconcile_transaction(
    transaction_id: int,
    reconciled: bool = True,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    txn: Transaction = TransactionService(db, account_id).set_reconciled(
        transaction_id, reconciled
    )
    return TransactionOut.model_validate(txn)


@router.get("/reports/cash-flow")
def report_cash_flow(
    request: Request,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    return ReportService(db, account_id).cash_flow(
        period_from_request(request), bank_account_id=bank_from_request(request)
    )


@router.get("/reports/income-statement")
def report_income_statement(
    request: Request,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    return ReportService(db, account_id).income_statement(
        period_from_request(request), bank_account_id=bank_from_request(request)
    )


@router.get("/reports/analysis")
def report_analysis(
    request: Request,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    return ReportService(db, account_id).analysis(
        period_from_request(request), bank_account_id=bank_from_request(request)
    )


@router.get("/reports/daily-flow")
def report_daily_flow(
    request: Request,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    return ReportService(db, account_id).daily_flow(
        period_from_request(request), bank_account_id=bank_from_request(request)
    )


@router.get("/reports/summary")
def report_summary(
    request: Request,
    db: Session = Depends(get_db),
    account_id: int = Depends(get_account_id),
):
    return ReportService(db, account_id).summary(
        period_from_request(request), bank_account_id=bank_from_request(request)
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    engine = build_engine(settings.database_url)

    app = FastAPI(title="Bookkeeper")
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.include_router(router)
    logger.info(f"app_created: database={engine.url.render_as_string()}")
    return app


app = create_app()
