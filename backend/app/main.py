from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from time import perf_counter
from typing import Annotated, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel
from sqlmodel import Session, SQLModel, select
from starlette.middleware.sessions import SessionMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.analytics import aggregate_deposits_by_day
from app.database import get_session, init_db
from app.models import (
	DailyMarketData,
	DebtRecord,
	GoldPurchaseRecord,
	RmbDepositRecord,
	UsdPurchaseRecord,
	UserAccount,
	utc_now,
)
from app.schemas import (
	DailyMarketDataRead,
	DebtRecordCreate,
	DebtRecordRead,
	DebtRecordUpdate,
	DepositChartPoint,
	GoldPurchaseCreate,
	GoldPurchaseRead,
	GoldPurchaseUpdate,
	MarketHistoryRead,
	MarketSnapshotRead,
	PortfolioRead,
	RmbDepositCreate,
	RmbDepositRead,
	RmbDepositUpdate,
	TableWriteRead,
	UsdPurchaseCreate,
	UsdPurchaseRead,
	UsdPurchaseUpdate,
	UserCredentials,
	UserRead,
)
from app.security import (
	SESSION_USER_KEY,
	hash_password,
	require_session_user_id,
	verify_api_token,
	verify_password,
)
from app.settings import get_settings
from app.services.market_data import ExchangeRateProvider, GoldPriceProvider, QuoteLookupError
from app.services.market_history import (
	GRANULARITY_DAY,
	GRANULARITY_HOUR,
	HistoryWindowError,
	load_latest_daily,
	read_series,
)
from app.services.market_snapshot import (
	WRITE_FAILED,
	SnapshotResult,
	fetch_and_write_snapshot,
)
from app.services.storage import MarketDataStorageError

SessionDependency = Annotated[Session, Depends(get_session)]
TokenDependency = Annotated[None, Depends(verify_api_token)]
gold_price_provider = GoldPriceProvider()
exchange_rate_provider = ExchangeRateProvider()
settings = get_settings()
logger = logging.getLogger(__name__)

OwnedRecord = TypeVar(
	"OwnedRecord",
	RmbDepositRecord,
	UsdPurchaseRecord,
	GoldPurchaseRecord,
	DebtRecord,
)


def get_current_user(
	request: Request,
	_: TokenDependency,
	session: SessionDependency,
) -> UserAccount:
	user_id = require_session_user_id(request)
	user = session.get(UserAccount, user_id)
	if user is None:
		request.session.clear()
		raise HTTPException(status_code=401, detail="请先登录。")
	return user


CurrentUserDependency = Annotated[UserAccount, Depends(get_current_user)]


@asynccontextmanager
async def lifespan(_: FastAPI):
	settings.validate_runtime()
	init_db()
	yield


app = FastAPI(
	title="Personal Asset Tracker API",
	version="0.2.0",
	lifespan=lifespan,
)

app.add_middleware(
	SessionMiddleware,
	secret_key=settings.session_secret_value() or "",
	session_cookie="asset_tracker_session",
	same_site="lax",
	https_only=settings.is_production,
)

app.add_middleware(
	TrustedHostMiddleware,
	allowed_hosts=settings.trusted_hosts() or ["localhost", "127.0.0.1"],
)

app.add_middleware(
	CORSMiddleware,
	allow_origins=settings.cors_origins(),
	allow_credentials=True,
	allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
	allow_headers=["Content-Type", "X-API-Key"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
	response: Response = await call_next(request)
	response.headers["Cache-Control"] = "no-store"
	response.headers["Pragma"] = "no-cache"
	response.headers["Cross-Origin-Opener-Policy"] = "same-origin"
	response.headers["Cross-Origin-Resource-Policy"] = "same-origin"
	response.headers["Permissions-Policy"] = "camera=(), geolocation=(), microphone=()"
	response.headers["Referrer-Policy"] = "same-origin"
	response.headers["X-Content-Type-Options"] = "nosniff"
	response.headers["X-Frame-Options"] = "DENY"
	if request.headers.get("x-forwarded-proto", request.url.scheme) == "https":
		response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
	return response


def _touch_model(model: SQLModel) -> None:
	model.updated_at = utc_now()


def _apply_updates(model: SQLModel, payload: BaseModel) -> None:
	"""Copy explicitly provided, non-null fields from a partial update payload."""
	for field_name in payload.model_fields_set:
		value = getattr(payload, field_name)
		if value is not None:
			setattr(model, field_name, value)


def _save_model(session: Session, model: OwnedRecord) -> OwnedRecord:
	session.add(model)
	session.commit()
	session.refresh(model)
	return model


def _get_owned_record(
	session: Session,
	model: type[OwnedRecord],
	record_id: int,
	user_id: str,
	not_found_detail: str,
) -> OwnedRecord:
	record = session.get(model, record_id)
	if record is None or record.user_id != user_id:
		raise HTTPException(status_code=404, detail=not_found_detail)
	return record


def _delete_owned_record(
	session: Session,
	model: type[OwnedRecord],
	record_id: int,
	user_id: str,
	not_found_detail: str,
) -> Response:
	record = _get_owned_record(session, model, record_id, user_id, not_found_detail)
	session.delete(record)
	session.commit()
	return Response(status_code=204)


def _refresh_usd_totals(record: UsdPurchaseRecord) -> None:
	record.total_rmb_amount = round(record.usd_amount * record.exchange_rate, 2)


def _refresh_gold_totals(record: GoldPurchaseRecord) -> None:
	unit_price = record.gold_price_per_gram + record.handling_fee_per_gram
	record.total_price = round(record.weight * unit_price, 2)
	record.average_price_per_gram = round(unit_price, 2)


def _build_snapshot_read(result: SnapshotResult, duration_seconds: float) -> MarketSnapshotRead:
	return MarketSnapshotRead(
		day_key=result.day_key,
		hour_key=result.hour_key,
		gold_price=result.gold.value,
		gold_updated_at=result.gold.source_updated_at_display,
		exchange_rate=result.exchange_rate.value,
		exchange_updated_at=result.exchange_rate.source_updated_at_display,
		writes=[
			TableWriteRead(table=outcome.table, status=outcome.status, error=outcome.error)
			for outcome in result.writes
		],
		duration_seconds=round(duration_seconds, 2),
	)


@app.get("/api/health")
def healthcheck() -> dict[str, str]:
	return {"status": "ok"}


@app.post("/api/market-data/fetch", response_model=MarketSnapshotRead)
async def fetch_market_data(
	response: Response,
	_: TokenDependency,
	session: SessionDependency,
) -> MarketSnapshotRead:
	started_at = perf_counter()
	try:
		result = await fetch_and_write_snapshot(session, gold_price_provider, exchange_rate_provider)
	except QuoteLookupError as exc:
		raise HTTPException(status_code=502, detail=str(exc)) from exc

	if not result.succeeded:
		failed_tables = [outcome.table for outcome in result.writes if outcome.status == WRITE_FAILED]
		logger.warning("Market snapshot partially failed for tables: %s", ", ".join(failed_tables))
		response.status_code = 207

	return _build_snapshot_read(result, perf_counter() - started_at)


@app.get("/api/market-data/history", response_model=MarketHistoryRead)
def get_market_history(
	_: TokenDependency,
	session: SessionDependency,
	days: int | None = None,
	hours: int | None = None,
) -> MarketHistoryRead:
	if hours is not None:
		granularity, window = GRANULARITY_HOUR, hours
	else:
		granularity = GRANULARITY_DAY
		window = days if days is not None else settings.default_history_days

	try:
		history = read_series(session, granularity, window)
	except HistoryWindowError as exc:
		raise HTTPException(status_code=422, detail=str(exc)) from exc
	except MarketDataStorageError as exc:
		raise HTTPException(status_code=503, detail=str(exc)) from exc

	return MarketHistoryRead(gold_price=history.gold_price, exchange_rate=history.exchange_rate)


@app.get("/api/market-data/latest", response_model=DailyMarketDataRead)
def get_latest_market_data(_: TokenDependency, session: SessionDependency) -> DailyMarketData:
	try:
		latest = load_latest_daily(session)
	except MarketDataStorageError as exc:
		raise HTTPException(status_code=503, detail=str(exc)) from exc

	if latest is None:
		raise HTTPException(status_code=404, detail="Market data not found.")
	return latest


@app.post("/api/auth/register", response_model=UserRead, status_code=201)
def register(
	payload: UserCredentials,
	request: Request,
	_: TokenDependency,
	session: SessionDependency,
) -> UserAccount:
	if session.get(UserAccount, payload.username) is not None:
		raise HTTPException(status_code=409, detail="用户名已存在。")

	user = UserAccount(
		username=payload.username,
		password_digest=hash_password(payload.password),
	)
	session.add(user)
	session.commit()
	session.refresh(user)
	request.session[SESSION_USER_KEY] = user.username
	return user


@app.post("/api/auth/login", response_model=UserRead)
def login(
	payload: UserCredentials,
	request: Request,
	_: TokenDependency,
	session: SessionDependency,
) -> UserAccount:
	user = session.get(UserAccount, payload.username)
	if user is None or not verify_password(payload.password, user.password_digest):
		raise HTTPException(status_code=401, detail="用户名或密码错误。")

	request.session.clear()
	request.session[SESSION_USER_KEY] = user.username
	return user


@app.post("/api/auth/logout", status_code=204)
def logout(request: Request, _: TokenDependency) -> Response:
	request.session.clear()
	return Response(status_code=204)


@app.get("/api/auth/me", response_model=UserRead)
def get_me(current_user: CurrentUserDependency) -> UserAccount:
	return current_user


@app.get("/api/rmb-deposits", response_model=list[RmbDepositRead])
def list_rmb_deposits(
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> list[RmbDepositRecord]:
	return list(
		session.exec(
			select(RmbDepositRecord)
			.where(RmbDepositRecord.user_id == current_user.username)
			.order_by(RmbDepositRecord.deposit_date.desc()),
		),
	)


@app.get("/api/rmb-deposits/chart", response_model=list[DepositChartPoint])
def get_rmb_deposit_chart(
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> list[DepositChartPoint]:
	deposits = session.exec(
		select(RmbDepositRecord)
		.where(RmbDepositRecord.user_id == current_user.username)
		.order_by(RmbDepositRecord.deposit_date.asc()),
	)
	return aggregate_deposits_by_day(deposits)


@app.post("/api/rmb-deposits", response_model=RmbDepositRead, status_code=201)
def create_rmb_deposit(
	payload: RmbDepositCreate,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> RmbDepositRecord:
	record = RmbDepositRecord(user_id=current_user.username, **payload.model_dump())
	return _save_model(session, record)


@app.patch("/api/rmb-deposits/{record_id}", response_model=RmbDepositRead)
def update_rmb_deposit(
	record_id: int,
	payload: RmbDepositUpdate,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> RmbDepositRecord:
	record = _get_owned_record(
		session,
		RmbDepositRecord,
		record_id,
		current_user.username,
		"Deposit record not found.",
	)
	_apply_updates(record, payload)
	_touch_model(record)
	return _save_model(session, record)


@app.delete("/api/rmb-deposits/{record_id}", status_code=204)
def delete_rmb_deposit(
	record_id: int,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> Response:
	return _delete_owned_record(
		session,
		RmbDepositRecord,
		record_id,
		current_user.username,
		"Deposit record not found.",
	)


@app.get("/api/usd-purchases", response_model=list[UsdPurchaseRead])
def list_usd_purchases(
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> list[UsdPurchaseRecord]:
	return list(
		session.exec(
			select(UsdPurchaseRecord)
			.where(UsdPurchaseRecord.user_id == current_user.username)
			.order_by(UsdPurchaseRecord.purchase_date.desc()),
		),
	)


@app.post("/api/usd-purchases", response_model=UsdPurchaseRead, status_code=201)
def create_usd_purchase(
	payload: UsdPurchaseCreate,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> UsdPurchaseRecord:
	record = UsdPurchaseRecord(user_id=current_user.username, **payload.model_dump())
	_refresh_usd_totals(record)
	return _save_model(session, record)


@app.patch("/api/usd-purchases/{record_id}", response_model=UsdPurchaseRead)
def update_usd_purchase(
	record_id: int,
	payload: UsdPurchaseUpdate,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> UsdPurchaseRecord:
	record = _get_owned_record(
		session,
		UsdPurchaseRecord,
		record_id,
		current_user.username,
		"USD purchase record not found.",
	)
	_apply_updates(record, payload)
	_refresh_usd_totals(record)
	_touch_model(record)
	return _save_model(session, record)


@app.delete("/api/usd-purchases/{record_id}", status_code=204)
def delete_usd_purchase(
	record_id: int,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> Response:
	return _delete_owned_record(
		session,
		UsdPurchaseRecord,
		record_id,
		current_user.username,
		"USD purchase record not found.",
	)


@app.get("/api/gold-purchases", response_model=list[GoldPurchaseRead])
def list_gold_purchases(
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> list[GoldPurchaseRecord]:
	return list(
		session.exec(
			select(GoldPurchaseRecord)
			.where(GoldPurchaseRecord.user_id == current_user.username)
			.order_by(GoldPurchaseRecord.purchase_date.desc()),
		),
	)


@app.post("/api/gold-purchases", response_model=GoldPurchaseRead, status_code=201)
def create_gold_purchase(
	payload: GoldPurchaseCreate,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> GoldPurchaseRecord:
	record = GoldPurchaseRecord(user_id=current_user.username, **payload.model_dump())
	_refresh_gold_totals(record)
	return _save_model(session, record)


@app.patch("/api/gold-purchases/{record_id}", response_model=GoldPurchaseRead)
def update_gold_purchase(
	record_id: int,
	payload: GoldPurchaseUpdate,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> GoldPurchaseRecord:
	record = _get_owned_record(
		session,
		GoldPurchaseRecord,
		record_id,
		current_user.username,
		"Gold purchase record not found.",
	)
	_apply_updates(record, payload)
	_refresh_gold_totals(record)
	_touch_model(record)
	return _save_model(session, record)


@app.delete("/api/gold-purchases/{record_id}", status_code=204)
def delete_gold_purchase(
	record_id: int,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> Response:
	return _delete_owned_record(
		session,
		GoldPurchaseRecord,
		record_id,
		current_user.username,
		"Gold purchase record not found.",
	)


@app.get("/api/debt-records", response_model=list[DebtRecordRead])
def list_debt_records(
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> list[DebtRecord]:
	return list(
		session.exec(
			select(DebtRecord)
			.where(DebtRecord.user_id == current_user.username)
			.order_by(DebtRecord.loan_date.desc()),
		),
	)


@app.post("/api/debt-records", response_model=DebtRecordRead, status_code=201)
def create_debt_record(
	payload: DebtRecordCreate,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> DebtRecord:
	record = DebtRecord(user_id=current_user.username, **payload.model_dump())
	return _save_model(session, record)


@app.patch("/api/debt-records/{record_id}", response_model=DebtRecordRead)
def update_debt_record(
	record_id: int,
	payload: DebtRecordUpdate,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> DebtRecord:
	record = _get_owned_record(
		session,
		DebtRecord,
		record_id,
		current_user.username,
		"Debt record not found.",
	)
	_apply_updates(record, payload)
	_touch_model(record)
	return _save_model(session, record)


@app.delete("/api/debt-records/{record_id}", status_code=204)
def delete_debt_record(
	record_id: int,
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> Response:
	return _delete_owned_record(
		session,
		DebtRecord,
		record_id,
		current_user.username,
		"Debt record not found.",
	)


@app.get("/api/portfolio/all", response_model=PortfolioRead)
def get_portfolio(
	current_user: CurrentUserDependency,
	session: SessionDependency,
) -> PortfolioRead:
	"""Return every record of the current user grouped by record type, then id."""
	user_id = current_user.username
	gold_purchases = session.exec(
		select(GoldPurchaseRecord).where(GoldPurchaseRecord.user_id == user_id),
	)
	usd_purchases = session.exec(
		select(UsdPurchaseRecord).where(UsdPurchaseRecord.user_id == user_id),
	)
	rmb_deposits = session.exec(
		select(RmbDepositRecord).where(RmbDepositRecord.user_id == user_id),
	)
	debt_records = session.exec(select(DebtRecord).where(DebtRecord.user_id == user_id))

	return PortfolioRead(
		gold_purchases={
			record.id: GoldPurchaseRead.model_validate(record, from_attributes=True)
			for record in gold_purchases
		},
		usd_purchases={
			record.id: UsdPurchaseRead.model_validate(record, from_attributes=True)
			for record in usd_purchases
		},
		rmb_deposits={
			record.id: RmbDepositRead.model_validate(record, from_attributes=True)
			for record in rmb_deposits
		},
		debt_records={
			record.id: DebtRecordRead.model_validate(record, from_attributes=True)
			for record in debt_records
		},
	)
