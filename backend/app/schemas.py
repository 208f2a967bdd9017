from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator

from app.bucket_keys import coerce_utc_datetime
from app.security import normalize_user_id, validate_password_strength


def _serialize_utc_datetime(value: datetime) -> str:
	return coerce_utc_datetime(value).isoformat().replace("+00:00", "Z")


UtcDatetime = Annotated[datetime, PlainSerializer(_serialize_utc_datetime, when_used="json")]


def _normalize_optional_text(value: str | None) -> str | None:
	if value is None:
		return None

	if not isinstance(value, str):
		return value

	return value.strip()


class UserCredentials(BaseModel):
	username: str = Field(min_length=3, max_length=32)
	password: str = Field(min_length=8, max_length=128)

	@field_validator("username", mode="before")
	@classmethod
	def validate_username(cls, value: str) -> str:
		return normalize_user_id(value) if isinstance(value, str) else value

	@field_validator("password")
	@classmethod
	def validate_password(cls, value: str) -> str:
		return validate_password_strength(value)


class UserRead(BaseModel):
	username: str
	created_at: UtcDatetime


class RmbDepositCreate(BaseModel):
	deposit_date: datetime
	bank_name: str = Field(min_length=1, max_length=100)
	amount: float = Field(gt=0)

	@field_validator("bank_name", mode="before")
	@classmethod
	def normalize_bank_name(cls, value: str | None) -> str | None:
		return _normalize_optional_text(value)


class RmbDepositUpdate(BaseModel):
	deposit_date: Optional[datetime] = None
	bank_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
	amount: Optional[float] = Field(default=None, gt=0)

	@field_validator("bank_name", mode="before")
	@classmethod
	def normalize_bank_name(cls, value: str | None) -> str | None:
		return _normalize_optional_text(value)


class RmbDepositRead(BaseModel):
	id: int
	user_id: str
	deposit_date: UtcDatetime
	bank_name: str
	amount: float
	created_at: UtcDatetime
	updated_at: UtcDatetime


class UsdPurchaseCreate(BaseModel):
	purchase_date: datetime
	usd_amount: float = Field(gt=0)
	exchange_rate: float = Field(gt=0)
	purchase_channel: str = Field(min_length=1, max_length=100)

	@field_validator("purchase_channel", mode="before")
	@classmethod
	def normalize_channel(cls, value: str | None) -> str | None:
		return _normalize_optional_text(value)


class UsdPurchaseUpdate(BaseModel):
	purchase_date: Optional[datetime] = None
	usd_amount: Optional[float] = Field(default=None, gt=0)
	exchange_rate: Optional[float] = Field(default=None, gt=0)
	purchase_channel: Optional[str] = Field(default=None, min_length=1, max_length=100)

	@field_validator("purchase_channel", mode="before")
	@classmethod
	def normalize_channel(cls, value: str | None) -> str | None:
		return _normalize_optional_text(value)


class UsdPurchaseRead(BaseModel):
	id: int
	user_id: str
	purchase_date: UtcDatetime
	usd_amount: float
	exchange_rate: float
	purchase_channel: str
	total_rmb_amount: float
	created_at: UtcDatetime
	updated_at: UtcDatetime


class GoldPurchaseCreate(BaseModel):
	purchase_date: datetime
	weight: float = Field(gt=0)
	gold_price_per_gram: float = Field(ge=0)
	handling_fee_per_gram: float = Field(default=0, ge=0)
	purchase_channel: str = Field(min_length=1, max_length=100)

	@field_validator("purchase_channel", mode="before")
	@classmethod
	def normalize_channel(cls, value: str | None) -> str | None:
		return _normalize_optional_text(value)


class GoldPurchaseUpdate(BaseModel):
	purchase_date: Optional[datetime] = None
	weight: Optional[float] = Field(default=None, gt=0)
	gold_price_per_gram: Optional[float] = Field(default=None, ge=0)
	handling_fee_per_gram: Optional[float] = Field(default=None, ge=0)
	purchase_channel: Optional[str] = Field(default=None, min_length=1, max_length=100)

	@field_validator("purchase_channel", mode="before")
	@classmethod
	def normalize_channel(cls, value: str | None) -> str | None:
		return _normalize_optional_text(value)


class GoldPurchaseRead(BaseModel):
	id: int
	user_id: str
	purchase_date: UtcDatetime
	weight: float
	gold_price_per_gram: float
	handling_fee_per_gram: float
	purchase_channel: str
	total_price: float
	average_price_per_gram: float
	created_at: UtcDatetime
	updated_at: UtcDatetime


class DebtRecordCreate(BaseModel):
	loan_date: datetime
	debtor_name: str = Field(min_length=1, max_length=100)
	amount: float = Field(gt=0)

	@field_validator("debtor_name", mode="before")
	@classmethod
	def normalize_debtor_name(cls, value: str | None) -> str | None:
		return _normalize_optional_text(value)


class DebtRecordUpdate(BaseModel):
	loan_date: Optional[datetime] = None
	debtor_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
	amount: Optional[float] = Field(default=None, gt=0)

	@field_validator("debtor_name", mode="before")
	@classmethod
	def normalize_debtor_name(cls, value: str | None) -> str | None:
		return _normalize_optional_text(value)


class DebtRecordRead(BaseModel):
	id: int
	user_id: str
	loan_date: UtcDatetime
	debtor_name: str
	amount: float
	created_at: UtcDatetime
	updated_at: UtcDatetime


class PortfolioRead(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	gold_purchases: dict[int, GoldPurchaseRead] = Field(
		default_factory=dict,
		alias="gold-purchases",
	)
	usd_purchases: dict[int, UsdPurchaseRead] = Field(
		default_factory=dict,
		alias="usd-purchases",
	)
	rmb_deposits: dict[int, RmbDepositRead] = Field(
		default_factory=dict,
		alias="rmb-deposits",
	)
	debt_records: dict[int, DebtRecordRead] = Field(
		default_factory=dict,
		alias="debt-records",
	)


class DepositChartPoint(BaseModel):
	date: str
	bank_name: str
	amount: float


class MarketHistoryRead(BaseModel):
	gold_price: dict[str, float]
	exchange_rate: dict[str, float]


class DailyMarketDataRead(BaseModel):
	date: str
	gold_price: float
	gold_updated_at: UtcDatetime
	exchange_rate: float
	exchange_updated_at: UtcDatetime
	updated_at: UtcDatetime


class TableWriteRead(BaseModel):
	table: str
	status: str
	error: Optional[str] = None


class MarketSnapshotRead(BaseModel):
	day_key: str
	hour_key: str
	gold_price: float
	gold_updated_at: str
	exchange_rate: float
	exchange_updated_at: str
	writes: list[TableWriteRead]
	duration_seconds: float
