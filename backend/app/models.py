from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
	"""Return the current UTC timestamp."""
	return datetime.now(timezone.utc)


class UserAccount(SQLModel, table=True):
	username: str = Field(primary_key=True, max_length=32)
	password_digest: str = Field(max_length=512)
	created_at: datetime = Field(default_factory=utc_now, nullable=False)
	updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class GoldPrice(SQLModel, table=True):
	__tablename__ = "gold_prices"

	id: Optional[int] = Field(default=None, primary_key=True)
	price: float
	updated_at: datetime = Field(nullable=False)
	hour_key: str = Field(max_length=10, unique=True, index=True)
	created_at: datetime = Field(default_factory=utc_now, nullable=False)


class ExchangeRate(SQLModel, table=True):
	__tablename__ = "exchange_rates"

	id: Optional[int] = Field(default=None, primary_key=True)
	rate: float
	updated_at: datetime = Field(nullable=False)
	hour_key: str = Field(max_length=10, unique=True, index=True)
	created_at: datetime = Field(default_factory=utc_now, nullable=False)


class DailyMarketData(SQLModel, table=True):
	__tablename__ = "daily_market_data"

	id: Optional[int] = Field(default=None, primary_key=True)
	date: str = Field(max_length=10, unique=True, index=True)
	gold_price: float
	gold_updated_at: datetime = Field(nullable=False)
	exchange_rate: float
	exchange_updated_at: datetime = Field(nullable=False)
	created_at: datetime = Field(default_factory=utc_now, nullable=False)
	updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class RmbDepositRecord(SQLModel, table=True):
	__tablename__ = "rmb_deposit_records"

	id: Optional[int] = Field(default=None, primary_key=True)
	user_id: str = Field(index=True, max_length=32)
	deposit_date: datetime = Field(nullable=False, index=True)
	bank_name: str = Field(max_length=100)
	amount: float
	created_at: datetime = Field(default_factory=utc_now, nullable=False)
	updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class UsdPurchaseRecord(SQLModel, table=True):
	__tablename__ = "usd_purchase_records"

	id: Optional[int] = Field(default=None, primary_key=True)
	user_id: str = Field(index=True, max_length=32)
	purchase_date: datetime = Field(nullable=False, index=True)
	usd_amount: float
	exchange_rate: float
	purchase_channel: str = Field(max_length=100)
	total_rmb_amount: float = Field(default=0)
	created_at: datetime = Field(default_factory=utc_now, nullable=False)
	updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class GoldPurchaseRecord(SQLModel, table=True):
	__tablename__ = "gold_purchase_records"

	id: Optional[int] = Field(default=None, primary_key=True)
	user_id: str = Field(index=True, max_length=32)
	purchase_date: datetime = Field(nullable=False, index=True)
	weight: float
	gold_price_per_gram: float
	handling_fee_per_gram: float = Field(default=0)
	purchase_channel: str = Field(max_length=100)
	total_price: float = Field(default=0)
	average_price_per_gram: float = Field(default=0)
	created_at: datetime = Field(default_factory=utc_now, nullable=False)
	updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class DebtRecord(SQLModel, table=True):
	__tablename__ = "debt_records"

	id: Optional[int] = Field(default=None, primary_key=True)
	user_id: str = Field(index=True, max_length=32)
	loan_date: datetime = Field(nullable=False, index=True)
	debtor_name: str = Field(max_length=100)
	amount: float
	created_at: datetime = Field(default_factory=utc_now, nullable=False)
	updated_at: datetime = Field(default_factory=utc_now, nullable=False)
