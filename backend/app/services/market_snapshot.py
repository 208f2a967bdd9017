from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from app.bucket_keys import coerce_utc_datetime, day_key, day_key_to_date_string, hour_key
from app.models import DailyMarketData, ExchangeRate, GoldPrice, utc_now
from app.services.market_data import MarketQuote, QuoteLookupError, QuoteProvider
from app.services.storage import MarketDataStorageError, build_upsert_statement

logger = logging.getLogger(__name__)

WRITE_CREATED = "created"
WRITE_UPDATED = "updated"
WRITE_FAILED = "failed"


@dataclass(slots=True)
class TableWriteOutcome:
	table: str
	status: str
	error: str | None = None


@dataclass(slots=True)
class SnapshotResult:
	day_key: str
	hour_key: str
	gold: MarketQuote
	exchange_rate: MarketQuote
	writes: list[TableWriteOutcome] = field(default_factory=list)

	@property
	def succeeded(self) -> bool:
		return all(outcome.status != WRITE_FAILED for outcome in self.writes)


def upsert_by_key(
	session: Session,
	model: type[SQLModel],
	key_column: str,
	values: dict[str, Any],
	immutable_columns: tuple[str, ...] = ("created_at",),
) -> TableWriteOutcome:
	"""Insert a row or overwrite the existing row sharing ``key_column``.

	The write is committed on its own. Failures are rolled back and reported
	in the returned outcome instead of being raised, so sibling writes still run.
	"""
	table_name = model.__table__.name
	key_value = values[key_column]
	try:
		existing_id = session.exec(
			select(model.id).where(getattr(model, key_column) == key_value),
		).first()
		statement = build_upsert_statement(session, model, key_column, [values], immutable_columns)
		session.exec(statement)
		session.commit()
	except (SQLAlchemyError, MarketDataStorageError) as exc:
		session.rollback()
		logger.exception("Upsert into %s for %s=%s failed.", table_name, key_column, key_value)
		return TableWriteOutcome(table=table_name, status=WRITE_FAILED, error=str(exc))

	status = WRITE_CREATED if existing_id is None else WRITE_UPDATED
	logger.info("Upserted %s for %s=%s (%s).", table_name, key_column, key_value, status)
	return TableWriteOutcome(table=table_name, status=status)


def write_snapshot(
	session: Session,
	gold: MarketQuote,
	exchange_rate: MarketQuote,
	now: datetime | None = None,
) -> SnapshotResult:
	"""Persist one gold price and one USD/CNY rate into the hourly and daily tables.

	Both quotes are required: the daily row is overwritten as a whole, so a
	stale value passed here would replace a fresher one written earlier today.
	"""
	timestamp = coerce_utc_datetime(now or utc_now())
	current_hour_key = hour_key(timestamp)
	current_day_key = day_key(timestamp)
	gold_updated_at = coerce_utc_datetime(gold.source_updated_at)
	rate_updated_at = coerce_utc_datetime(exchange_rate.source_updated_at)

	writes = [
		upsert_by_key(
			session,
			GoldPrice,
			"hour_key",
			{
				"hour_key": current_hour_key,
				"price": gold.value,
				"updated_at": gold_updated_at,
				"created_at": timestamp,
			},
		),
		upsert_by_key(
			session,
			ExchangeRate,
			"hour_key",
			{
				"hour_key": current_hour_key,
				"rate": exchange_rate.value,
				"updated_at": rate_updated_at,
				"created_at": timestamp,
			},
		),
		upsert_by_key(
			session,
			DailyMarketData,
			"date",
			{
				"date": day_key_to_date_string(current_day_key),
				"gold_price": gold.value,
				"gold_updated_at": gold_updated_at,
				"exchange_rate": exchange_rate.value,
				"exchange_updated_at": rate_updated_at,
				"created_at": timestamp,
				"updated_at": timestamp,
			},
		),
	]

	return SnapshotResult(
		day_key=current_day_key,
		hour_key=current_hour_key,
		gold=gold,
		exchange_rate=exchange_rate,
		writes=writes,
	)


async def fetch_quotes(
	gold_provider: QuoteProvider,
	rate_provider: QuoteProvider,
) -> tuple[MarketQuote, MarketQuote]:
	"""Fetch both quotes concurrently; either failure aborts the pair."""
	results = await asyncio.gather(
		gold_provider.fetch_quote(),
		rate_provider.fetch_quote(),
		return_exceptions=True,
	)
	for result in results:
		if isinstance(result, BaseException):
			raise result

	gold_quote, rate_quote = results
	return gold_quote, rate_quote


async def fetch_and_write_snapshot(
	session: Session,
	gold_provider: QuoteProvider,
	rate_provider: QuoteProvider,
	now: datetime | None = None,
) -> SnapshotResult:
	try:
		gold_quote, rate_quote = await fetch_quotes(gold_provider, rate_provider)
	except QuoteLookupError:
		logger.warning("Market data fetch failed; no rows were written.")
		raise

	return write_snapshot(session, gold_quote, rate_quote, now)
