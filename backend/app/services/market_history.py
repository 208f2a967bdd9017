from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.bucket_keys import (
	date_string_to_day_key,
	day_key,
	day_key_to_date_string,
	hour_key,
	recent_day_keys,
	recent_hour_keys,
)
from app.models import DailyMarketData, ExchangeRate, GoldPrice, utc_now
from app.services.storage import MarketDataStorageError
from app.settings import get_settings

logger = logging.getLogger(__name__)

GRANULARITY_DAY = "day"
GRANULARITY_HOUR = "hour"
GRANULARITIES = (GRANULARITY_DAY, GRANULARITY_HOUR)


class HistoryWindowError(ValueError):
	"""Raised when a requested history window is malformed or out of range."""


@dataclass(slots=True)
class MarketHistory:
	gold_price: dict[str, float]
	exchange_rate: dict[str, float]


def validate_window(granularity: str, window: object) -> int:
	settings = get_settings()
	if granularity not in GRANULARITIES:
		raise HistoryWindowError(f"Unsupported granularity: {granularity}")

	if isinstance(window, bool) or not isinstance(window, int):
		raise HistoryWindowError(f"Window size must be an integer, got {window!r}.")

	if granularity == GRANULARITY_HOUR and not 1 <= window <= settings.max_history_hours:
		raise HistoryWindowError(
			f"hours must be an integer between 1 and {settings.max_history_hours}.",
		)

	if granularity == GRANULARITY_DAY and not 1 <= window <= settings.max_history_days:
		raise HistoryWindowError(
			f"days must be an integer between 1 and {settings.max_history_days}.",
		)

	return window


def window_keys(granularity: str, window: int, now: datetime) -> list[str]:
	"""Return the bucket keys of the window, newest first."""
	if granularity == GRANULARITY_HOUR:
		return recent_hour_keys(window, now)
	return recent_day_keys(window, now)


def floor_key(granularity: str, window: int, now: datetime) -> str:
	"""Return the key one bucket older than the oldest key of the window."""
	if granularity == GRANULARITY_HOUR:
		return hour_key(now - timedelta(hours=window))
	return day_key(now - timedelta(days=window))


def forward_fill(
	keys_newest_first: Iterable[str],
	observations: Mapping[str, float | None],
) -> dict[str, float]:
	"""Build a gap-free series oldest -> newest, carrying the last non-zero value.

	Buckets before the first observation are reported as 0.
	"""
	series: dict[str, float] = {}
	last_value: float | None = None
	for key in reversed(list(keys_newest_first)):
		value = observations.get(key)
		if value:
			last_value = value
		series[key] = last_value if last_value is not None else 0

	return series


def _load_daily_observations(
	session: Session,
	floor: str,
) -> tuple[dict[str, float], dict[str, float]]:
	rows = session.exec(
		select(DailyMarketData)
		.where(DailyMarketData.date >= day_key_to_date_string(floor))
		.order_by(DailyMarketData.date.asc()),
	).all()
	gold_prices: dict[str, float] = {}
	exchange_rates: dict[str, float] = {}
	for row in rows:
		key = date_string_to_day_key(row.date)
		gold_prices[key] = row.gold_price
		exchange_rates[key] = row.exchange_rate

	return gold_prices, exchange_rates


def _load_hourly_observations(
	session: Session,
	floor: str,
) -> tuple[dict[str, float], dict[str, float]]:
	gold_rows = session.exec(
		select(GoldPrice).where(GoldPrice.hour_key >= floor).order_by(GoldPrice.hour_key.asc()),
	).all()
	rate_rows = session.exec(
		select(ExchangeRate)
		.where(ExchangeRate.hour_key >= floor)
		.order_by(ExchangeRate.hour_key.asc()),
	).all()

	return (
		{row.hour_key: row.price for row in gold_rows},
		{row.hour_key: row.rate for row in rate_rows},
	)


def read_series(
	session: Session,
	granularity: str,
	window: int,
	now: datetime | None = None,
) -> MarketHistory:
	"""Return forward-filled gold price and USD/CNY series covering the whole window."""
	window = validate_window(granularity, window)
	timestamp = now or utc_now()
	keys = window_keys(granularity, window, timestamp)
	floor = floor_key(granularity, window, timestamp)

	try:
		if granularity == GRANULARITY_HOUR:
			gold_prices, exchange_rates = _load_hourly_observations(session, floor)
		else:
			gold_prices, exchange_rates = _load_daily_observations(session, floor)
	except SQLAlchemyError as exc:
		logger.exception("Loading %s market history since %s failed.", granularity, floor)
		raise MarketDataStorageError(f"Failed to load {granularity} market history.") from exc

	return MarketHistory(
		gold_price=forward_fill(keys, gold_prices),
		exchange_rate=forward_fill(keys, exchange_rates),
	)


def load_latest_daily(session: Session) -> DailyMarketData | None:
	try:
		return session.exec(
			select(DailyMarketData).order_by(DailyMarketData.date.desc()).limit(1),
		).first()
	except SQLAlchemyError as exc:
		logger.exception("Loading the latest daily market data failed.")
		raise MarketDataStorageError("Failed to load the latest market data.") from exc
