from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.bucket_keys import day_key, day_key_to_date_string, parse_business_time
from app.models import DailyMarketData, utc_now
from app.services.storage import MarketDataStorageError, build_upsert_statement

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


class HistoryImportError(ValueError):
	"""Raised when an import file entry cannot be turned into a daily row."""


@dataclass(slots=True)
class HistoryImportSummary:
	total: int = 0
	imported: int = 0
	failed: int = 0


def _require_positive_number(entry_key: str, field_name: str, value: object) -> float:
	if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
		raise HistoryImportError(f"{entry_key}: {field_name} must be a positive number.")
	return float(value)


def build_daily_rows(
	payload: Mapping[str, Mapping[str, Any]],
	now: datetime | None = None,
) -> list[dict[str, Any]]:
	"""Turn ``{"YYYY-MM-DD HH:MM:SS": {"gold_price", "exchange_rate"}}`` into daily rows.

	Keys are business-local timestamps. A later entry for the same business day
	replaces an earlier one.
	"""
	timestamp = now or utc_now()
	rows: dict[str, dict[str, Any]] = {}
	for entry_key, entry in payload.items():
		if not isinstance(entry, Mapping):
			raise HistoryImportError(f"{entry_key}: entry must be an object.")

		try:
			observed_at = parse_business_time(entry_key)
		except ValueError as exc:
			raise HistoryImportError(f"{entry_key}: invalid timestamp.") from exc

		date_string = day_key_to_date_string(day_key(observed_at))
		rows[date_string] = {
			"date": date_string,
			"gold_price": _require_positive_number(entry_key, "gold_price", entry.get("gold_price")),
			"gold_updated_at": observed_at,
			"exchange_rate": _require_positive_number(
				entry_key,
				"exchange_rate",
				entry.get("exchange_rate"),
			),
			"exchange_updated_at": observed_at,
			"created_at": timestamp,
			"updated_at": timestamp,
		}

	return [rows[date_string] for date_string in sorted(rows)]


def import_daily_history(
	session: Session,
	payload: Mapping[str, Mapping[str, Any]],
	batch_size: int = DEFAULT_BATCH_SIZE,
	now: datetime | None = None,
) -> HistoryImportSummary:
	if batch_size < 1:
		raise ValueError("batch_size must be positive.")

	rows = build_daily_rows(payload, now)
	summary = HistoryImportSummary(total=len(rows))
	for start in range(0, len(rows), batch_size):
		batch = rows[start:start + batch_size]
		batch_number = start // batch_size + 1
		try:
			session.exec(build_upsert_statement(session, DailyMarketData, "date", batch))
			session.commit()
		except (SQLAlchemyError, MarketDataStorageError):
			session.rollback()
			logger.exception("Importing daily batch %s (%s rows) failed.", batch_number, len(batch))
			summary.failed += len(batch)
			continue

		summary.imported += len(batch)
		logger.info("Imported daily batch %s (%s rows).", batch_number, len(batch))

	return summary
