"""Business-timezone bucket keys for the market data tables.

Keys are zero-padded strings ordered year -> month -> day (-> hour), so string
comparison matches chronological order. The business timezone is a fixed UTC
offset and every conversion goes through ``to_business_time``.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from app.settings import get_settings

DAY_KEY_FORMAT = "%Y%m%d"
HOUR_KEY_FORMAT = "%Y%m%d%H"
DATE_STRING_FORMAT = "%Y-%m-%d"
BUSINESS_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def business_timezone(offset_hours: int | None = None) -> timezone:
	if offset_hours is None:
		offset_hours = get_settings().business_tz_offset_hours
	return timezone(timedelta(hours=offset_hours))


def coerce_utc_datetime(value: datetime) -> datetime:
	"""Treat naive datetimes as UTC and normalize aware ones to UTC."""
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)

	return value.astimezone(timezone.utc)


def to_business_time(instant: datetime, offset_hours: int | None = None) -> datetime:
	return coerce_utc_datetime(instant).astimezone(business_timezone(offset_hours))


def day_key(instant: datetime, offset_hours: int | None = None) -> str:
	return to_business_time(instant, offset_hours).strftime(DAY_KEY_FORMAT)


def hour_key(instant: datetime, offset_hours: int | None = None) -> str:
	return to_business_time(instant, offset_hours).strftime(HOUR_KEY_FORMAT)


def _require_positive_count(count: int) -> None:
	if isinstance(count, bool) or not isinstance(count, int) or count < 1:
		raise ValueError(f"Key count must be a positive integer, got {count!r}.")


def recent_day_keys(
	count: int,
	now: datetime,
	offset_hours: int | None = None,
) -> list[str]:
	"""Return ``count`` day keys ending at the business day of ``now``, newest first."""
	_require_positive_count(count)
	today: date = to_business_time(now, offset_hours).date()
	return [(today - timedelta(days=step)).strftime(DAY_KEY_FORMAT) for step in range(count)]


def recent_hour_keys(
	count: int,
	now: datetime,
	offset_hours: int | None = None,
) -> list[str]:
	"""Return ``count`` hour keys ending at the business hour of ``now``, newest first."""
	_require_positive_count(count)
	current_hour = to_business_time(now, offset_hours).replace(minute=0, second=0, microsecond=0)
	return [
		(current_hour - timedelta(hours=step)).strftime(HOUR_KEY_FORMAT)
		for step in range(count)
	]


def day_key_to_date_string(key: str) -> str:
	return datetime.strptime(key, DAY_KEY_FORMAT).strftime(DATE_STRING_FORMAT)


def date_string_to_day_key(value: str) -> str:
	"""Convert ``YYYY-MM-DD`` (or an ISO date-time) into a compact day key."""
	date_part = value.strip()[:10]
	return datetime.strptime(date_part, DATE_STRING_FORMAT).strftime(DAY_KEY_FORMAT)


def format_business_time(instant: datetime, offset_hours: int | None = None) -> str:
	return to_business_time(instant, offset_hours).strftime(BUSINESS_TIME_FORMAT)


def parse_business_time(value: str, offset_hours: int | None = None) -> datetime:
	"""Parse a business-local ``YYYY-MM-DD HH:MM:SS`` string into an aware UTC datetime.

	Values that already carry an offset keep it; the ``T`` separator and a
	trailing ``Z`` are accepted as well.
	"""
	normalized_value = value.strip().replace(" ", "T", 1)
	if normalized_value.endswith("Z"):
		normalized_value = normalized_value[:-1] + "+00:00"

	parsed_value = datetime.fromisoformat(normalized_value)
	if parsed_value.tzinfo is None:
		parsed_value = parsed_value.replace(tzinfo=business_timezone(offset_hours))

	return parsed_value.astimezone(timezone.utc)
