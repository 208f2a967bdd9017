from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import math
from typing import Any, Protocol

import httpx

from app.bucket_keys import format_business_time, parse_business_time
from app.settings import get_settings

logger = logging.getLogger(__name__)

GOLD_PRICE_REQUEST_BODY = {
	"Context": {
		"token": "",
		"version": "",
		"from": "2",
		"mchid": "",
		"appid": "",
		"timestamp": "",
	},
	"SQLBuilderItem": [
		{
			"SQLBuilderID": "{005A5001-B9AD-41CB-8409-8F7675D19143}",
			"TableName": "BS_POS_GP_MA",
			"Caption": "每日金价",
			"Select": {
				"FMID": "{4F054C98-16B8-8A9E-3112-F8AFC1BC77E9}",
				"FPID": "{4F054C98-16B8-8A9E-3112-F8AFC1BC77E9}",
				"FTID": "",
				"FUID": "",
				"FOID": "{7D77D027-9824-4156-A25E-12FC59527DDE}",
				"FWID": "",
				"FORG_STORE_ID": "",
			},
		},
	],
}


class QuoteLookupError(RuntimeError):
	"""Raised when an upstream quote source cannot return a usable value."""


@dataclass(slots=True)
class MarketQuote:
	value: float
	source_updated_at: datetime

	@property
	def source_updated_at_display(self) -> str:
		return format_business_time(self.source_updated_at)


class QuoteProvider(Protocol):
	async def fetch_quote(self) -> MarketQuote: ...


def _coerce_positive_number(raw_value: Any, label: str) -> float:
	if isinstance(raw_value, bool):
		raise QuoteLookupError(f"Unexpected {label} value: {raw_value!r}.")

	try:
		value = float(raw_value)
	except (TypeError, ValueError) as exc:
		raise QuoteLookupError(f"Unexpected {label} value: {raw_value!r}.") from exc

	if not math.isfinite(value) or value <= 0:
		raise QuoteLookupError(f"Unexpected {label} value: {raw_value!r}.")

	return value


def parse_gold_price_payload(payload: Any) -> MarketQuote:
	"""Read the newest gold price row from a Caibai open API response."""
	if not isinstance(payload, dict):
		raise QuoteLookupError("Gold price response is not a JSON object.")

	datasets = payload.get("JsonData")
	rows = None
	if isinstance(datasets, list) and datasets and isinstance(datasets[0], dict):
		rows = datasets[0].get("ROW")
	if not isinstance(rows, list) or not rows:
		raise QuoteLookupError("Gold price data is unavailable.")

	latest_row = rows[-1]
	if not isinstance(latest_row, dict):
		raise QuoteLookupError("Gold price row has an unexpected shape.")

	price = _coerce_positive_number(latest_row.get("FPRICE_BASE"), "gold price")
	raw_updated_at = latest_row.get("FNEWTIME")
	if not isinstance(raw_updated_at, str) or not raw_updated_at.strip():
		raise QuoteLookupError("Gold price update time is missing.")

	try:
		updated_at = parse_business_time(raw_updated_at)
	except ValueError as exc:
		raise QuoteLookupError(f"Unexpected gold price update time: {raw_updated_at!r}.") from exc

	return MarketQuote(value=price, source_updated_at=updated_at)


def parse_exchange_rate_payload(payload: Any) -> MarketQuote:
	"""Read the USD/CNY rate and its update instant from an open.er-api response."""
	if not isinstance(payload, dict):
		raise QuoteLookupError("Exchange rate response is not a JSON object.")

	if payload.get("result") != "success":
		raise QuoteLookupError("Exchange rate source reported a failure.")

	rates = payload.get("rates")
	if not isinstance(rates, dict) or "CNY" not in rates:
		raise QuoteLookupError("Exchange rate response has no CNY rate.")

	rate = _coerce_positive_number(rates["CNY"], "USD/CNY rate")
	updated_unix = payload.get("time_last_update_unix")
	if isinstance(updated_unix, bool) or not isinstance(updated_unix, (int, float)):
		raise QuoteLookupError("Exchange rate update time is missing.")

	return MarketQuote(
		value=rate,
		source_updated_at=datetime.fromtimestamp(updated_unix, tz=timezone.utc),
	)


async def _request_json(method: str, url: str, timeout: float, **kwargs: Any) -> Any:
	try:
		async with httpx.AsyncClient(timeout=timeout) as client:
			response = await client.request(method, url, **kwargs)
			response.raise_for_status()
			return response.json()
	except httpx.TimeoutException as exc:
		raise QuoteLookupError(f"Request to {url} timed out after {timeout:g} seconds.") from exc
	except httpx.HTTPStatusError as exc:
		raise QuoteLookupError(
			f"Request to {url} failed with HTTP {exc.response.status_code}.",
		) from exc
	except httpx.HTTPError as exc:
		raise QuoteLookupError(f"Request to {url} failed: {exc}") from exc
	except ValueError as exc:
		raise QuoteLookupError(f"Response from {url} is not valid JSON.") from exc


class GoldPriceProvider:
	def __init__(self, url: str | None = None, timeout: float | None = None) -> None:
		settings = get_settings()
		self.url = url or settings.gold_price_api_url
		self.timeout = timeout if timeout is not None else settings.quote_timeout_seconds

	async def fetch_quote(self) -> MarketQuote:
		"""Fetch the current Caibai investment gold base price in CNY per gram."""
		payload = await _request_json("POST", self.url, self.timeout, json=GOLD_PRICE_REQUEST_BODY)
		quote = parse_gold_price_payload(payload)
		logger.info("Fetched gold price %.2f updated at %s.", quote.value, quote.source_updated_at_display)
		return quote


class ExchangeRateProvider:
	def __init__(self, url: str | None = None, timeout: float | None = None) -> None:
		settings = get_settings()
		self.url = url or settings.exchange_rate_api_url
		self.timeout = timeout if timeout is not None else settings.quote_timeout_seconds

	async def fetch_quote(self) -> MarketQuote:
		"""Fetch the latest USD to CNY conversion rate."""
		payload = await _request_json("GET", self.url, self.timeout)
		quote = parse_exchange_rate_payload(payload)
		logger.info("Fetched USD/CNY %.4f updated at %s.", quote.value, quote.source_updated_at_display)
		return quote
