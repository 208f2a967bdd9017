from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from time import perf_counter

from sqlmodel import Session

from app.database import engine, init_db
from app.services.market_data import ExchangeRateProvider, GoldPriceProvider, QuoteLookupError
from app.services.market_snapshot import SnapshotResult, fetch_and_write_snapshot
from app.settings import get_settings

logger = logging.getLogger("fetch_market_data")


async def run_snapshot() -> SnapshotResult:
	with Session(engine) as session:
		return await fetch_and_write_snapshot(session, GoldPriceProvider(), ExchangeRateProvider())


def main() -> int:
	parser = argparse.ArgumentParser(
		description="Fetch the current gold price and USD/CNY rate and store one snapshot.",
	)
	parser.add_argument(
		"--log-level",
		default=get_settings().log_level,
		help="Logging level for this run.",
	)
	args = parser.parse_args()
	logging.basicConfig(
		level=args.log_level.upper(),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)

	init_db()
	started_at = perf_counter()
	try:
		result = asyncio.run(run_snapshot())
	except QuoteLookupError as exc:
		logger.error("Market data fetch failed: %s", exc)
		return 1

	print(
		json.dumps(
			{
				"day_key": result.day_key,
				"hour_key": result.hour_key,
				"gold_price": result.gold.value,
				"gold_updated_at": result.gold.source_updated_at_display,
				"exchange_rate": result.exchange_rate.value,
				"exchange_updated_at": result.exchange_rate.source_updated_at_display,
				"writes": {outcome.table: outcome.status for outcome in result.writes},
				"duration_seconds": round(perf_counter() - started_at, 2),
			},
			ensure_ascii=False,
		),
	)
	return 0 if result.succeeded else 1


if __name__ == "__main__":
	sys.exit(main())
