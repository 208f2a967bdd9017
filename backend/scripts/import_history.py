from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys

from sqlmodel import Session

from app.database import engine, init_db
from app.services.history_import import DEFAULT_BATCH_SIZE, HistoryImportError, import_daily_history
from app.settings import get_settings

logger = logging.getLogger("import_history")


def main() -> int:
	parser = argparse.ArgumentParser(
		description=(
			"Import daily market data from a JSON object keyed by "
			"business-local 'YYYY-MM-DD HH:MM:SS' timestamps."
		),
	)
	parser.add_argument("path", type=Path, help="Path to the JSON file to import.")
	parser.add_argument(
		"--batch-size",
		type=int,
		default=DEFAULT_BATCH_SIZE,
		help="Number of rows written per statement.",
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

	payload = json.loads(args.path.read_text(encoding="utf-8"))
	if not isinstance(payload, dict):
		logger.error("%s must contain a JSON object.", args.path)
		return 1

	init_db()
	try:
		with Session(engine) as session:
			summary = import_daily_history(session, payload, batch_size=args.batch_size)
	except HistoryImportError as exc:
		logger.error("Import aborted: %s", exc)
		return 1

	logger.info(
		"Imported %s of %s daily rows (%s failed).",
		summary.imported,
		summary.total,
		summary.failed,
	)
	return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
	sys.exit(main())
