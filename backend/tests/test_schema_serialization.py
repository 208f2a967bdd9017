from datetime import datetime, timezone

from app.schemas import (
	DailyMarketDataRead,
	PortfolioRead,
	RmbDepositCreate,
	RmbDepositRead,
)


def test_rmb_deposit_read_serializes_naive_timestamps_as_explicit_utc() -> None:
	record = RmbDepositRead(
		id=1,
		user_id="tester",
		deposit_date=datetime(2026, 3, 1, 4, 20, 51, 753577),
		bank_name="ICBC",
		amount=100,
		created_at=datetime(2026, 3, 1, 4, 20, 51),
		updated_at=datetime(2026, 3, 1, 4, 20, 51),
	)

	payload = record.model_dump(mode="json")

	assert payload["deposit_date"] == "2026-03-01T04:20:51.753577Z"


def test_daily_market_data_read_serializes_aware_timestamps_with_utc_marker() -> None:
	record = DailyMarketDataRead(
		date="2026-03-01",
		gold_price=560.5,
		gold_updated_at=datetime(2026, 3, 1, 4, 20, 51, tzinfo=timezone.utc),
		exchange_rate=7.18,
		exchange_updated_at=datetime(2026, 3, 1, 4, 20, 51, tzinfo=timezone.utc),
		updated_at=datetime(2026, 3, 1, 4, 20, 51, tzinfo=timezone.utc),
	)

	payload = record.model_dump(mode="json")

	assert payload["gold_updated_at"] == "2026-03-01T04:20:51Z"


def test_record_create_trims_text_fields() -> None:
	payload = RmbDepositCreate(
		deposit_date=datetime(2026, 3, 1, tzinfo=timezone.utc),
		bank_name="  ICBC  ",
		amount=10,
	)

	assert payload.bank_name == "ICBC"


def test_portfolio_read_uses_record_type_keys_in_json() -> None:
	payload = PortfolioRead().model_dump(mode="json", by_alias=True)

	assert payload == {
		"gold-purchases": {},
		"usd-purchases": {},
		"rmb-deposits": {},
		"debt-records": {},
	}
