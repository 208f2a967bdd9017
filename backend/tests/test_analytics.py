from datetime import datetime, timezone

from app.analytics import aggregate_deposits_by_day
from app.models import RmbDepositRecord


def _deposit(deposit_date: datetime, bank_name: str, amount: float) -> RmbDepositRecord:
	return RmbDepositRecord(
		user_id="tester",
		deposit_date=deposit_date,
		bank_name=bank_name,
		amount=amount,
	)


def test_aggregate_deposits_by_day_merges_amounts_and_distinct_banks() -> None:
	points = aggregate_deposits_by_day(
		[
			_deposit(datetime(2026, 3, 1, 1, 0, tzinfo=timezone.utc), "ICBC", 1000.1),
			_deposit(datetime(2026, 3, 1, 5, 0, tzinfo=timezone.utc), "CMB", 200.2),
			_deposit(datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc), "ICBC", 300),
			_deposit(datetime(2026, 3, 3, 2, 0, tzinfo=timezone.utc), "BOC", 50),
		],
	)

	assert [point.model_dump() for point in points] == [
		{"date": "20260301", "bank_name": "ICBC, CMB", "amount": 1500.3},
		{"date": "20260303", "bank_name": "BOC", "amount": 50},
	]


def test_aggregate_deposits_by_day_groups_by_business_day() -> None:
	points = aggregate_deposits_by_day(
		[
			_deposit(datetime(2026, 3, 1, 17, 0, tzinfo=timezone.utc), "CMB", 20),
			_deposit(datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc), "ICBC", 10),
		],
	)

	assert [(point.date, point.amount) for point in points] == [
		("20260301", 10),
		("20260302", 20),
	]


def test_aggregate_deposits_by_day_returns_empty_list_without_records() -> None:
	assert aggregate_deposits_by_day([]) == []
