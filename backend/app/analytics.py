from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, TypeVar

from app.bucket_keys import day_key
from app.models import RmbDepositRecord
from app.schemas import DepositChartPoint

ChartRecord = TypeVar("ChartRecord")
LABEL_SEPARATOR = ", "


@dataclass(slots=True)
class _DayBucket:
	amount: float = 0.0
	labels: dict[str, None] = field(default_factory=dict)


def _aggregate_by_business_day(
	records: Iterable[ChartRecord],
	get_instant: Callable[[ChartRecord], datetime],
	get_amount: Callable[[ChartRecord], float],
	get_label: Callable[[ChartRecord], str],
) -> list[DepositChartPoint]:
	buckets: dict[str, _DayBucket] = {}
	for record in records:
		bucket = buckets.setdefault(day_key(get_instant(record)), _DayBucket())
		bucket.amount += get_amount(record)
		bucket.labels.setdefault(get_label(record), None)

	return [
		DepositChartPoint(
			date=key,
			bank_name=LABEL_SEPARATOR.join(bucket.labels),
			amount=round(bucket.amount, 2),
		)
		for key, bucket in sorted(buckets.items())
	]


def aggregate_deposits_by_day(records: Iterable[RmbDepositRecord]) -> list[DepositChartPoint]:
	"""Merge deposits made on the same business day into one chart point."""
	return _aggregate_by_business_day(
		records,
		get_instant=lambda record: record.deposit_date,
		get_amount=lambda record: record.amount,
		get_label=lambda record: record.bank_name,
	)
