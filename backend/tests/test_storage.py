from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy.dialects import mysql
from sqlmodel import SQLModel, Session, create_engine, select

from app.models import DailyMarketData, GoldPrice
import app.services.history_import as history_import
import app.services.market_history as market_history
import app.services.market_snapshot as market_snapshot
from app.services.market_data import MarketQuote
from app.services.market_snapshot import WRITE_FAILED, write_snapshot
from app.services.storage import MarketDataStorageError, build_upsert_statement

NOW = datetime(2026, 3, 1, 1, 5, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path: Path):
	engine = create_engine(
		f"sqlite:///{tmp_path / 'storage-test.db'}",
		connect_args={"check_same_thread": False},
	)
	SQLModel.metadata.create_all(engine)
	return engine


@pytest.fixture
def session(engine) -> Iterator[Session]:
	with Session(engine) as db_session:
		yield db_session


def _gold_row() -> dict[str, object]:
	return {
		"hour_key": "2026030109",
		"price": 560.5,
		"updated_at": NOW,
		"created_at": NOW,
	}


def test_sqlite_upsert_overwrites_everything_but_key_and_created_at(session: Session) -> None:
	statement = build_upsert_statement(session, GoldPrice, "hour_key", [_gold_row()])
	sql = str(statement.compile(dialect=session.get_bind().dialect))

	assert "ON CONFLICT (hour_key) DO UPDATE" in sql
	update_clause = sql.split("DO UPDATE SET", 1)[1]
	assert "price = excluded.price" in update_clause
	assert "created_at" not in update_clause


@pytest.mark.parametrize("dialect_name", ["mysql", "mariadb"])
def test_mysql_family_upsert_uses_duplicate_key_update(
	monkeypatch: pytest.MonkeyPatch,
	engine,
	session: Session,
	dialect_name: str,
) -> None:
	monkeypatch.setattr(engine.dialect, "name", dialect_name)

	statement = build_upsert_statement(session, GoldPrice, "hour_key", [_gold_row()])
	sql = str(statement.compile(dialect=mysql.dialect()))

	assert "ON DUPLICATE KEY UPDATE" in sql
	update_clause = sql.split("ON DUPLICATE KEY UPDATE", 1)[1]
	assert update_clause.strip().startswith("price = ")
	assert "created_at" not in update_clause


def test_unsupported_dialect_raises_storage_error(
	monkeypatch: pytest.MonkeyPatch,
	engine,
	session: Session,
) -> None:
	monkeypatch.setattr(engine.dialect, "name", "mssql")

	with pytest.raises(MarketDataStorageError, match="mssql dialect"):
		build_upsert_statement(session, GoldPrice, "hour_key", [_gold_row()])


def test_unsupported_dialect_reports_every_table_as_failed(
	monkeypatch: pytest.MonkeyPatch,
	engine,
	session: Session,
) -> None:
	monkeypatch.setattr(engine.dialect, "name", "mssql")
	quote = MarketQuote(value=560.5, source_updated_at=NOW)

	result = write_snapshot(session, quote, MarketQuote(value=7.18, source_updated_at=NOW), now=NOW)
	monkeypatch.undo()

	assert result.succeeded is False
	assert {outcome.status for outcome in result.writes} == {WRITE_FAILED}
	assert all("mssql dialect" in (outcome.error or "") for outcome in result.writes)
	assert session.exec(select(GoldPrice)).all() == []
	assert session.exec(select(DailyMarketData)).all() == []


def test_services_share_one_storage_error_type() -> None:
	assert market_history.MarketDataStorageError is MarketDataStorageError
	assert market_snapshot.MarketDataStorageError is MarketDataStorageError
	assert history_import.MarketDataStorageError is MarketDataStorageError
	assert MarketDataStorageError.__module__ == "app.services.storage"
