"""Shared storage helpers for the market data tables."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlmodel import Session, SQLModel

UPSERT_DIALECTS = ("postgresql", "sqlite", "mysql", "mariadb")


class MarketDataStorageError(RuntimeError):
	"""Raised when market data rows cannot be read or written."""


def build_upsert_statement(
	session: Session,
	model: type[SQLModel],
	key_column: str,
	rows: list[dict[str, Any]],
	immutable_columns: tuple[str, ...] = ("created_at",),
) -> Any:
	"""Build one insert-or-overwrite statement for ``rows`` keyed by ``key_column``.

	PostgreSQL and SQLite use ``ON CONFLICT (key) DO UPDATE``; MySQL and MariaDB
	use ``ON DUPLICATE KEY UPDATE``, relying on the unique index of the key.
	"""
	dialect_name = session.get_bind().dialect.name
	updated_columns = [
		column
		for column in rows[0]
		if column != key_column and column not in immutable_columns
	]

	if dialect_name in ("postgresql", "sqlite"):
		dialect = postgresql if dialect_name == "postgresql" else sqlite
		statement = dialect.insert(model.__table__).values(rows)
		return statement.on_conflict_do_update(
			index_elements=[key_column],
			set_={column: statement.excluded[column] for column in updated_columns},
		)

	if dialect_name in ("mysql", "mariadb"):
		statement = mysql.insert(model.__table__).values(rows)
		return statement.on_duplicate_key_update(
			{column: statement.inserted[column] for column in updated_columns},
		)

	raise MarketDataStorageError(
		f"Upsert is not supported for the {dialect_name} dialect; "
		f"use one of: {', '.join(UPSERT_DIALECTS)}.",
	)
