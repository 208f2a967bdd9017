from collections.abc import Generator

from sqlmodel import Session, SQLModel, create_engine

from app.settings import DATA_DIR, get_settings

DATABASE_URL = get_settings().database_url
if DATABASE_URL.startswith("sqlite:///"):
	DATA_DIR.mkdir(parents=True, exist_ok=True)

engine = create_engine(
	DATABASE_URL,
	connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)


def init_db() -> None:
	"""Create database tables on startup."""
	SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
	"""Yield a database session for request handlers."""
	with Session(engine) as session:
		yield session
