import os
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool

# Load .env file (DATABASE_URL may live there)
load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///./data/cryptbin.sqlite3"


def create_db_engine(database_url: str | None = None, echo: bool = False) -> Engine:
    """
    Build the SQLAlchemy engine for the database data store.

    In-memory SQLite gets a single shared connection, otherwise every
    pooled connection would see its own empty database.
    """
    url = database_url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL

    # Hosted Postgres hands out postgresql:// but SQLAlchemy needs postgresql+psycopg2://
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg2://", 1)

    if url.startswith("sqlite") and (":memory:" in url or url in ("sqlite://", "sqlite:///")):
        return create_engine(
            url,
            future=True,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    if url.startswith("sqlite"):
        database = make_url(url).database
        if database:
            Path(database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(
        url,
        future=True,
        echo=echo,  # set True if you want to see SQL in terminal
        pool_pre_ping=True,
    )
