# database/db_setup.py
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

# ---------------------------------------------------------------------
# Database URL
# ---------------------------------------------------------------------
# Demo mode defaults to a private in-memory SQLite database; point
# CRM_DATABASE_URL at a file (sqlite:///crm_demo.db) to keep data around.
DEFAULT_DB_URL = "sqlite://"

# ---------------------------------------------------------------------
# Base class for ORM models
# ---------------------------------------------------------------------
Base = declarative_base()

# ---------------------------------------------------------------------
# Engine factory
# ---------------------------------------------------------------------
def get_engine(url: str = DEFAULT_DB_URL):
    """
    Return a SQLAlchemy Engine for the local document store.

    In-memory SQLite needs a single shared connection, otherwise every
    checkout would see a fresh, empty database.

    Example:
        engine = get_engine("sqlite:///crm_demo.db")
    """
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=False, future=True)
