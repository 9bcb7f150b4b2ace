# database/models.py
from sqlalchemy import JSON, Column, DateTime, Integer, String, func

# Important: must match Base from db_setup.py
from .db_setup import Base


class Record(Base):
    """One remote-table row, stored as a JSON document keyed by table name."""
    __tablename__ = "records"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String(64), nullable=False, index=True)
    record_id = Column(String(64), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    stored_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Record(table={self.table_name}, id={self.record_id})>"


class Credential(Base):
    """Local stand-in for the auth service's account table."""
    __tablename__ = "credentials"

    user_id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    salt = Column(String(64), nullable=False)
    password_hash = Column(String(128), nullable=False)

    def __repr__(self):
        return f"<Credential(user_id={self.user_id}, email={self.email})>"
