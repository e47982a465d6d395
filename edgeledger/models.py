"""
Database models for the prediction ledger.
SQLAlchemy ORM; SQLite by default, PostgreSQL in production.

All timestamps are stored as naive UTC.
"""

import os
from datetime import datetime, timezone

from dotenv import load_dotenv
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.orm import declarative_base, sessionmaker

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///edgeledger.db")


def make_engine(url: str = DATABASE_URL):
    """Engine factory.  SQLite connections are shared across scheduler threads."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, echo=False)

    sqlite_engine = create_engine(url, connect_args={"check_same_thread": False}, echo=False)

    # pysqlite defers BEGIN, which breaks SAVEPOINT; take over transaction start
    @event.listens_for(sqlite_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(dt):
    """Aware datetimes → naive UTC; naive values and None pass through."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class PredictionLedgerEntry(Base):
    """One analysis of one match by one model version, from creation to settlement."""

    __tablename__ = "prediction_ledger"
    __table_args__ = (
        UniqueConstraint("match_id", "model_version", name="uq_ledger_match_model"),
        Index("ix_ledger_outcome_kickoff", "outcome", "kickoff"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Identity
    match_id = Column(String, nullable=False, index=True)
    model_version = Column(String, nullable=False)
    selection = Column(String, nullable=False)      # home | draw | away
    sport = Column(String, nullable=False, index=True)
    home_team = Column(String, nullable=False)
    away_team = Column(String, nullable=False)

    # Inputs: versioned PredictionSnapshot
    full_response = Column(JSON)

    # Outputs (percent)
    home_win = Column(Float)
    draw = Column(Float)
    away_win = Column(Float)
    model_probability = Column(Float)               # selection's probability
    market_probability_raw = Column(Float)
    market_probability_fair = Column(Float)
    market_odds_at_prediction = Column(Float)
    edge_value = Column(Float, index=True)
    edge_bucket = Column(String, nullable=False, default="NO_EDGE")
    confidence = Column(Float)

    # Timing
    prediction_timestamp = Column(DateTime, default=utcnow, nullable=False)
    kickoff = Column(DateTime, index=True)
    settled_at = Column(DateTime)

    # Settlement
    opening_odds = Column(Float)
    closing_odds = Column(Float)
    clv_value = Column(Float)                       # pp implied-probability shift
    actual_score = Column(String)                   # "home-away"
    outcome = Column(String, nullable=False, default="PENDING", index=True)

    def __repr__(self) -> str:
        return (
            f"<PredictionLedgerEntry {self.id} {self.match_id}@{self.model_version} "
            f"{self.selection} {self.outcome}>"
        )


class LedgerRepairLog(Base):
    """Audit trail: one row per field overwritten by Integrity Repair."""

    __tablename__ = "ledger_repair_log"

    id = Column(Integer, primary_key=True, index=True)
    entry_id = Column(Integer, ForeignKey("prediction_ledger.id"), nullable=False, index=True)
    field_name = Column(String, nullable=False)
    old_value = Column(Text)
    new_value = Column(Text)
    reason = Column(String, nullable=False)
    repaired_at = Column(DateTime, default=utcnow, nullable=False)


def init_db(bind=None):
    """Initialize database tables"""
    Base.metadata.create_all(bind=bind or engine)
