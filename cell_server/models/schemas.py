from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.schema import Column
from sqlalchemy.types import Integer, String, Uuid, DateTime, LargeBinary, TEXT
from uuid6 import uuid7
from datetime import datetime


class Base(DeclarativeBase):
    pass


# Amounts are stored as decimal text: they range up to 2**256 - 1.


class CellRecord(Base):
    __tablename__ = "cell_record"
    cell_id = Column(Integer, primary_key=True, autoincrement=False)
    cell_data = Column(LargeBinary, nullable=False)
    escrowed = Column(String, default="0")
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class ParticipantCell(Base):
    """Which open cell a participant is bound to. No row means unbound."""
    __tablename__ = "participant_cell"
    address = Column(String(42), primary_key=True)
    cell_id = Column(Integer, nullable=False)


class PairCell(Base):
    __tablename__ = "pair_cell"
    pair_key = Column(String(64), primary_key=True)
    cell_id = Column(Integer, nullable=False)


class EngineConfig(Base):
    __tablename__ = "engine_config"
    config_id = Column(Integer, primary_key=True, autoincrement=False)
    min_stake = Column(String, nullable=False)
    owner = Column(String(42), nullable=False)
    cell_counter = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.now)


class PendingPayout(Base):
    __tablename__ = "pending_payout"
    payout_id = Column(Uuid, primary_key=True, default=uuid7)
    cell_id = Column(Integer, nullable=False)
    address = Column(String(42), nullable=False)
    amount = Column(String, nullable=False)
    attempts = Column(Integer, default=1)
    last_error = Column(TEXT, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class PayoutLedger(Base):
    __tablename__ = "payout_ledger"
    address = Column(String(42), primary_key=True)
    balance = Column(String, default="0")
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)
