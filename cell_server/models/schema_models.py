from pydantic import BaseModel
from uuid import UUID
from datetime import datetime


class CellRecordSchema(BaseModel):
    cell_id: int
    cell_data: bytes
    escrowed: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class EngineConfigSchema(BaseModel):
    min_stake: int
    owner: str
    cell_counter: int

    class Config:
        from_attributes = True


class PendingPayoutSchema(BaseModel):
    payout_id: UUID
    cell_id: int
    address: str
    amount: int
    attempts: int
    last_error: str | None
    created_at: datetime

    class Config:
        from_attributes = True
