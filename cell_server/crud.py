"""Keyed stores behind the cell engine.

Every helper works on a session that the caller owns and never commits: the
engine wraps each operation in ``session.begin()`` so a whole
read-decode-mutate-encode-write sequence lands or rolls back together.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from typing import List
from uuid import UUID

from cell_server.models.schema_models import (
    CellRecordSchema,
    EngineConfigSchema,
    PendingPayoutSchema,
)
from cell_server.models.schemas import (
    CellRecord,
    EngineConfig,
    PairCell,
    ParticipantCell,
    PayoutLedger,
    PendingPayout,
)

CONFIG_ID = 1


class CellStore:
    """cell id -> encoded cell record"""

    @staticmethod
    async def read_cell_record(
        cell_id: int, session: AsyncSession, for_update: bool = False
    ) -> CellRecordSchema | None:
        """Read the record of a cell

        Args:
            cell_id (int): To identify the cell
            for_update (bool): Lock the row until the transaction ends

        Returns:
            CellRecordSchema: The record, None if the cell was never created
        """
        stmt = select(CellRecord).where(CellRecord.cell_id == cell_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        result = result.scalars().first()

        if result is None:
            return None
        return CellRecordSchema.model_validate(result)

    @staticmethod
    async def add_cell_record(cell_id: int, cell_data: bytes, escrowed: int, session: AsyncSession) -> None:
        session.add(CellRecord(cell_id=cell_id, cell_data=cell_data, escrowed=str(escrowed)))
        await session.flush()

    @staticmethod
    async def update_cell_record(
        cell_id: int, cell_data: bytes, session: AsyncSession, escrowed: int | None = None
    ) -> bool:
        stmt = select(CellRecord).where(CellRecord.cell_id == cell_id)
        result = await session.execute(stmt)
        result = result.scalars().first()

        if result is None:
            return False

        result.cell_data = cell_data
        if escrowed is not None:
            result.escrowed = str(escrowed)
        await session.flush()
        return True


class ParticipantStore:
    """participant address -> bound cell id (0 when unbound)"""

    @staticmethod
    async def read_bound_cell(address: str, session: AsyncSession) -> int:
        stmt = select(ParticipantCell.cell_id).where(ParticipantCell.address == address)
        result = await session.execute(stmt)
        cell_id = result.scalars().first()
        return cell_id or 0

    @staticmethod
    async def bind(address: str, cell_id: int, session: AsyncSession) -> None:
        """Bind a participant to a cell.

        The address is the primary key, so a concurrent second binding fails
        with IntegrityError at flush time.
        """
        session.add(ParticipantCell(address=address, cell_id=cell_id))
        await session.flush()

    @staticmethod
    async def unbind(address: str, session: AsyncSession) -> None:
        await session.execute(delete(ParticipantCell).where(ParticipantCell.address == address))


class PairStore:
    """pair key -> cell id"""

    @staticmethod
    async def read_pair_cell(pair_key: str, session: AsyncSession) -> int:
        stmt = select(PairCell.cell_id).where(PairCell.pair_key == pair_key)
        result = await session.execute(stmt)
        cell_id = result.scalars().first()
        return cell_id or 0

    @staticmethod
    async def set_pair_cell(pair_key: str, cell_id: int, session: AsyncSession) -> None:
        # the same two participants may meet again; the latest cell wins
        await session.merge(PairCell(pair_key=pair_key, cell_id=cell_id))
        await session.flush()


class ConfigStore:
    @staticmethod
    async def read_config(session: AsyncSession) -> EngineConfigSchema | None:
        stmt = select(EngineConfig).where(EngineConfig.config_id == CONFIG_ID)
        result = await session.execute(stmt)
        result = result.scalars().first()

        if result is None:
            return None
        return EngineConfigSchema.model_validate(result)

    @staticmethod
    async def initialize_config(min_stake: int, owner: str, session: AsyncSession) -> bool:
        """Set min_stake and owner unless an owner is already recorded

        Returns:
            bool: True if this call configured the engine
        """
        stmt = select(EngineConfig).where(EngineConfig.config_id == CONFIG_ID).with_for_update()
        result = await session.execute(stmt)
        config = result.scalars().first()

        if config is None:
            session.add(
                EngineConfig(config_id=CONFIG_ID, min_stake=str(min_stake), owner=owner, cell_counter=0)
            )
        elif config.owner:
            return False
        else:
            # cells were created before initialize; keep the counter
            config.min_stake = str(min_stake)
            config.owner = owner
        await session.flush()
        return True

    @staticmethod
    async def allocate_cell_id(session: AsyncSession) -> int:
        """Increment the cell counter and return the new cell id

        Returns:
            int: The allocated cell id (the first one is 1)
        """
        stmt = select(EngineConfig).where(EngineConfig.config_id == CONFIG_ID).with_for_update()
        result = await session.execute(stmt)
        config = result.scalars().first()

        if config is None:
            # not initialized: behave as min_stake 0 with no owner
            config = EngineConfig(config_id=CONFIG_ID, min_stake="0", owner="", cell_counter=0)
            session.add(config)

        config.cell_counter = (config.cell_counter or 0) + 1
        await session.flush()
        return config.cell_counter


class PayoutStore:
    """Failed settlement payments waiting for a retry"""

    @staticmethod
    async def add_pending_payout(
        cell_id: int, address: str, amount: int, error: str, session: AsyncSession
    ) -> None:
        session.add(
            PendingPayout(cell_id=cell_id, address=address, amount=str(amount), last_error=error)
        )
        await session.flush()

    @staticmethod
    async def read_pending_payouts(session: AsyncSession) -> List[PendingPayoutSchema]:
        stmt = select(PendingPayout).order_by(PendingPayout.created_at)
        result = await session.execute(stmt)
        return [PendingPayoutSchema.model_validate(row) for row in result.scalars().all()]

    @staticmethod
    async def claim_pending_payout(payout_id: UUID, session: AsyncSession) -> bool:
        """Remove a pending payout so exactly one retry run pays it

        Returns:
            bool: False if another run already claimed it
        """
        result = await session.execute(delete(PendingPayout).where(PendingPayout.payout_id == payout_id))
        return result.rowcount == 1

    @staticmethod
    async def requeue_pending_payout(payout: PendingPayoutSchema, error: str, session: AsyncSession) -> None:
        """Put a claimed payout back after another failed attempt"""
        session.add(
            PendingPayout(
                payout_id=payout.payout_id,
                cell_id=payout.cell_id,
                address=payout.address,
                amount=str(payout.amount),
                attempts=payout.attempts + 1,
                last_error=error,
                created_at=payout.created_at,
            )
        )
        await session.flush()


class LedgerStore:
    """Per-address credited balance used by the ledger payment gateway"""

    @staticmethod
    async def read_balance(address: str, session: AsyncSession) -> int:
        stmt = select(PayoutLedger.balance).where(PayoutLedger.address == address)
        result = await session.execute(stmt)
        balance = result.scalars().first()
        return int(balance) if balance is not None else 0

    @staticmethod
    async def credit(address: str, amount: int, session: AsyncSession) -> int:
        stmt = select(PayoutLedger).where(PayoutLedger.address == address).with_for_update()
        result = await session.execute(stmt)
        entry = result.scalars().first()

        if entry is None:
            entry = PayoutLedger(address=address, balance="0")
            session.add(entry)

        entry.balance = str(int(entry.balance or 0) + amount)
        await session.flush()
        return int(entry.balance)
