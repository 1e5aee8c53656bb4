"""Cell engine: the operations the dispatcher calls.

- Each mutating operation is one read-decode-mutate-encode-write of the cell
  record inside one transaction, serialized per cell id.
- Game rules live in cell_server.domain; this layer owns sessions, bindings,
  payments and notifications.
- Settlement commits the completed cell and clears both bindings before any
  payment is attempted. A failed payment is queued as a pending payout and
  retried by retry_pending_payouts(); the cell is never rolled back.
"""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Tuple

import numpy as np
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cell_server.cell_lock_manager import CellLockManager
from cell_server.crud import CellStore, ConfigStore, PairStore, ParticipantStore, PayoutStore
from cell_server.domain import cell_machine
from cell_server.domain.cell_rules import address_to_bytes, normalize_address
from cell_server.domain.codec import decode_cell, encode_cell
from cell_server.domain.errors import AlreadyInCell, CellNotFound
from cell_server.domain.pairing import pair_key
from cell_server.models.dc_models import CellModel
from cell_server.models.schema_models import CellRecordSchema, EngineConfigSchema
from cell_server.services.payments import PaymentError, PaymentGateway


def default_entropy(creator: str) -> int:
    """Mix wall-clock time and the creator's last address byte into a random draw."""
    seed = int(datetime.now().timestamp()) + address_to_bytes(creator)[-1]
    return int(np.random.default_rng(seed).integers(0, 2**32))


class CellEngine:
    def __init__(
        self,
        Session: async_sessionmaker,
        payments: PaymentGateway,
        notifier=None,
        entropy_source: Callable[[str], int] = default_entropy,
        lock_manager: CellLockManager | None = None,
        cell_store: CellStore | None = None,
        participant_store: ParticipantStore | None = None,
        pair_store: PairStore | None = None,
        config_store: ConfigStore | None = None,
        payout_store: PayoutStore | None = None,
    ):
        self.Session = Session
        self.payments = payments
        self.notifier = notifier
        self.entropy_source = entropy_source
        self.lock_manager = lock_manager or CellLockManager()
        self.cell_store = cell_store or CellStore()
        self.participant_store = participant_store or ParticipantStore()
        self.pair_store = pair_store or PairStore()
        self.config_store = config_store or ConfigStore()
        self.payout_store = payout_store or PayoutStore()

    # ==== Operations ==========================================================

    async def initialize(self, min_stake: int, owner: str) -> bool:
        """One-time setup; a no-op once an owner is recorded

        Args:
            min_stake (int): Minimum stake for create_cell
            owner (str): Identity performing the setup

        Returns:
            bool: True if this call configured the engine
        """
        owner = normalize_address(owner)
        try:
            async with self.Session() as session:
                async with session.begin():
                    configured = await self.config_store.initialize_config(min_stake, owner, session)
        except IntegrityError:
            # lost a race against another initialize
            return False
        if configured:
            logging.info(f"Engine initialized: min_stake={min_stake}, owner={owner}")
        return configured

    async def create_cell(self, creator: str, value_sent: int, entropy: int | None = None) -> int:
        """Open a new cell staked by the creator

        Args:
            creator (str): Participant creating the cell
            value_sent (int): Stake sent with the call
            entropy (int | None): Round count entropy, drawn from entropy_source if None

        Raises:
            StakeTooLow: value_sent is below the minimum stake
            StakeTooHigh: value_sent is above MAX_STAKE
            AlreadyInCell: The creator is bound to another open cell

        Returns:
            int: The new cell id
        """
        creator = normalize_address(creator)
        if entropy is None:
            entropy = self.entropy_source(creator)

        try:
            async with self.Session() as session:
                async with session.begin():
                    config = await self.config_store.read_config(session)
                    min_stake = config.min_stake if config is not None else 0
                    bound_cell = await self.participant_store.read_bound_cell(creator, session)
                    cell = cell_machine.open_cell(creator, value_sent, entropy, min_stake, bound_cell)

                    cell_id = await self.config_store.allocate_cell_id(session)
                    await self.cell_store.add_cell_record(cell_id, encode_cell(cell), value_sent, session)
                    await self.participant_store.bind(creator, cell_id, session)
        except IntegrityError as e:
            logging.error(f"Binding conflict while {creator} created a cell: {e}")
            raise AlreadyInCell() from e

        logging.info(f"Cell {cell_id} created by {creator}: stake={value_sent}, total_rounds={cell.total_rounds}")
        await self._notify(cell_id, "CellCreated", player1=creator, stake=value_sent)
        return cell_id

    async def join_cell(self, cell_id: int, joiner: str, value_sent: int) -> None:
        """Join an open cell with a matching stake; opens round 1

        Raises:
            CellNotFound: The cell was never created
            AlreadyInCell: The joiner is bound to another open cell
            CellFull: The cell already has two participants
            WrongStake: value_sent differs from the cell stake
        """
        joiner = normalize_address(joiner)

        async def operation(cell: CellModel, record: CellRecordSchema, session: AsyncSession):
            bound_cell = await self.participant_store.read_bound_cell(joiner, session)
            cell_machine.join(cell, joiner, value_sent, bound_cell)
            await self.participant_store.bind(joiner, cell_id, session)
            await self.pair_store.set_pair_cell(pair_key(cell.player1, joiner), cell_id, session)
            return record.escrowed + value_sent, None

        try:
            await self._apply(cell_id, operation)
        except IntegrityError as e:
            logging.error(f"Binding conflict while {joiner} joined cell {cell_id}: {e}")
            raise AlreadyInCell() from e

        logging.info(f"{joiner} joined cell {cell_id}")
        await self._notify(cell_id, "PlayerJoined", player2=joiner)

    async def submit_move(self, cell_id: int, caller: str, move_byte: int) -> cell_machine.MoveOutcome:
        """Submit the caller's move for the open round

        Raises:
            CellNotFound, CellIsComplete, NeedPlayer2, NotInCell, NoRoundStarted,
            RoundNotReady, RoundAlreadyFinished, AlreadyMoved
        """
        caller = normalize_address(caller)

        async def operation(cell: CellModel, record: CellRecordSchema, session: AsyncSession):
            return None, cell_machine.submit_move(cell, caller, move_byte)

        cell, outcome = await self._apply(cell_id, operation)

        if outcome.round_finished:
            logging.info(f"Cell {cell_id} round {outcome.round_number} resolved")
            await self._notify(cell_id, "RoundComplete", round_num=outcome.round_number)
        if outcome.settlement is not None:
            await self._settle(cell_id, outcome.settlement)
        return outcome

    async def submit_continuation_decision(
        self, cell_id: int, caller: str, wants_continue: bool
    ) -> cell_machine.VoteOutcome:
        """Vote on opening another round

        Raises:
            CellNotFound, CellIsComplete, NotInCell, NeedPlayer2, MaxRoundsReached,
            RoundNotFinished
        """
        caller = normalize_address(caller)

        async def operation(cell: CellModel, record: CellRecordSchema, session: AsyncSession):
            return None, cell_machine.submit_continuation_decision(cell, caller, wants_continue)

        cell, outcome = await self._apply(cell_id, operation)

        if outcome.continued:
            logging.info(f"Cell {cell_id} continues with round {cell.current_round}")
        if outcome.settlement is not None:
            await self._settle(cell_id, outcome.settlement)
        return outcome

    async def retry_pending_payouts(self) -> int:
        """Re-attempt queued settlement payments

        Returns:
            int: Number of payouts that went through
        """
        async with self.Session() as session:
            pending = await self.payout_store.read_pending_payouts(session)

        paid = 0
        for payout in pending:
            # the row is removed before the transfer starts and put back if it fails
            async with self.Session() as session:
                async with session.begin():
                    claimed = await self.payout_store.claim_pending_payout(payout.payout_id, session)
            if not claimed:
                logging.info(f"Pending payout {payout.payout_id} already claimed")
                continue

            try:
                await self.payments.pay(payout.address, payout.amount)
            except PaymentError as e:
                logging.error(f"Retry {payout.attempts} of payout {payout.payout_id} failed: {e}")
                async with self.Session() as session:
                    async with session.begin():
                        await self.payout_store.requeue_pending_payout(payout, str(e), session)
                continue

            logging.info(f"Pending payout {payout.payout_id} of cell {payout.cell_id} paid")
            paid += 1
        return paid

    # ==== Queries =============================================================

    async def read_cell(self, cell_id: int) -> CellModel:
        """Decoded cell; the default (empty) cell for unknown ids."""
        async with self.Session() as session:
            record = await self.cell_store.read_cell_record(cell_id, session)
        if record is None:
            return CellModel()
        return decode_cell(record.cell_data)

    async def get_player_cell(self, address: str) -> int:
        async with self.Session() as session:
            return await self.participant_store.read_bound_cell(normalize_address(address), session)

    async def get_players_cell(self, address_a: str, address_b: str) -> int:
        async with self.Session() as session:
            return await self.pair_store.read_pair_cell(pair_key(address_a, address_b), session)

    async def get_config(self) -> EngineConfigSchema:
        async with self.Session() as session:
            config = await self.config_store.read_config(session)
        if config is None:
            return EngineConfigSchema(min_stake=0, owner="", cell_counter=0)
        return config

    async def get_min_stake(self) -> int:
        return (await self.get_config()).min_stake

    async def get_owner(self) -> str:
        return (await self.get_config()).owner

    async def get_cell_counter(self) -> int:
        return (await self.get_config()).cell_counter

    async def get_cell(self, cell_id: int) -> Tuple[str, str, int, int, int, bool]:
        """(player1, player2, stake, total_rounds, current_round, is_complete)"""
        cell = await self.read_cell(cell_id)
        return (
            cell.player1,
            cell.player2,
            cell.stake_amount,
            cell.total_rounds,
            cell.current_round,
            cell.is_complete,
        )

    async def get_cell_stake(self, cell_id: int) -> int:
        async with self.Session() as session:
            record = await self.cell_store.read_cell_record(cell_id, session)
        return record.escrowed if record is not None else 0

    async def get_round_count(self, cell_id: int) -> int:
        return len((await self.read_cell(cell_id)).rounds)

    async def get_round_result(self, cell_id: int, round_number: int) -> Tuple[int, int, int, int]:
        return cell_machine.round_result(await self.read_cell(cell_id), round_number)

    async def get_continuation_status(self, cell_id: int) -> Tuple[bool, bool, bool, bool]:
        return cell_machine.continuation_status(await self.read_cell(cell_id))

    # ==== Internals ===========================================================

    async def _apply(
        self,
        cell_id: int,
        operation: Callable[[CellModel, CellRecordSchema, AsyncSession], Awaitable[tuple]],
    ) -> tuple:
        """Run one mutation against the stored cell

        operation returns (new escrowed amount or None, outcome). If the
        outcome carries a settlement, both bindings are cleared in the same
        transaction.

        Raises:
            CellNotFound: The cell was never created; no lock is taken for it

        Returns:
            tuple: The mutated cell and the outcome
        """
        # records are never deleted, so a cell seen here still exists under the lock
        async with self.Session() as session:
            if await self.cell_store.read_cell_record(cell_id, session) is None:
                raise CellNotFound()

        lock = await self.lock_manager.get_lock(cell_id)
        async with lock:
            async with self.Session() as session:
                async with session.begin():
                    record = await self.cell_store.read_cell_record(cell_id, session, for_update=True)
                    if record is None:
                        raise CellNotFound()
                    cell = decode_cell(record.cell_data)
                    if not cell_machine.cell_exists(cell):
                        raise CellNotFound()

                    escrowed, outcome = await operation(cell, record, session)

                    settlement = getattr(outcome, "settlement", None)
                    if settlement is not None:
                        await self.participant_store.unbind(cell.player1, session)
                        await self.participant_store.unbind(cell.player2, session)

                    await self.cell_store.update_cell_record(
                        cell_id, encode_cell(cell), session, escrowed=escrowed
                    )
        return cell, outcome

    async def _settle(self, cell_id: int, settlement: cell_machine.Settlement) -> None:
        logging.info(
            f"Cell {cell_id} complete: {settlement.player1} gets {settlement.player1_total}, "
            f"{settlement.player2} gets {settlement.player2_total}"
        )
        for address, amount in settlement.payments():
            try:
                await self.payments.pay(address, amount)
            except PaymentError as e:
                logging.error(f"Payout of {amount} to {address} for cell {cell_id} failed: {e}")
                async with self.Session() as session:
                    async with session.begin():
                        await self.payout_store.add_pending_payout(cell_id, address, amount, str(e), session)
                await self._notify(cell_id, "PayoutFailed", address=address, amount=amount)

        await self._notify(cell_id, "CellComplete")
        await self.lock_manager.cleanup(cell_id)

    async def _notify(self, cell_id: int, event: str, **fields) -> None:
        if self.notifier is None:
            return
        await self.notifier.notify(cell_id, event, **fields)
