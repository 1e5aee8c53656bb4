import asyncio
import gc
from datetime import datetime
from unittest.mock import Mock

import pytest

from cell_server.crud import PayoutStore
from cell_server.domain.cell_rules import MAX_STAKE, UINT256_MAX
from cell_server.domain.errors import (
    AlreadyInCell,
    CellFull,
    CellIsComplete,
    CellNotFound,
    NotInCell,
    StakeTooHigh,
    StakeTooLow,
    WrongStake,
)
from cell_server.models.dc_models import CellModel
from cell_server.services import cell_engine as cell_engine_module
from cell_server.services.cell_engine import CellEngine, default_entropy

from conftest import ALICE, BOB, CAROL, MIN_STAKE, OWNER

COOPERATE = 0
DEFECT = 1


async def open_pair(cell_engine: CellEngine, stake: int = 100, entropy: int | None = None) -> int:
    cell_id = await cell_engine.create_cell(ALICE, stake, entropy=entropy)
    await cell_engine.join_cell(cell_id, BOB, stake)
    return cell_id


async def play_round(cell_engine: CellEngine, cell_id: int, move1: int, move2: int):
    await cell_engine.submit_move(cell_id, ALICE, move1)
    return await cell_engine.submit_move(cell_id, BOB, move2)


async def test_initialize_is_one_time(cell_engine):
    assert not await cell_engine.initialize(1, CAROL)
    config = await cell_engine.get_config()
    assert config.min_stake == MIN_STAKE
    assert config.owner == OWNER
    assert await cell_engine.get_min_stake() == MIN_STAKE


async def test_create_binds_creator(cell_engine, notifier):
    cell_id = await cell_engine.create_cell(ALICE, 100)
    assert cell_id == 1
    assert await cell_engine.get_player_cell(ALICE) == 1
    assert (await cell_engine.get_config()).cell_counter == 1
    assert await cell_engine.get_cell_stake(cell_id) == 100

    cell = await cell_engine.read_cell(cell_id)
    assert cell.player1 == ALICE
    assert cell.total_rounds == 3
    assert cell.current_round == 0
    assert notifier.events == [(1, "CellCreated", {"player1": ALICE, "stake": 100})]


async def test_create_accepts_unnormalized_address(cell_engine):
    cell_id = await cell_engine.create_cell(ALICE[2:].upper(), 100)
    assert (await cell_engine.read_cell(cell_id)).player1 == ALICE


async def test_create_stake_too_low(cell_engine):
    with pytest.raises(StakeTooLow):
        await cell_engine.create_cell(ALICE, MIN_STAKE - 1)
    assert await cell_engine.get_player_cell(ALICE) == 0
    assert (await cell_engine.get_config()).cell_counter == 0


async def test_create_while_bound(cell_engine):
    await cell_engine.create_cell(ALICE, 100)
    with pytest.raises(AlreadyInCell):
        await cell_engine.create_cell(ALICE, 100)
    assert (await cell_engine.get_config()).cell_counter == 1


async def test_cell_ids_increase(cell_engine):
    assert await cell_engine.create_cell(ALICE, 100) == 1
    assert await cell_engine.create_cell(BOB, 100) == 2
    assert await cell_engine.create_cell(CAROL, 100) == 3


async def test_join_opens_round_and_records_pair(cell_engine, notifier):
    cell_id = await open_pair(cell_engine)

    cell = await cell_engine.read_cell(cell_id)
    assert cell.player2 == BOB
    assert cell.current_round == 1
    assert await cell_engine.get_round_count(cell_id) == 1
    assert await cell_engine.get_player_cell(BOB) == cell_id
    assert await cell_engine.get_players_cell(ALICE, BOB) == cell_id
    assert await cell_engine.get_players_cell(BOB, ALICE) == cell_id
    assert await cell_engine.get_cell_stake(cell_id) == 200
    assert notifier.names() == ["CellCreated", "PlayerJoined"]


async def test_join_failures_leave_no_trace(cell_engine):
    cell_id = await cell_engine.create_cell(ALICE, 100)
    with pytest.raises(WrongStake):
        await cell_engine.join_cell(cell_id, BOB, 101)

    assert await cell_engine.get_player_cell(BOB) == 0
    assert await cell_engine.get_players_cell(ALICE, BOB) == 0
    cell = await cell_engine.read_cell(cell_id)
    assert cell.current_round == 0
    assert cell.rounds == []
    assert await cell_engine.get_cell_stake(cell_id) == 100


async def test_join_full_cell(cell_engine):
    cell_id = await open_pair(cell_engine)
    with pytest.raises(CellFull):
        await cell_engine.join_cell(cell_id, CAROL, 100)


async def test_join_own_cell(cell_engine):
    cell_id = await cell_engine.create_cell(ALICE, 100)
    with pytest.raises(AlreadyInCell):
        await cell_engine.join_cell(cell_id, ALICE, 100)


async def test_join_unknown_cell(cell_engine):
    with pytest.raises(CellNotFound):
        await cell_engine.join_cell(42, BOB, 100)


async def test_cooperative_round_then_continue(cell_engine, notifier):
    cell_id = await open_pair(cell_engine)
    await play_round(cell_engine, cell_id, COOPERATE, COOPERATE)

    assert await cell_engine.get_round_result(cell_id, 1) == (0, 0, 100, 100)
    cell = await cell_engine.read_cell(cell_id)
    assert cell.current_round == 1
    assert len(cell.rounds) == 1
    assert "RoundComplete" in notifier.names()

    await cell_engine.submit_continuation_decision(cell_id, ALICE, True)
    assert await cell_engine.get_continuation_status(cell_id) == (True, True, False, False)
    await cell_engine.submit_continuation_decision(cell_id, BOB, True)

    cell = await cell_engine.read_cell(cell_id)
    assert cell.current_round == 2
    assert len(cell.rounds) == 2
    assert await cell_engine.get_continuation_status(cell_id) == (False, False, False, False)


async def test_final_round_settles(cell_engine, payments, notifier):
    cell_id = await open_pair(cell_engine, entropy=0)
    await play_round(cell_engine, cell_id, COOPERATE, DEFECT)

    cell = await cell_engine.read_cell(cell_id)
    assert cell.is_complete
    assert await cell_engine.get_player_cell(ALICE) == 0
    assert await cell_engine.get_player_cell(BOB) == 0
    assert payments.paid == [(ALICE, 50), (BOB, 150)]
    assert notifier.names()[-1] == "CellComplete"

    with pytest.raises(CellIsComplete):
        await cell_engine.submit_move(cell_id, ALICE, COOPERATE)


async def test_stop_vote_settles_accumulated_rounds(cell_engine, payments):
    cell_id = await open_pair(cell_engine, entropy=9)
    await play_round(cell_engine, cell_id, DEFECT, DEFECT)
    await cell_engine.submit_continuation_decision(cell_id, BOB, True)
    await cell_engine.submit_continuation_decision(cell_id, ALICE, True)
    await play_round(cell_engine, cell_id, DEFECT, COOPERATE)

    await cell_engine.submit_continuation_decision(cell_id, ALICE, False)
    cell = await cell_engine.read_cell(cell_id)
    assert not cell.is_complete
    assert await cell_engine.get_continuation_status(cell_id) == (True, False, False, False)
    assert payments.paid == []

    await cell_engine.submit_continuation_decision(cell_id, BOB, True)
    cell = await cell_engine.read_cell(cell_id)
    assert cell.is_complete
    assert await cell_engine.get_continuation_status(cell_id) == (False, False, False, False)
    assert payments.paid == [(ALICE, 50 + 150), (BOB, 50 + 50)]


async def test_binding_released_after_completion(cell_engine):
    cell_id = await open_pair(cell_engine, entropy=0)
    with pytest.raises(AlreadyInCell):
        await cell_engine.create_cell(ALICE, 100)
    other_cell = await cell_engine.create_cell(CAROL, 100)
    with pytest.raises(AlreadyInCell):
        await cell_engine.join_cell(other_cell, BOB, 100)

    await play_round(cell_engine, cell_id, COOPERATE, COOPERATE)

    await cell_engine.join_cell(other_cell, BOB, 100)
    assert await cell_engine.create_cell(ALICE, 100) == 3
    # the pair lookup keeps pointing at the finished cell
    assert await cell_engine.get_players_cell(ALICE, BOB) == cell_id


async def test_stranger_cannot_move(cell_engine):
    cell_id = await open_pair(cell_engine)
    with pytest.raises(NotInCell):
        await cell_engine.submit_move(cell_id, CAROL, COOPERATE)


async def test_concurrent_moves_resolve_round_once(cell_engine, notifier):
    cell_id = await open_pair(cell_engine)
    await asyncio.gather(
        cell_engine.submit_move(cell_id, ALICE, DEFECT),
        cell_engine.submit_move(cell_id, BOB, COOPERATE),
    )
    assert await cell_engine.get_round_result(cell_id, 1) == (1, 0, 150, 50)
    assert notifier.names().count("RoundComplete") == 1


async def test_failed_payment_is_queued_and_retried(cell_engine, payments, notifier):
    payments.fail_for = {BOB}
    cell_id = await open_pair(cell_engine, entropy=0)
    await play_round(cell_engine, cell_id, DEFECT, DEFECT)

    cell = await cell_engine.read_cell(cell_id)
    assert cell.is_complete
    assert await cell_engine.get_player_cell(BOB) == 0
    assert payments.paid == [(ALICE, 50)]
    assert "PayoutFailed" in notifier.names()

    assert await cell_engine.retry_pending_payouts() == 0

    payments.fail_for = set()
    assert await cell_engine.retry_pending_payouts() == 1
    assert payments.paid == [(ALICE, 50), (BOB, 50)]
    assert await cell_engine.retry_pending_payouts() == 0


async def test_zero_payouts_are_not_sent(session_factory, payments):
    cell_engine = CellEngine(session_factory, payments=payments, entropy_source=lambda creator: 0)
    await cell_engine.initialize(0, OWNER)
    cell_id = await open_pair(cell_engine, stake=1)
    await play_round(cell_engine, cell_id, DEFECT, DEFECT)

    assert (await cell_engine.read_cell(cell_id)).is_complete
    assert payments.paid == []


async def test_uninitialized_engine_accepts_any_stake(session_factory, payments):
    cell_engine = CellEngine(session_factory, payments=payments)
    cell_id = await cell_engine.create_cell(ALICE, 0)
    assert cell_id == 1
    assert 1 <= (await cell_engine.read_cell(cell_id)).total_rounds <= 10

    assert await cell_engine.initialize(5, OWNER)
    config = await cell_engine.get_config()
    assert (config.min_stake, config.owner, config.cell_counter) == (5, OWNER, 1)


async def test_unknown_cell_queries_return_defaults(cell_engine):
    assert await cell_engine.read_cell(7) == CellModel()
    assert await cell_engine.get_round_result(7, 1) == (0, 0, 0, 0)
    assert await cell_engine.get_continuation_status(7) == (False, False, False, False)
    assert await cell_engine.get_round_count(7) == 0
    assert await cell_engine.get_cell_stake(7) == 0
    assert await cell_engine.get_players_cell(ALICE, BOB) == 0


def test_default_entropy_is_a_32_bit_draw_seeded_by_creator(monkeypatch):
    values = {default_entropy(address) for address in (ALICE, BOB, CAROL)}
    assert all(isinstance(value, int) and 0 <= value < 2**32 for value in values)

    # freeze the clock so only the creator differs between draws
    frozen = datetime(2024, 1, 1, 12, 0, 0)
    monkeypatch.setattr(cell_engine_module, "datetime", Mock(now=Mock(return_value=frozen)))
    assert default_entropy(ALICE) == default_entropy(ALICE)
    assert default_entropy(ALICE) != default_entropy(BOB)


async def test_summary_queries(cell_engine):
    cell_id = await open_pair(cell_engine)
    assert await cell_engine.get_cell(cell_id) == (ALICE, BOB, 100, 3, 1, False)
    assert await cell_engine.get_owner() == OWNER
    assert await cell_engine.get_cell_counter() == 1


async def test_unknown_cells_leave_no_locks(cell_engine):
    for cell_id in range(1000, 1100):
        with pytest.raises(CellNotFound):
            await cell_engine.submit_move(cell_id, ALICE, COOPERATE)
        with pytest.raises(CellNotFound):
            await cell_engine.submit_continuation_decision(cell_id, ALICE, True)
    assert len(cell_engine.lock_manager.locks) == 0


async def test_idle_cell_locks_are_released(cell_engine):
    cell_id = await open_pair(cell_engine, entropy=9)
    await play_round(cell_engine, cell_id, COOPERATE, COOPERATE)
    gc.collect()
    assert len(cell_engine.lock_manager.locks) == 0


@pytest.mark.parametrize("stake", [MAX_STAKE + 1, UINT256_MAX])
async def test_create_rejects_stake_that_cannot_be_paid_out(cell_engine, stake):
    with pytest.raises(StakeTooHigh):
        await cell_engine.create_cell(ALICE, stake)
    assert await cell_engine.get_player_cell(ALICE) == 0
    assert (await cell_engine.get_config()).cell_counter == 0


async def test_largest_stake_settles(cell_engine, payments):
    cell_id = await open_pair(cell_engine, stake=MAX_STAKE, entropy=0)
    await play_round(cell_engine, cell_id, DEFECT, COOPERATE)

    assert (await cell_engine.read_cell(cell_id)).is_complete
    assert payments.paid == [(ALICE, MAX_STAKE + MAX_STAKE // 2), (BOB, MAX_STAKE // 2)]


async def test_failed_retry_requeues_payout(cell_engine, payments, session_factory):
    payments.fail_for = {BOB}
    cell_id = await open_pair(cell_engine, entropy=0)
    await play_round(cell_engine, cell_id, DEFECT, DEFECT)

    async with session_factory() as session:
        (queued,) = await PayoutStore.read_pending_payouts(session)
    assert await cell_engine.retry_pending_payouts() == 0

    async with session_factory() as session:
        (requeued,) = await PayoutStore.read_pending_payouts(session)
    assert requeued.payout_id == queued.payout_id
    assert (requeued.address, requeued.amount) == (BOB, 50)
    assert requeued.attempts == queued.attempts + 1
    assert requeued.last_error == "transfer rejected"


async def test_payout_is_claimed_before_it_is_paid(cell_engine, payments):
    payments.fail_for = {BOB}
    cell_id = await open_pair(cell_engine, entropy=0)
    await play_round(cell_engine, cell_id, DEFECT, DEFECT)
    payments.fail_for = set()

    overlapping_runs = []
    pay = payments.pay

    async def pay_during_another_run(address, amount):
        overlapping_runs.append(await cell_engine.retry_pending_payouts())
        await pay(address, amount)

    payments.pay = pay_during_another_run
    assert await cell_engine.retry_pending_payouts() == 1

    assert overlapping_runs == [0]
    assert payments.paid == [(ALICE, 50), (BOB, 50)]
    assert await cell_engine.retry_pending_payouts() == 0
