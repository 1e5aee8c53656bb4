"""Cell state machine.

AwaitingPlayer2 -> RoundOpen(r) -> RoundResolved(r) -> RoundOpen(r + 1) | Complete

Every operation validates all of its preconditions before it touches the cell,
so a failed call leaves the cell exactly as it was. Round resolution happens
inside the call that delivers the second move, and vote resolution inside the
call that delivers the second decision; there is no separate resolve step.

Binding lookups (which cell a participant is currently in) live outside this
module; callers pass the looked-up cell id in.
"""

from typing import List, Optional, Tuple

from pydantic import BaseModel

from cell_server.domain.cell_rules import EMPTY_ADDRESS, MAX_STAKE, rounds_from_entropy
from cell_server.domain.errors import (
    AlreadyInCell,
    AlreadyMoved,
    CellFull,
    CellIsComplete,
    MaxRoundsReached,
    NeedPlayer2,
    NoRoundStarted,
    NotInCell,
    RoundAlreadyFinished,
    RoundNotFinished,
    RoundNotReady,
    StakeTooHigh,
    StakeTooLow,
    WrongStake,
)
from cell_server.domain.payoff import payoff
from cell_server.models.dc_models import CellModel, ContinuationVoteModel, Move, RoundModel

UNBOUND = 0


class Settlement(BaseModel):
    player1: str
    player2: str
    player1_total: int
    player2_total: int

    def payments(self) -> List[Tuple[str, int]]:
        """Payments to issue; zero totals are skipped."""
        return [
            (address, amount)
            for address, amount in (
                (self.player1, self.player1_total),
                (self.player2, self.player2_total),
            )
            if amount > 0
        ]


class MoveOutcome(BaseModel):
    round_number: int
    round_finished: bool = False
    settlement: Optional[Settlement] = None


class VoteOutcome(BaseModel):
    resolved: bool = False
    continued: bool = False
    settlement: Optional[Settlement] = None


def cell_exists(cell: CellModel) -> bool:
    return cell.player1 != EMPTY_ADDRESS


def has_player2(cell: CellModel) -> bool:
    return cell.player2 != EMPTY_ADDRESS


def participant_slot(cell: CellModel, caller: str) -> Optional[int]:
    """Return 1 or 2 for a participant of the cell, None otherwise."""
    if caller == EMPTY_ADDRESS:
        return None
    if caller == cell.player1:
        return 1
    if caller == cell.player2:
        return 2
    return None


def open_cell(creator: str, stake: int, entropy: int, min_stake: int, creator_bound_cell: int) -> CellModel:
    """Build a new cell waiting for its second participant

    Args:
        creator (str): Participant creating the cell
        stake (int): Value sent by the creator
        entropy (int): Any integer; total_rounds = 1 + entropy % 10
        min_stake (int): Configured minimum stake
        creator_bound_cell (int): Cell the creator is currently bound to (0 if none)

    Raises:
        StakeTooLow: stake < min_stake
        StakeTooHigh: stake > MAX_STAKE, its payouts would not fit an amount field
        AlreadyInCell: The creator is bound to another open cell

    Returns:
        CellModel: The new cell
    """
    if stake < min_stake:
        raise StakeTooLow()
    if stake > MAX_STAKE:
        raise StakeTooHigh()
    if creator_bound_cell != UNBOUND:
        raise AlreadyInCell()
    return CellModel(
        player1=creator,
        stake_amount=stake,
        total_rounds=rounds_from_entropy(entropy),
    )


def join(cell: CellModel, joiner: str, stake: int, joiner_bound_cell: int) -> None:
    """Seat the second participant and open round 1."""
    if joiner_bound_cell != UNBOUND:
        raise AlreadyInCell()
    if has_player2(cell):
        raise CellFull()
    if stake != cell.stake_amount:
        raise WrongStake()

    cell.player2 = joiner
    cell.current_round = 1
    cell.rounds.append(RoundModel())


def submit_move(cell: CellModel, caller: str, move_byte: int) -> MoveOutcome:
    """Record the caller's move in the open round

    The round resolves as soon as both moves are in. Resolving the final round
    completes the cell.

    Args:
        cell (CellModel): Cell to update in place
        caller (str): Participant submitting the move
        move_byte (int): 0 cooperates, anything else defects

    Raises:
        CellIsComplete: The cell is already settled
        NeedPlayer2: Nobody has joined yet
        NotInCell: The caller is not a participant
        NoRoundStarted: No round has been opened
        RoundNotReady: The next round waits for a continuation vote
        RoundAlreadyFinished: Both moves of the round are already in
        AlreadyMoved: The caller already moved in this round

    Returns:
        MoveOutcome: Round number and, if it closed the cell, the settlement
    """
    if cell.is_complete:
        raise CellIsComplete()
    if not has_player2(cell):
        raise NeedPlayer2()
    slot = participant_slot(cell, caller)
    if slot is None:
        raise NotInCell()
    if cell.current_round == 0:
        raise NoRoundStarted()
    round_index = cell.current_round - 1
    if round_index >= len(cell.rounds):
        raise RoundNotReady()
    round_ = cell.rounds[round_index]
    if round_.is_finished:
        raise RoundAlreadyFinished()

    move = Move.from_byte(move_byte)
    if slot == 1:
        if round_.player1_move is not None:
            raise AlreadyMoved()
        round_.player1_move = move
    else:
        if round_.player2_move is not None:
            raise AlreadyMoved()
        round_.player2_move = move

    outcome = MoveOutcome(round_number=cell.current_round)
    if round_.player1_move is not None and round_.player2_move is not None:
        outcome.round_finished = True
        outcome.settlement = resolve_round(cell, round_index)
    return outcome


def resolve_round(cell: CellModel, round_index: int) -> Optional[Settlement]:
    round_ = cell.rounds[round_index]
    round_.player1_payout, round_.player2_payout = payoff(
        round_.player1_move, round_.player2_move, cell.stake_amount
    )
    round_.is_finished = True

    if cell.current_round >= cell.total_rounds:
        return complete_cell(cell)
    # fresh vote for the coming decision
    cell.continuation = ContinuationVoteModel()
    return None


def submit_continuation_decision(cell: CellModel, caller: str, wants_continue: bool) -> VoteOutcome:
    """Record the caller's vote on opening another round

    A caller may vote again until the counterpart decides; each call
    overwrites the caller's previous vote. The vote resolves inside the call
    that brings in the second decision: both "continue" opens the next round,
    anything else completes the cell. Either way the vote is reset.

    Raises:
        CellIsComplete: The cell is already settled
        NotInCell: The caller is not a participant
        NeedPlayer2: Nobody has joined yet
        MaxRoundsReached: The current round is the last one
        RoundNotFinished: The current round still collects moves
    """
    if cell.is_complete:
        raise CellIsComplete()
    slot = participant_slot(cell, caller)
    if slot is None:
        raise NotInCell()
    if not has_player2(cell):
        raise NeedPlayer2()
    if cell.current_round >= cell.total_rounds:
        raise MaxRoundsReached()
    if not cell.rounds or not cell.rounds[cell.current_round - 1].is_finished:
        raise RoundNotFinished()

    if slot == 1:
        cell.continuation.player1 = wants_continue
    else:
        cell.continuation.player2 = wants_continue

    vote = cell.continuation
    if vote.player1 is None or vote.player2 is None:
        return VoteOutcome()

    cell.continuation = ContinuationVoteModel()
    if vote.player1 and vote.player2 and cell.current_round < cell.total_rounds:
        cell.current_round += 1
        cell.rounds.append(RoundModel())
        return VoteOutcome(resolved=True, continued=True)
    return VoteOutcome(resolved=True, settlement=complete_cell(cell))


def complete_cell(cell: CellModel) -> Settlement:
    """Mark the cell complete and total the payouts of every finished round."""
    if cell.is_complete:
        raise CellIsComplete()
    cell.is_complete = True

    player1_total = 0
    player2_total = 0
    for round_ in cell.rounds:
        if round_.is_finished:
            player1_total += round_.player1_payout
            player2_total += round_.player2_payout

    return Settlement(
        player1=cell.player1,
        player2=cell.player2,
        player1_total=player1_total,
        player2_total=player2_total,
    )


def round_result(cell: CellModel, round_number: int) -> Tuple[int, int, int, int]:
    """Moves and payouts of a finished round, all zeros otherwise."""
    if round_number < 1 or round_number > len(cell.rounds):
        return 0, 0, 0, 0
    round_ = cell.rounds[round_number - 1]
    if not round_.is_finished:
        return 0, 0, 0, 0
    return (
        int(round_.player1_move or Move.cooperate),
        int(round_.player2_move or Move.cooperate),
        round_.player1_payout,
        round_.player2_payout,
    )


def continuation_status(cell: CellModel) -> Tuple[bool, bool, bool, bool]:
    """(player1 decided, player1 wants, player2 decided, player2 wants)"""
    vote = cell.continuation
    return (
        vote.player1 is not None,
        bool(vote.player1),
        vote.player2 is not None,
        bool(vote.player2),
    )
