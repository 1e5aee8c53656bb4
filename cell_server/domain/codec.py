"""Fixed-layout binary record of a Cell.

Layout (all integers big-endian):

    offset  size  field
    0       20    player1 address
    20      20    player2 address
    40      32    stake_amount
    72      1     total_rounds
    73      1     current_round
    74      1     is_complete (0/1)
    75      1     round count N
    76      ...   N rounds: 1 status byte, then two 32-byte payouts if finished
    end     1     continuation flags

Round status byte: bit0 player1 cooperated, bit1 player1 defected, bit2
player2 cooperated, bit3 player2 defected, bit4 finished.

Continuation flags: bit0 player1 wants to continue, bit1 player2 wants to
continue, bit2 player1 decided, bit3 player2 decided.

Decoding never raises: a record shorter than the header is the default (never
created) cell, and truncated round data just stops early.
"""

from typing import Optional

from cell_server.domain.cell_rules import (
    ADDRESS_SIZE,
    AMOUNT_SIZE,
    UINT256_MAX,
    address_from_bytes,
    address_to_bytes,
)
from cell_server.models.dc_models import CellModel, ContinuationVoteModel, Move, RoundModel

HEADER_SIZE = 2 * ADDRESS_SIZE + AMOUNT_SIZE + 4
PAYOUTS_SIZE = 2 * AMOUNT_SIZE

P1_COOPERATE = 0x01
P1_DEFECT = 0x02
P2_COOPERATE = 0x04
P2_DEFECT = 0x08
ROUND_FINISHED = 0x10

P1_WANTS = 0x01
P2_WANTS = 0x02
P1_DECIDED = 0x04
P2_DECIDED = 0x08


def amount_to_bytes(value: int) -> bytes:
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"amount does not fit in {AMOUNT_SIZE} bytes: {value}")
    return value.to_bytes(AMOUNT_SIZE, "big")


def amount_from_bytes(raw: bytes) -> int:
    return int.from_bytes(raw, "big")


def encode_round_status(round_: RoundModel) -> int:
    status = 0
    if round_.player1_move == Move.cooperate:
        status |= P1_COOPERATE
    elif round_.player1_move == Move.defect:
        status |= P1_DEFECT
    if round_.player2_move == Move.cooperate:
        status |= P2_COOPERATE
    elif round_.player2_move == Move.defect:
        status |= P2_DEFECT
    if round_.is_finished:
        status |= ROUND_FINISHED
    return status


def _decode_move(bits: int, cooperate: int, defect: int) -> Optional[Move]:
    if bits == cooperate:
        return Move.cooperate
    if bits == defect:
        return Move.defect
    # both or neither bit set
    return None


def encode_continuation(vote: ContinuationVoteModel) -> int:
    flags = 0
    if vote.player1 is not None:
        flags |= P1_DECIDED
        if vote.player1:
            flags |= P1_WANTS
    if vote.player2 is not None:
        flags |= P2_DECIDED
        if vote.player2:
            flags |= P2_WANTS
    return flags


def decode_continuation(flags: int) -> ContinuationVoteModel:
    player1 = bool(flags & P1_WANTS) if flags & P1_DECIDED else None
    player2 = bool(flags & P2_WANTS) if flags & P2_DECIDED else None
    return ContinuationVoteModel(player1=player1, player2=player2)


def encode_cell(cell: CellModel) -> bytes:
    """Serialize a cell into its persisted record

    Args:
        cell (CellModel): Cell to serialize

    Raises:
        ValueError: A field does not fit its fixed width

    Returns:
        bytes: The record
    """
    if len(cell.rounds) > 0xFF:
        raise ValueError(f"too many rounds to encode: {len(cell.rounds)}")
    data = bytearray()
    data += address_to_bytes(cell.player1)
    data += address_to_bytes(cell.player2)
    data += amount_to_bytes(cell.stake_amount)
    data.append(cell.total_rounds)
    data.append(cell.current_round)
    data.append(1 if cell.is_complete else 0)
    data.append(len(cell.rounds))

    for round_ in cell.rounds:
        data.append(encode_round_status(round_))
        if round_.is_finished:
            data += amount_to_bytes(round_.player1_payout)
            data += amount_to_bytes(round_.player2_payout)

    data.append(encode_continuation(cell.continuation))
    return bytes(data)


def decode_cell(data: bytes) -> CellModel:
    """Deserialize a persisted record

    Args:
        data (bytes): The record, possibly empty or truncated

    Returns:
        CellModel: The decoded cell, or the default cell if the header is incomplete
    """
    if len(data) < HEADER_SIZE:
        return CellModel()

    player1 = address_from_bytes(data[0:ADDRESS_SIZE])
    player2 = address_from_bytes(data[ADDRESS_SIZE : 2 * ADDRESS_SIZE])
    stake_amount = amount_from_bytes(data[2 * ADDRESS_SIZE : 2 * ADDRESS_SIZE + AMOUNT_SIZE])
    total_rounds = data[72]
    current_round = data[73]
    is_complete = data[74] != 0
    rounds_count = data[75]

    rounds = []
    pos = HEADER_SIZE
    for _ in range(rounds_count):
        if pos >= len(data):
            break
        status = data[pos]
        pos += 1

        is_finished = bool(status & ROUND_FINISHED)
        player1_payout = 0
        player2_payout = 0
        if is_finished and pos + PAYOUTS_SIZE <= len(data):
            player1_payout = amount_from_bytes(data[pos : pos + AMOUNT_SIZE])
            player2_payout = amount_from_bytes(data[pos + AMOUNT_SIZE : pos + PAYOUTS_SIZE])
            pos += PAYOUTS_SIZE

        rounds.append(
            RoundModel(
                player1_move=_decode_move(status & 0x03, P1_COOPERATE, P1_DEFECT),
                player2_move=_decode_move(status & 0x0C, P2_COOPERATE, P2_DEFECT),
                player1_payout=player1_payout,
                player2_payout=player2_payout,
                is_finished=is_finished,
            )
        )

    flags = data[pos] if pos < len(data) else 0

    return CellModel(
        player1=player1,
        player2=player2,
        stake_amount=stake_amount,
        total_rounds=total_rounds,
        current_round=current_round,
        is_complete=is_complete,
        rounds=rounds,
        continuation=decode_continuation(flags),
    )
