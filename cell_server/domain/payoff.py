"""Per-round payoff rule.

| move1     | move2     | payout1           | payout2           |
|-----------|-----------|-------------------|-------------------|
| cooperate | cooperate | stake             | stake             |
| defect    | defect    | stake // 2        | stake // 2        |
| cooperate | defect    | stake // 2        | stake + stake // 2|
| defect    | cooperate | stake + stake // 2| stake // 2        |

Payout sums are not conserved: mutual defection pays less than the pot and
mixed outcomes pay more.
"""

from cell_server.models.dc_models import Move


def payoff(move1: Move, move2: Move, stake: int) -> tuple[int, int]:
    """Compute the payouts of one finished round

    Args:
        move1 (Move): Player 1 move
        move2 (Move): Player 2 move
        stake (int): Per-participant stake of the cell

    Returns:
        tuple[int, int]: Player 1 payout and player 2 payout
    """
    half = stake // 2
    if move1 == Move.cooperate and move2 == Move.cooperate:
        return stake, stake
    if move1 == Move.defect and move2 == Move.defect:
        return half, half
    if move1 == Move.cooperate:
        return half, stake + half
    return stake + half, half
