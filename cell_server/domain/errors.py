"""Typed failures of cell operations.

Every failure a caller can trigger has its own class so the router can map it
onto an HTTP status without parsing messages.
"""


class CellError(Exception):
    detail: str = "Cell operation failed."

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.detail)
        if detail is not None:
            self.detail = detail


class CellNotFound(CellError):
    detail = "Cell not found."


class StakeTooLow(CellError):
    detail = "Stake too low."


class WrongStake(CellError):
    detail = "Wrong stake."


class AlreadyInCell(CellError):
    detail = "Already in cell."


class CellFull(CellError):
    detail = "Cell full."


class CellIsComplete(CellError):
    detail = "Cell complete."


class NeedPlayer2(CellError):
    detail = "Need player 2."


class NotInCell(CellError):
    detail = "Not in cell."


class NoRoundStarted(CellError):
    detail = "No round started."


class RoundNotReady(CellError):
    detail = "Round not ready - continuation decision needed."


class RoundAlreadyFinished(CellError):
    detail = "Round already finished."


class AlreadyMoved(CellError):
    detail = "Already moved."


class RoundNotFinished(CellError):
    detail = "Round still collecting moves."


class MaxRoundsReached(CellError):
    detail = "Max rounds reached."


class StakeTooHigh(CellError):
    detail = "Stake too high."
