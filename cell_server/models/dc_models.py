from pydantic import BaseModel, Field
from enum import IntEnum
from typing import Optional, List

from cell_server.domain.cell_rules import EMPTY_ADDRESS, MAX_STAKE


class Move(IntEnum):
    cooperate = 0
    defect = 1

    @classmethod
    def from_byte(cls, value: int) -> "Move":
        """Any non-zero byte is a defection."""
        return cls.cooperate if value == 0 else cls.defect


class RoundModel(BaseModel):
    player1_move: Optional[Move] = None
    player2_move: Optional[Move] = None
    player1_payout: int = 0  # only meaningful once is_finished
    player2_payout: int = 0
    is_finished: bool = False


class ContinuationVoteModel(BaseModel):
    # None: not decided yet, True/False: decided and wants (not) to continue
    player1: Optional[bool] = None
    player2: Optional[bool] = None


class CellModel(BaseModel):
    player1: str = EMPTY_ADDRESS
    player2: str = EMPTY_ADDRESS
    stake_amount: int = 0
    total_rounds: int = 0
    current_round: int = 0
    is_complete: bool = False
    rounds: List[RoundModel] = Field(default_factory=list)
    continuation: ContinuationVoteModel = Field(default_factory=ContinuationVoteModel)


class CreateCellModel(BaseModel):
    value_sent: int = Field(ge=0, le=MAX_STAKE)


class JoinCellModel(BaseModel):
    value_sent: int = Field(ge=0, le=MAX_STAKE)


class SubmitMoveModel(BaseModel):
    move: int = Field(ge=0, le=255)


class ContinuationDecisionModel(BaseModel):
    wants_continue: bool


class CellIdModel(BaseModel):
    cell_id: int


class CellSummaryModel(BaseModel):
    player1: str
    player2: str
    stake_amount: int
    total_rounds: int
    current_round: int
    is_complete: bool


class RoundResultModel(BaseModel):
    player1_move: int
    player2_move: int
    player1_payout: int
    player2_payout: int


class ContinuationStatusModel(BaseModel):
    player1_decided: bool
    player1_wants: bool
    player2_decided: bool
    player2_wants: bool


class RoundCountModel(BaseModel):
    round_count: int


class EngineConfigModel(BaseModel):
    min_stake: int
    owner: str
    cell_counter: int
