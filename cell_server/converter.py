from typing import Tuple

from cell_server.models.dc_models import (
    CellModel,
    CellSummaryModel,
    ContinuationStatusModel,
    RoundResultModel,
)


class DataConverter:
    """This class is used to convert engine values into response models."""

    def convert_cell_to_summary(self, cell: CellModel) -> CellSummaryModel:
        """Convert the CellModel to the CellSummaryModel to send client

        Args:
            cell (CellModel): The decoded cell

        Returns:
            CellSummaryModel: Participants, stake and progress of the cell
        """
        return CellSummaryModel(
            player1=cell.player1,
            player2=cell.player2,
            stake_amount=cell.stake_amount,
            total_rounds=cell.total_rounds,
            current_round=cell.current_round,
            is_complete=cell.is_complete,
        )

    def convert_round_result(self, result: Tuple[int, int, int, int]) -> RoundResultModel:
        player1_move, player2_move, player1_payout, player2_payout = result
        return RoundResultModel(
            player1_move=player1_move,
            player2_move=player2_move,
            player1_payout=player1_payout,
            player2_payout=player2_payout,
        )

    def convert_continuation_status(self, status: Tuple[bool, bool, bool, bool]) -> ContinuationStatusModel:
        player1_decided, player1_wants, player2_decided, player2_wants = status
        return ContinuationStatusModel(
            player1_decided=player1_decided,
            player1_wants=player1_wants,
            player2_decided=player2_decided,
            player2_wants=player2_wants,
        )
