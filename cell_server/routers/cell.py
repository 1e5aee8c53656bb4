import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from cell_server.converter import DataConverter
from cell_server.domain.cell_rules import normalize_address
from cell_server.domain.errors import (
    CellError,
    CellNotFound,
    NotInCell,
    StakeTooHigh,
    StakeTooLow,
    WrongStake,
)
from cell_server.models.dc_models import (
    CellIdModel,
    CellSummaryModel,
    ContinuationDecisionModel,
    ContinuationStatusModel,
    CreateCellModel,
    EngineConfigModel,
    JoinCellModel,
    RoundCountModel,
    RoundResultModel,
    SubmitMoveModel,
)
from cell_server.redis_subscriber import RedisSubscriber
from cell_server.services.cell_engine import CellEngine

cell_router = APIRouter()
data_converter = DataConverter()

ERROR_STATUS = {
    CellNotFound: status.HTTP_404_NOT_FOUND,
    StakeTooLow: status.HTTP_400_BAD_REQUEST,
    StakeTooHigh: status.HTTP_400_BAD_REQUEST,
    WrongStake: status.HTTP_400_BAD_REQUEST,
    NotInCell: status.HTTP_403_FORBIDDEN,
}


def get_cell_engine(request: Request) -> CellEngine:
    return request.app.state.cell_engine


def get_caller(x_caller_address: str = Header()) -> str:
    """Identity of the caller. Authentication happens in front of this service."""
    try:
        return normalize_address(x_caller_address)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def to_http_error(error: CellError) -> HTTPException:
    status_code = ERROR_STATUS.get(type(error), status.HTTP_409_CONFLICT)
    logging.info(f"{type(error).__name__}: {error.detail}")
    return HTTPException(status_code=status_code, detail=error.detail)


def checked_address(address: str) -> str:
    try:
        return normalize_address(address)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


class CellServer:
    @staticmethod
    @cell_router.post("/cells", response_model=CellIdModel)
    async def create_cell(
        request_data: CreateCellModel,
        caller: str = Depends(get_caller),
        cell_engine: CellEngine = Depends(get_cell_engine),
    ) -> CellIdModel:
        """Create a cell staked with value_sent

        Args:
            request_data (CreateCellModel): value_sent is the stake
            caller (str): The creator

        Returns:
            CellIdModel: The new cell id
        """
        try:
            cell_id = await cell_engine.create_cell(caller, request_data.value_sent)
        except CellError as e:
            raise to_http_error(e)
        return CellIdModel(cell_id=cell_id)

    @staticmethod
    @cell_router.post("/cells/{cell_id}/join")
    async def join_cell(
        cell_id: int,
        request_data: JoinCellModel,
        caller: str = Depends(get_caller),
        cell_engine: CellEngine = Depends(get_cell_engine),
    ) -> None:
        try:
            await cell_engine.join_cell(cell_id, caller, request_data.value_sent)
        except CellError as e:
            raise to_http_error(e)

    @staticmethod
    @cell_router.post("/cells/{cell_id}/move")
    async def submit_move(
        cell_id: int,
        request_data: SubmitMoveModel,
        caller: str = Depends(get_caller),
        cell_engine: CellEngine = Depends(get_cell_engine),
    ) -> None:
        """Submit a move: 0 cooperates, any other byte defects"""
        try:
            await cell_engine.submit_move(cell_id, caller, request_data.move)
        except CellError as e:
            raise to_http_error(e)

    @staticmethod
    @cell_router.post("/cells/{cell_id}/continuation")
    async def submit_continuation_decision(
        cell_id: int,
        request_data: ContinuationDecisionModel,
        caller: str = Depends(get_caller),
        cell_engine: CellEngine = Depends(get_cell_engine),
    ) -> None:
        try:
            await cell_engine.submit_continuation_decision(cell_id, caller, request_data.wants_continue)
        except CellError as e:
            raise to_http_error(e)


class CellQueryAPI:
    @staticmethod
    @cell_router.get("/cells/{cell_id}", response_model=CellSummaryModel)
    async def get_cell(cell_id: int, cell_engine: CellEngine = Depends(get_cell_engine)):
        cell = await cell_engine.read_cell(cell_id)
        return data_converter.convert_cell_to_summary(cell)

    @staticmethod
    @cell_router.get("/cells/{cell_id}/rounds/{round_number}", response_model=RoundResultModel)
    async def get_round_result(
        cell_id: int, round_number: int, cell_engine: CellEngine = Depends(get_cell_engine)
    ):
        result = await cell_engine.get_round_result(cell_id, round_number)
        return data_converter.convert_round_result(result)

    @staticmethod
    @cell_router.get("/cells/{cell_id}/continuation", response_model=ContinuationStatusModel)
    async def get_continuation_status(cell_id: int, cell_engine: CellEngine = Depends(get_cell_engine)):
        status_data = await cell_engine.get_continuation_status(cell_id)
        return data_converter.convert_continuation_status(status_data)

    @staticmethod
    @cell_router.get("/cells/{cell_id}/round-count", response_model=RoundCountModel)
    async def get_round_count(cell_id: int, cell_engine: CellEngine = Depends(get_cell_engine)):
        return RoundCountModel(round_count=await cell_engine.get_round_count(cell_id))

    @staticmethod
    @cell_router.get("/players/{address}/cell", response_model=CellIdModel)
    async def get_player_cell(address: str, cell_engine: CellEngine = Depends(get_cell_engine)):
        cell_id = await cell_engine.get_player_cell(checked_address(address))
        return CellIdModel(cell_id=cell_id)

    @staticmethod
    @cell_router.get("/pairs/{address_a}/{address_b}/cell", response_model=CellIdModel)
    async def get_players_cell(
        address_a: str, address_b: str, cell_engine: CellEngine = Depends(get_cell_engine)
    ):
        cell_id = await cell_engine.get_players_cell(checked_address(address_a), checked_address(address_b))
        return CellIdModel(cell_id=cell_id)

    @staticmethod
    @cell_router.get("/config", response_model=EngineConfigModel)
    async def get_config(cell_engine: CellEngine = Depends(get_cell_engine)):
        config = await cell_engine.get_config()
        return EngineConfigModel(
            min_stake=config.min_stake, owner=config.owner, cell_counter=config.cell_counter
        )

    @staticmethod
    @cell_router.get("/stream/{cell_id}")
    async def stream_cell(request: Request, cell_id: int, cell_engine: CellEngine = Depends(get_cell_engine)):
        redis_subscriber = RedisSubscriber(cell_engine, cell_id)

        return StreamingResponse(
            redis_subscriber.event_generator(request.app.state.redis),
            media_type="text/event-stream; charset=utf-8",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )
