from typing import Optional

from fastapi import APIRouter, Query, status

from ledgerflow.api.deps import DbDep, PositionsDep
from ledgerflow.api.schemas.positions import ClosePositionRequest, PositionList, PositionResponse
from ledgerflow.db.session import unit_of_work
from ledgerflow.domain.models.position import PositionPnL

router = APIRouter(prefix="/api/positions", tags=["positions"])


@router.get("", response_model=PositionList)
async def list_positions(
    positions: PositionsDep,
    is_open: Optional[bool] = Query(None),
    asset: Optional[str] = Query(None),
) -> PositionList:
    rows = await positions.list_positions(is_open=is_open, asset=asset)
    return PositionList(
        positions=[PositionResponse.model_validate(p) for p in rows],
        total=len(rows),
    )


@router.get("/{ref}", response_model=PositionResponse)
async def get_position(ref: str, positions: PositionsDep) -> PositionResponse:
    """ref is a position ID or a vault name."""
    return PositionResponse.model_validate(await positions.get(ref))


@router.get("/{ref}/pnl", response_model=PositionPnL)
async def get_position_pnl(ref: str, positions: PositionsDep) -> PositionPnL:
    return await positions.pnl_detail(ref)


@router.post("/{ref}/close", response_model=PositionResponse)
async def close_position(
    ref: str, body: ClosePositionRequest, db: DbDep, positions: PositionsDep
) -> PositionResponse:
    async with unit_of_work(db):
        position = await positions.close(ref, body.date.replace(tzinfo=None))
    return PositionResponse.model_validate(position)


@router.delete("/{ref}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_position(ref: str, db: DbDep, positions: PositionsDep) -> None:
    """Hard delete, including every ledger entry the position emitted."""
    async with unit_of_work(db):
        await positions.delete_vault(ref)
