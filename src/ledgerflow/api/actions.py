from fastapi import APIRouter

from ledgerflow.api.deps import ActionsDep, DbDep
from ledgerflow.db.session import unit_of_work
from ledgerflow.domain.models.actions import ActionRequest, ActionResponse

router = APIRouter(prefix="/api/actions", tags=["actions"])


@router.get("")
async def list_actions(actions: ActionsDep) -> dict:
    return {"actions": actions.actions}


@router.post("", response_model=ActionResponse)
async def perform_action(body: ActionRequest, db: DbDep, actions: ActionsDep) -> ActionResponse:
    """Run one action; every entry it emits commits together or not at all."""
    async with unit_of_work(db):
        return await actions.perform(body)
