import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, status

from ledgerflow.api.deps import DbDep, LedgerDep
from ledgerflow.api.schemas.transactions import (
    ReverseRequest,
    TransactionAmend,
    TransactionCreate,
    TransactionList,
    TransactionResponse,
)
from ledgerflow.config import settings
from ledgerflow.db.session import unit_of_work
from ledgerflow.domain.models.transaction import TransactionDraft, TransactionFilter

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(body: TransactionCreate, db: DbDep, ledger: LedgerDep) -> TransactionResponse:
    data = body.model_dump()
    data["local_currency"] = body.local_currency or settings.default_local_currency
    async with unit_of_work(db):
        tx = await ledger.record(TransactionDraft(**data))
    return TransactionResponse.model_validate(tx)


@router.get("", response_model=TransactionList)
async def list_transactions(
    ledger: LedgerDep,
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    types: Optional[list[str]] = Query(None, alias="type"),
    assets: Optional[list[str]] = Query(None, alias="asset"),
    accounts: Optional[list[str]] = Query(None, alias="account"),
    tags: Optional[list[str]] = Query(None, alias="tag"),
    counterparty: Optional[str] = Query(None),
    position_id: Optional[uuid.UUID] = Query(None),
    include_deleted: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> TransactionList:
    flt = TransactionFilter(
        start_date=start_date,
        end_date=end_date,
        types=types,
        assets=assets,
        accounts=accounts,
        tags=tags,
        counterparty=counterparty,
        position_id=position_id,
        include_deleted=include_deleted,
        limit=limit,
        offset=offset,
    )
    txs, total = await ledger.list_page(flt)
    return TransactionList(
        transactions=[TransactionResponse.model_validate(tx) for tx in txs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{tx_id}", response_model=TransactionResponse)
async def get_transaction(tx_id: uuid.UUID, ledger: LedgerDep) -> TransactionResponse:
    return TransactionResponse.model_validate(await ledger.get(tx_id))


@router.patch("/{tx_id}", response_model=TransactionResponse)
async def amend_transaction(
    tx_id: uuid.UUID, body: TransactionAmend, db: DbDep, ledger: LedgerDep
) -> TransactionResponse:
    """Re-derives the entry from its merged inputs."""
    async with unit_of_work(db):
        tx = await ledger.amend(tx_id, body.model_dump(exclude_none=True))
    return TransactionResponse.model_validate(tx)


@router.delete("/{tx_id}", response_model=TransactionResponse)
async def delete_transaction(tx_id: uuid.UUID, db: DbDep, ledger: LedgerDep) -> TransactionResponse:
    """Soft delete. Deleting a withdrawal reopens the position it closed."""
    async with unit_of_work(db):
        deleted = await ledger.delete(tx_id)
    return TransactionResponse.model_validate(deleted)


@router.delete("/{tx_id}/group")
async def delete_transaction_group(tx_id: uuid.UUID, db: DbDep, ledger: LedgerDep) -> dict:
    """Soft-delete every entry emitted by the same action."""
    async with unit_of_work(db):
        count = await ledger.delete_action_group(tx_id)
    return {"deleted": count}


@router.post("/{tx_id}/reverse", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def reverse_transaction(
    tx_id: uuid.UUID, db: DbDep, ledger: LedgerDep, body: Optional[ReverseRequest] = None
) -> TransactionResponse:
    async with unit_of_work(db):
        reversal = await ledger.reverse(tx_id, body.date if body else None)
    return TransactionResponse.model_validate(reversal)
