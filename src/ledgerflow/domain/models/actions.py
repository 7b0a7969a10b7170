"""Action protocol: one request in, the ledger entries it produced out."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ledgerflow.domain.models.transaction import LedgerEntry


class ActionRequest(BaseModel):
    action: str
    params: dict[str, Any] = Field(default_factory=dict)


class ActionResponse(BaseModel):
    action: str
    transactions: list[LedgerEntry] = []
    position_id: str | None = None
    executed_at: datetime
