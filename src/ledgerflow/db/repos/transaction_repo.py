import uuid
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ledgerflow.db.models.transaction import Transaction
from ledgerflow.domain.models.transaction import DerivedTransaction, TransactionFilter
from ledgerflow.exceptions import NotFoundError, ValidationError

# Columns negated on a reversal entry so every sum over the ledger nets to zero
_REVERSED_COLUMNS = ("delta_qty", "cashflow_local", "cashflow_usd", "cashflow_vnd")


class TransactionRepo:
    """Append-only ledger store.

    Rows are never removed here: delete means soft-delete, and corrections
    are reversal entries. The only hard delete is the vault cascade.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, derived: DerivedTransaction) -> Transaction:
        tx = Transaction(**derived.model_dump())
        self._session.add(tx)
        await self._session.flush()
        return tx

    async def get_by_id(self, tx_id: uuid.UUID, include_deleted: bool = False) -> Optional[Transaction]:
        query = select(Transaction).where(Transaction.id == tx_id)
        if not include_deleted:
            query = query.where(Transaction.deleted_at.is_(None))
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def require(self, tx_id: uuid.UUID) -> Transaction:
        tx = await self.get_by_id(tx_id)
        if tx is None:
            raise NotFoundError("transaction", tx_id)
        return tx

    def _apply_filter(self, query, flt: TransactionFilter):
        if not flt.include_deleted:
            query = query.where(Transaction.deleted_at.is_(None))
        if flt.start_date is not None:
            query = query.where(Transaction.date >= flt.start_date)
        if flt.end_date is not None:
            query = query.where(Transaction.date <= flt.end_date)
        if flt.types:
            query = query.where(Transaction.type.in_(flt.types))
        if flt.assets:
            query = query.where(Transaction.asset.in_(flt.assets))
        if flt.accounts:
            query = query.where(Transaction.account.in_(flt.accounts))
        if flt.tags:
            query = query.where(Transaction.tag.in_(flt.tags))
        if flt.counterparty:
            query = query.where(Transaction.counterparty == flt.counterparty)
        if flt.position_id is not None:
            query = query.where(Transaction.position_id == flt.position_id)
        return query

    async def list_page(self, flt: Optional[TransactionFilter] = None) -> tuple[list[Transaction], int]:
        flt = flt or TransactionFilter()
        base = self._apply_filter(select(Transaction), flt)
        count_q = self._apply_filter(select(func.count()).select_from(Transaction), flt)

        total_result = await self._session.execute(count_q)
        total = total_result.scalar_one()

        query = base.order_by(Transaction.date.desc(), Transaction.created_at.desc())
        if flt.limit is not None:
            query = query.limit(flt.limit)
        if flt.offset:
            query = query.offset(flt.offset)
        result = await self._session.execute(query)
        return list(result.scalars().all()), total

    async def list_all(self, flt: TransactionFilter) -> list[Transaction]:
        """Unpaged scan in ascending date order, for reports."""
        query = self._apply_filter(select(Transaction), flt).order_by(Transaction.date, Transaction.created_at)
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def apply_derived(self, tx: Transaction, derived: DerivedTransaction) -> Transaction:
        for field, value in derived.model_dump().items():
            setattr(tx, field, value)
        await self._session.flush()
        return tx

    async def set_exit_date(self, tx_id: uuid.UUID, exit_date: Optional[datetime]) -> Transaction:
        tx = await self.require(tx_id)
        tx.exit_date = exit_date
        await self._session.flush()
        return tx

    async def soft_delete(self, tx_id: uuid.UUID, when: Optional[datetime] = None) -> Transaction:
        tx = await self.require(tx_id)
        tx.deleted_at = when or datetime.now(UTC).replace(tzinfo=None)
        await self._session.flush()
        return tx

    async def create_reversal(self, tx_id: uuid.UUID, date: Optional[datetime] = None) -> Transaction:
        """Append an entry that cancels tx_id in every balance and cash-flow sum."""
        original = await self.require(tx_id)
        if original.reverses_id is not None:
            raise ValidationError("a reversal entry cannot itself be reversed")
        existing = await self._session.execute(
            select(Transaction.id).where(
                Transaction.reverses_id == tx_id, Transaction.deleted_at.is_(None)
            )
        )
        if existing.first() is not None:
            raise ValidationError(f"transaction {tx_id} is already reversed")

        data = DerivedTransaction.model_validate(original, from_attributes=True).model_dump()
        for column in _REVERSED_COLUMNS:
            data[column] = -data[column]
        data.update(
            date=date or original.date,
            reverses_id=original.id,
            exit_date=None,
            note=f"Reversal of {original.id}",
        )
        reversal = Transaction(**data)
        self._session.add(reversal)
        await self._session.flush()
        return reversal

    async def list_by_fx_source(
        self,
        fx_source: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Transaction]:
        """Live, unreversed, non-reversal entries whose rates came from fx_source."""
        reversal = aliased(Transaction)
        query = select(Transaction).where(
            Transaction.fx_source == fx_source,
            Transaction.deleted_at.is_(None),
            Transaction.reverses_id.is_(None),
            ~exists().where(reversal.reverses_id == Transaction.id, reversal.deleted_at.is_(None)),
        )
        if start is not None:
            query = query.where(Transaction.date >= start)
        if end is not None:
            query = query.where(Transaction.date <= end)
        result = await self._session.execute(query.order_by(Transaction.date, Transaction.created_at))
        return list(result.scalars().all())

    async def distinct_assets(self) -> list[str]:
        result = await self._session.execute(
            select(Transaction.asset).where(Transaction.deleted_at.is_(None)).distinct().order_by(Transaction.asset)
        )
        return list(result.scalars().all())
