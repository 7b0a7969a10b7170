import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ledgerflow.db.models.closure_link import ClosureLink
from ledgerflow.db.models.position import Position
from ledgerflow.db.models.transaction import Transaction
from ledgerflow.domain.enums import LinkType
from ledgerflow.domain.models.position import LinkedWithdrawal
from ledgerflow.exceptions import NotFoundError


class PositionRepo:
    """Position store plus the closure links hanging off position deposits."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, position: Position) -> Position:
        self._session.add(position)
        await self._session.flush()
        return position

    async def get(self, position_id: uuid.UUID, for_update: bool = False) -> Optional[Position]:
        query = select(Position).where(Position.id == position_id)
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def require(self, position_id: uuid.UUID, for_update: bool = False) -> Position:
        position = await self.get(position_id, for_update=for_update)
        if position is None:
            raise NotFoundError("position", position_id)
        return position

    async def get_by_name(self, name: str, for_update: bool = False) -> Optional[Position]:
        query = select(Position).where(Position.vault_name == name)
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def find_open(
        self, asset: str, account: str, horizon: Optional[str] = None, for_update: bool = False
    ) -> Optional[Position]:
        query = select(Position).where(
            Position.asset == asset,
            Position.account == account,
            Position.is_open.is_(True),
            Position.is_vault.is_(False),
        )
        if horizon is not None:
            query = query.where(Position.horizon == horizon)
        query = query.order_by(Position.deposit_date).limit(1)
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def list_positions(self, is_open: Optional[bool] = None, asset: Optional[str] = None) -> list[Position]:
        query = select(Position)
        if is_open is not None:
            query = query.where(Position.is_open.is_(is_open))
        if asset:
            query = query.where(Position.asset == asset)
        result = await self._session.execute(query.order_by(Position.deposit_date))
        return list(result.scalars().all())

    async def update(self, position: Position) -> Position:
        await self._session.flush()
        return position

    async def delete(self, position_id: uuid.UUID) -> None:
        """Remove a position with its links and every transaction booked against it.

        Legs emitted by the same action as a position entry (transfer and fee
        legs of a stake, say) go too, unless they belong to another position.
        """
        own = set(
            (await self._session.execute(
                select(Transaction.id).where(Transaction.position_id == position_id)
            )).scalars().all()
        )
        members = set(own)
        if own:
            roots = own | set(
                (await self._session.execute(
                    select(ClosureLink.from_tx).where(
                        ClosureLink.link_type == LinkType.ACTION.value, ClosureLink.to_tx.in_(own)
                    )
                )).scalars().all()
            )
            grouped = set(
                (await self._session.execute(
                    select(ClosureLink.to_tx).where(
                        ClosureLink.link_type == LinkType.ACTION.value, ClosureLink.from_tx.in_(roots)
                    )
                )).scalars().all()
            )
            candidates = roots | grouped
            members |= set(
                (await self._session.execute(
                    select(Transaction.id).where(
                        Transaction.id.in_(candidates),
                        (Transaction.position_id.is_(None)) | (Transaction.position_id == position_id),
                    )
                )).scalars().all()
            )

        await self._session.execute(
            delete(ClosureLink).where(
                (ClosureLink.position_id == position_id)
                | ClosureLink.from_tx.in_(members)
                | ClosureLink.to_tx.in_(members)
            )
        )
        await self._session.execute(delete(Transaction).where(Transaction.reverses_id.in_(members)))
        await self._session.execute(delete(Transaction).where(Transaction.id.in_(members)))
        await self._session.execute(delete(Position).where(Position.id == position_id))
        await self._session.flush()

    async def create_link(
        self,
        from_tx: uuid.UUID,
        to_tx: uuid.UUID,
        link_type: LinkType = LinkType.STAKE_UNSTAKE,
        position_id: Optional[uuid.UUID] = None,
        exit_date: Optional[datetime] = None,
        withdrawal_qty: Decimal = Decimal(0),
        withdrawal_value: Decimal = Decimal(0),
        deposit_unit_cost: Decimal = Decimal(0),
    ) -> ClosureLink:
        link = ClosureLink(
            link_type=link_type.value,
            from_tx=from_tx,
            to_tx=to_tx,
            position_id=position_id,
            exit_date=exit_date,
            withdrawal_qty=withdrawal_qty,
            withdrawal_value=withdrawal_value,
            deposit_unit_cost=deposit_unit_cost,
        )
        self._session.add(link)
        await self._session.flush()
        return link

    async def list_links_by_deposit(self, deposit_tx_id: uuid.UUID) -> list[ClosureLink]:
        result = await self._session.execute(
            select(ClosureLink)
            .where(ClosureLink.from_tx == deposit_tx_id)
            .order_by(ClosureLink.created_at)
        )
        return list(result.scalars().all())

    async def list_links_by_withdrawal(self, withdrawal_tx_id: uuid.UUID) -> list[ClosureLink]:
        result = await self._session.execute(
            select(ClosureLink).where(ClosureLink.to_tx == withdrawal_tx_id)
        )
        return list(result.scalars().all())

    async def linked_withdrawals(
        self,
        position_id: Optional[uuid.UUID] = None,
        as_of: Optional[datetime] = None,
    ) -> list[LinkedWithdrawal]:
        """Stake/unstake links joined with both ledger entries.

        Links whose deposit or withdrawal entry was soft-deleted are skipped.
        """
        deposit = aliased(Transaction)
        withdrawal = aliased(Transaction)
        query = (
            select(ClosureLink, deposit, withdrawal, Position)
            .join(deposit, ClosureLink.from_tx == deposit.id)
            .join(withdrawal, ClosureLink.to_tx == withdrawal.id)
            .outerjoin(Position, ClosureLink.position_id == Position.id)
            .where(
                ClosureLink.link_type == LinkType.STAKE_UNSTAKE.value,
                deposit.deleted_at.is_(None),
                withdrawal.deleted_at.is_(None),
            )
        )
        if position_id is not None:
            query = query.where(ClosureLink.position_id == position_id)
        if as_of is not None:
            query = query.where(withdrawal.date <= as_of)
        result = await self._session.execute(query.order_by(withdrawal.date))

        rows: list[LinkedWithdrawal] = []
        for link, dep, wd, position in result.all():
            rows.append(LinkedWithdrawal(
                link_id=link.id,
                deposit_tx_id=dep.id,
                withdrawal_tx_id=wd.id,
                asset=dep.asset,
                account=dep.account,
                withdrawal_date=wd.date,
                withdrawal_qty=link.withdrawal_qty,
                withdrawal_value_usd=link.withdrawal_value,
                deposit_qty=position.deposit_qty if position is not None else dep.quantity,
                deposit_unit_cost=link.deposit_unit_cost,
                deposit_date=dep.date,
                deposit_exit_date=dep.exit_date,
            ))
        return rows
