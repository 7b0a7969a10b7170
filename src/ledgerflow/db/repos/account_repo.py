from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerflow.db.models.account import Account
from ledgerflow.domain.enums import AccountKind


class AccountRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        name: str,
        kind: AccountKind = AccountKind.OTHER,
        currency: Optional[str] = None,
        label: Optional[str] = None,
    ) -> Account:
        account = Account(name=name, kind=kind.value, currency=currency, label=label)
        self._session.add(account)
        await self._session.flush()
        return account

    async def get_by_name(self, name: str) -> Optional[Account]:
        result = await self._session.execute(
            select(Account).where(Account.name == name)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[Account]:
        result = await self._session.execute(select(Account).order_by(Account.name))
        return list(result.scalars().all())

    async def kind_of(self, name: str) -> AccountKind:
        """Registered kind, else a guess from the name."""
        account = await self.get_by_name(name)
        if account is None:
            return AccountKind.infer(name)
        return AccountKind(account.kind)
