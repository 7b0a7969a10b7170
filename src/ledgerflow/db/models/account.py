from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ledgerflow.db.session import Base, TimestampMixin, UUIDPrimaryKey
from ledgerflow.domain.enums import AccountKind


class Account(UUIDPrimaryKey, TimestampMixin, Base):
    """A named container transactions are booked against (bank, card, exchange, ...)."""

    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(String(100), unique=True)
    kind: Mapped[str] = mapped_column(String(20), default=AccountKind.OTHER.value)
    currency: Mapped[Optional[str]] = mapped_column(String(10), default=None)
    label: Mapped[Optional[str]] = mapped_column(String(255), default=None)

    @property
    def is_credit_card(self) -> bool:
        return self.kind == AccountKind.CREDIT_CARD.value
