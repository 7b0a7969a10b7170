"""Action protocol: named, parameterised money movements that emit ledger entries.

Each action validates its params before writing anything, may touch a
position through PositionLifecycle, and links every entry it produced to the
first one so the group can be deleted together.
"""

import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Optional

from ledgerflow.accounting.ledger import LedgerService, usd_entry
from ledgerflow.accounting.positions import PositionLifecycle
from ledgerflow.db.models.transaction import Transaction
from ledgerflow.domain.enums import Horizon, LinkType, TxType
from ledgerflow.domain.models.actions import ActionRequest, ActionResponse
from ledgerflow.domain.models.transaction import LedgerEntry, TransactionDraft
from ledgerflow.exceptions import NotFoundError, ValidationError
from ledgerflow.infra.price.service import PriceService

logger = logging.getLogger(__name__)

ONE = Decimal(1)
HUNDRED = Decimal(100)

# Assets booked in their own currency at price 1 instead of priced in USD
FIAT = {"USD", "VND", "EUR", "JPY", "KRW", "GBP", "SGD", "AUD"}


# -- param parsing ------------------------------------------------------------

def get_str(params: dict[str, Any], key: str) -> Optional[str]:
    value = params.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def get_decimal(params: dict[str, Any], key: str) -> Optional[Decimal]:
    value = params.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{key} must be a number, got {value!r}") from None


def get_date(params: dict[str, Any], key: str = "date") -> datetime:
    """YYYY-MM-DD or ISO 8601; missing means now. Stored naive in UTC."""
    value = params.get(key)
    if value is None or value == "":
        return datetime.now(UTC).replace(tzinfo=None)
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{key} must be YYYY-MM-DD or ISO 8601, got {value!r}") from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def get_bool(params: dict[str, Any], key: str) -> bool:
    value = params.get(key)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def require(params: dict[str, Any], *keys: str) -> None:
    missing = [key for key in keys if params.get(key) in (None, "")]
    if missing:
        raise ValidationError(f"missing required params: {', '.join(missing)}")


def _positive(value: Optional[Decimal], name: str) -> Decimal:
    if value is None or value <= 0:
        raise ValidationError(f"{name} must be greater than zero")
    return value


def _optional_fields(params: dict[str, Any], *keys: str) -> dict[str, Any]:
    return {key: get_str(params, key) for key in keys if get_str(params, key) is not None}


class ActionService:
    def __init__(
        self,
        ledger: LedgerService,
        positions: PositionLifecycle,
        prices: Optional[PriceService] = None,
    ) -> None:
        self._ledger = ledger
        self._positions = positions
        self._prices = prices
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[tuple[list[Transaction], Optional[uuid.UUID]]]]] = {
            "stake": self._stake,
            "unstake": self._unstake,
            "deposit": self._deposit,
            "withdraw": self._withdraw,
            "borrow": self._borrow,
            "repay_borrow": self._repay_borrow,
            "internal_transfer": self._internal_transfer,
            "init_balance": self._init_balance,
            "spend": self._spend,
            "credit_spend": self._credit_spend,
            "spot_buy": self._spot_buy,
        }

    @property
    def actions(self) -> list[str]:
        return sorted(self._handlers)

    async def perform(self, request: ActionRequest) -> ActionResponse:
        handler = self._handlers.get(request.action)
        if handler is None:
            raise ValidationError(f"unknown action: {request.action}")

        entries, position_id = await handler(request.params)
        await self._ledger.link_action(entries)
        logger.info("Performed %s: %d ledger entries", request.action, len(entries))
        return ActionResponse(
            action=request.action,
            transactions=[LedgerEntry.model_validate(tx, from_attributes=True) for tx in entries],
            position_id=str(position_id) if position_id else None,
            executed_at=datetime.now(UTC).replace(tzinfo=None),
        )

    # -- pricing helpers ------------------------------------------------------

    async def _usd_price(self, asset: str, date: datetime) -> Optional[Decimal]:
        if asset.upper() == "USD":
            return ONE
        if self._prices is None:
            return None
        return await self._prices.get_daily(asset, date)

    def _fiat_draft(self, *, date: datetime, tx_type: TxType, asset: str, account: str,
                    quantity: Decimal, **fields: Any) -> TransactionDraft:
        """Fiat entries are booked in their own currency; FX is resolved by the ledger."""
        return TransactionDraft(
            date=date,
            type=tx_type.value,
            asset=asset.upper(),
            account=account,
            quantity=quantity,
            price_local=ONE,
            local_currency=asset.upper(),
            **fields,
        )

    async def _entry(self, *, date: datetime, tx_type: TxType, asset: str, account: str,
                     quantity: Decimal, unit_price_usd: Optional[Decimal] = None,
                     **fields: Any) -> TransactionDraft:
        if asset.upper() in FIAT:
            return self._fiat_draft(date=date, tx_type=tx_type, asset=asset, account=account,
                                    quantity=quantity, **fields)
        if unit_price_usd is None:
            unit_price_usd = await self._usd_price(asset, date) or ONE
        return usd_entry(date=date, tx_type=tx_type, asset=asset, account=account,
                         quantity=quantity, unit_price_usd=unit_price_usd, **fields)

    def _horizon(self, params: dict[str, Any]) -> Optional[str]:
        horizon = get_str(params, "horizon")
        if horizon is not None and horizon not in {h.value for h in Horizon}:
            raise ValidationError(f"horizon must be one of: {', '.join(h.value for h in Horizon)}")
        return horizon

    async def _position_ref(self, params: dict[str, Any], asset: str, account: str) -> uuid.UUID | str:
        """Explicit position_id / vault_name / stake_deposit_tx_id, else the open position for (asset, account)."""
        ref = get_str(params, "position_id") or get_str(params, "vault_name")
        if ref is not None:
            return ref

        stake_tx = get_str(params, "stake_deposit_tx_id")
        if stake_tx is not None:
            try:
                deposit = await self._ledger.get(uuid.UUID(stake_tx))
            except ValueError:
                raise ValidationError(f"stake_deposit_tx_id is not a UUID: {stake_tx!r}") from None
            if deposit.position_id is None:
                raise ValidationError(f"transaction {stake_tx} is not a position deposit")
            return deposit.position_id

        position = await self._positions.repo.find_open(asset, account)
        if position is None:
            raise NotFoundError("open position", f"{asset} on {account}")
        return position.id

    # -- position actions -------------------------------------------------------

    async def _stake(self, p: dict[str, Any]):
        """transfer_out from source, stake into the investment position net of fee, fee on source."""
        require(p, "source_account", "investment_account", "asset", "amount")
        date = get_date(p)
        source = get_str(p, "source_account")
        invest = get_str(p, "investment_account")
        asset = get_str(p, "asset")
        amount = _positive(get_decimal(p, "amount"), "amount")
        fee_pct = get_decimal(p, "fee_percent") or Decimal(0)
        if fee_pct < 0 or fee_pct >= HUNDRED:
            raise ValidationError("fee_percent must be in [0, 100)")
        horizon = self._horizon(p)
        meta = _optional_fields(p, "counterparty", "tag", "note")

        entry_price = get_decimal(p, "entry_price_usd")
        if entry_price is None or entry_price <= 0:
            entry_price = await self._usd_price(asset, date) or ONE

        fee_qty = amount * fee_pct / HUNDRED
        net = amount - fee_qty

        out_tx = await self._ledger.record(usd_entry(
            date=date, tx_type=TxType.TRANSFER_OUT, asset=asset, account=source,
            quantity=amount, unit_price_usd=entry_price, internal_flow=True, horizon=horizon, **meta,
        ))
        deposit = await self._positions.deposit(
            asset=asset,
            account=invest,
            quantity=net,
            unit_cost=entry_price,
            date=date,
            position_ref=get_str(p, "position_id"),
            vault_name=get_str(p, "vault_name"),
            horizon=horizon,
            tx_type=TxType.STAKE,
            internal_flow=True,
            **meta,
        )
        entries = [out_tx, deposit.transaction]
        if fee_qty > 0:
            entries.append(await self._ledger.record(usd_entry(
                date=date, tx_type=TxType.FEE, asset=asset, account=source,
                quantity=fee_qty, unit_price_usd=entry_price, **meta,
            )))
        return entries, deposit.position.id

    async def _unstake(self, p: dict[str, Any]):
        """unstake from the position, then transfer_in to the destination at the exit price."""
        require(p, "investment_account", "destination_account", "asset")
        close_all = get_bool(p, "close_all")
        if not close_all:
            require(p, "amount")
        date = get_date(p)
        invest = get_str(p, "investment_account")
        dest = get_str(p, "destination_account")
        asset = get_str(p, "asset")
        amount = get_decimal(p, "amount")
        if not close_all:
            _positive(amount, "amount")
        note = _optional_fields(p, "note")

        ref = await self._position_ref(p, asset, invest)
        withdrawal = await self._positions.withdraw(
            ref,
            date=date,
            quantity=amount,
            close_all=close_all,
            exit_unit_price=get_decimal(p, "exit_price_usd"),
            exit_total_usd=get_decimal(p, "exit_total_usd"),
            tx_type=TxType.UNSTAKE,
            internal_flow=True,
            **note,
        )
        if withdrawal.transaction is None:
            return [], withdrawal.position.id
        in_tx = await self._ledger.record(usd_entry(
            date=date, tx_type=TxType.TRANSFER_IN, asset=asset, account=dest,
            quantity=withdrawal.quantity, unit_price_usd=withdrawal.unit_price,
            internal_flow=True, exit_date=date, **note,
        ))
        return [withdrawal.transaction, in_tx], withdrawal.position.id

    async def _deposit(self, p: dict[str, Any]):
        require(p, "account", "asset", "amount")
        date = get_date(p)
        asset = get_str(p, "asset")
        unit_cost = get_decimal(p, "price_usd")
        if unit_cost is None or unit_cost <= 0:
            unit_cost = await self._usd_price(asset, date) or ONE
        deposit = await self._positions.deposit(
            asset=asset,
            account=get_str(p, "account"),
            quantity=_positive(get_decimal(p, "amount"), "amount"),
            unit_cost=unit_cost,
            date=date,
            position_ref=get_str(p, "position_id"),
            vault_name=get_str(p, "vault_name"),
            horizon=self._horizon(p),
            tx_type=TxType.DEPOSIT,
            **_optional_fields(p, "counterparty", "tag", "note"),
        )
        return [deposit.transaction], deposit.position.id

    async def _withdraw(self, p: dict[str, Any]):
        require(p, "account", "asset")
        close_all = get_bool(p, "close_all")
        if not close_all:
            require(p, "amount")
        asset = get_str(p, "asset")
        ref = await self._position_ref(p, asset, get_str(p, "account"))
        withdrawal = await self._positions.withdraw(
            ref,
            date=get_date(p),
            quantity=get_decimal(p, "amount"),
            close_all=close_all,
            exit_unit_price=get_decimal(p, "exit_price_usd"),
            exit_total_usd=get_decimal(p, "exit_total_usd"),
            tx_type=TxType.WITHDRAW,
            **_optional_fields(p, "counterparty", "tag", "note"),
        )
        entries = [withdrawal.transaction] if withdrawal.transaction is not None else []
        return entries, withdrawal.position.id

    # -- borrowing ----------------------------------------------------------------

    async def _borrow(self, p: dict[str, Any]):
        require(p, "account", "asset", "amount")
        date = get_date(p)
        apr = get_decimal(p, "borrow_apr")
        if apr is not None and apr < 0:
            raise ValidationError("borrow_apr must not be negative")
        term = get_decimal(p, "borrow_term_days")
        if term is not None and term < 0:
            raise ValidationError("borrow_term_days must not be negative")
        draft = await self._entry(
            date=date,
            tx_type=TxType.BORROW,
            asset=get_str(p, "asset"),
            account=get_str(p, "account"),
            quantity=_positive(get_decimal(p, "amount"), "amount"),
            borrow_apr=apr,
            borrow_term_days=int(term) if term is not None else None,
            borrow_active=True,
            **_optional_fields(p, "counterparty", "tag", "note"),
        )
        return [await self._ledger.record(draft)], None

    async def _repay_borrow(self, p: dict[str, Any]):
        require(p, "account", "asset", "amount")
        draft = await self._entry(
            date=get_date(p),
            tx_type=TxType.REPAY_BORROW,
            asset=get_str(p, "asset"),
            account=get_str(p, "account"),
            quantity=_positive(get_decimal(p, "amount"), "amount"),
            **_optional_fields(p, "counterparty", "tag", "note"),
        )

        borrow: Optional[Transaction] = None
        borrow_id = get_str(p, "borrow_id")
        if borrow_id is not None:
            try:
                borrow = await self._ledger.get(uuid.UUID(borrow_id))
            except ValueError:
                raise ValidationError(f"borrow_id is not a UUID: {borrow_id!r}") from None
            if borrow.type != TxType.BORROW.value:
                raise ValidationError(f"transaction {borrow_id} is not a borrow")

        tx = await self._ledger.record(draft)
        if borrow is not None:
            await self._positions.repo.create_link(borrow.id, tx.id, link_type=LinkType.BORROW_REPAY)
        return [tx], None

    # -- plain transfers and balances -----------------------------------------------

    async def _internal_transfer(self, p: dict[str, Any]):
        require(p, "source_account", "destination_account", "asset", "amount")
        source = get_str(p, "source_account")
        dest = get_str(p, "destination_account")
        if source == dest:
            raise ValidationError("source_account and destination_account must differ")
        date = get_date(p)
        asset = get_str(p, "asset")
        amount = _positive(get_decimal(p, "amount"), "amount")
        meta = _optional_fields(p, "counterparty", "note")
        price = await self._usd_price(asset, date) if asset.upper() not in FIAT else None

        out_draft = await self._entry(date=date, tx_type=TxType.TRANSFER_OUT, asset=asset, account=source,
                                      quantity=amount, unit_price_usd=price, internal_flow=True, **meta)
        in_draft = await self._entry(date=date, tx_type=TxType.TRANSFER_IN, asset=asset, account=dest,
                                     quantity=amount, unit_price_usd=price, internal_flow=True, **meta)
        return [await self._ledger.record(out_draft), await self._ledger.record(in_draft)], None

    async def _init_balance(self, p: dict[str, Any]):
        """Opening balance as a deposit. Non-fiat assets need a price_local or a fetchable price."""
        require(p, "account", "asset", "quantity")
        date = get_date(p)
        asset = get_str(p, "asset")
        quantity = _positive(get_decimal(p, "quantity"), "quantity")
        price_local = get_decimal(p, "price_local")
        fx_usd = get_decimal(p, "fx_to_usd")
        fx_vnd = get_decimal(p, "fx_to_vnd")
        meta = _optional_fields(p, "tag", "note")
        currency = get_str(p, "local_currency")

        if asset.upper() in FIAT:
            draft = self._fiat_draft(date=date, tx_type=TxType.DEPOSIT, asset=asset, account=get_str(p, "account"),
                                     quantity=quantity, fx_to_usd=fx_usd, fx_to_vnd=fx_vnd, **meta)
            if price_local is not None and price_local > 0:
                draft = draft.model_copy(update={"price_local": price_local})
        else:
            if price_local is None:
                price_local = await self._usd_price(asset, date)
                if price_local is None:
                    raise ValidationError(f"no price for {asset} on {date.date()}; pass price_local")
                currency, fx_usd = "USD", fx_usd or ONE
            draft = TransactionDraft(
                date=date,
                type=TxType.DEPOSIT.value,
                asset=asset,
                account=get_str(p, "account"),
                quantity=quantity,
                price_local=price_local,
                local_currency=currency or "USD",
                fx_to_usd=fx_usd,
                fx_to_vnd=fx_vnd,
                **meta,
            )
        return [await self._ledger.record(draft)], None

    async def _spend(self, p: dict[str, Any]):
        return await self._expense(p)

    async def _credit_spend(self, p: dict[str, Any]):
        # Cash flow stays zero through the credit-card account kind, not a flag
        return await self._expense(p)

    async def _expense(self, p: dict[str, Any]):
        require(p, "account")
        amount = get_decimal(p, "amount")
        if amount is None:
            amount = get_decimal(p, "vnd_amount")
        currency = get_str(p, "currency") or "VND"
        draft = self._fiat_draft(
            date=get_date(p),
            tx_type=TxType.EXPENSE,
            asset=currency,
            account=get_str(p, "account"),
            quantity=_positive(amount, "amount"),
            **_optional_fields(p, "counterparty", "tag", "note"),
        )
        return [await self._ledger.record(draft)], None

    async def _spot_buy(self, p: dict[str, Any]):
        """Buy base with quote on one exchange account, plus optional fee entries."""
        require(p, "exchange_account", "base_asset", "quote_asset", "quantity")
        date = get_date(p)
        account = get_str(p, "exchange_account")
        base = get_str(p, "base_asset")
        quote = get_str(p, "quote_asset")
        qty = _positive(get_decimal(p, "quantity"), "quantity")
        meta = _optional_fields(p, "counterparty", "tag", "note")

        quote_usd = await self._usd_price(quote, date)
        if quote_usd is None:
            raise ValidationError(f"no USD price for {quote} on {date.date()}")

        price = get_decimal(p, "price_quote")
        if price is None or price <= 0:
            base_usd = await self._usd_price(base, date)
            if base_usd is None:
                raise ValidationError(f"no price for {base}/{quote} on {date.date()}; pass price_quote")
            price = base_usd / quote_usd

        spent = qty * price
        entries = [
            await self._ledger.record(usd_entry(date=date, tx_type=TxType.BUY, asset=base, account=account,
                                                quantity=qty, unit_price_usd=price * quote_usd, **meta)),
        ]

        fee_quote = get_decimal(p, "fee_quote")
        fee_pct = get_decimal(p, "fee_percent")
        if fee_quote is None and fee_pct is not None:
            fee_quote = spent * fee_pct / HUNDRED
        fee_base = get_decimal(p, "fee_base")
        if fee_base is not None and fee_base > 0:
            entries.append(await self._ledger.record(usd_entry(
                date=date, tx_type=TxType.FEE, asset=base, account=account,
                quantity=fee_base, unit_price_usd=price * quote_usd, **meta,
            )))
        if fee_quote is not None and fee_quote > 0:
            entries.append(await self._ledger.record(usd_entry(
                date=date, tx_type=TxType.FEE, asset=quote, account=account,
                quantity=fee_quote, unit_price_usd=quote_usd, **meta,
            )))

        entries.append(await self._ledger.record(usd_entry(
            date=date, tx_type=TxType.SELL, asset=quote, account=account,
            quantity=spent, unit_price_usd=quote_usd, **meta,
        )))
        return entries, None
