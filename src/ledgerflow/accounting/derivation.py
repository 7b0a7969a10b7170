"""Transaction derivation: pure functions, no DB or network.

Turns a TransactionDraft (prices and FX already resolved by the caller) into a
DerivedTransaction with signed quantity and cash-flow deltas in three currencies.
"""

from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any, Optional

from ledgerflow.domain.enums import AccountKind, Currency, Horizon, TxType
from ledgerflow.domain.enums.currency import CURRENCY_PRECISION, DEFAULT_PRECISION
from ledgerflow.domain.enums.transaction_type import (
    ASSET_DECREASING,
    ASSET_INCREASING,
    CASH_INFLOW,
    CASH_OUTFLOW,
)
from ledgerflow.domain.models.transaction import DerivedTransaction, TransactionDraft
from ledgerflow.exceptions import ValidationError

ZERO = Decimal(0)

# Input fields an amend may change; everything else is recomputed
AMENDABLE_FIELDS = frozenset({
    "date", "type", "asset", "account", "quantity", "price_local", "local_currency",
    "fx_to_usd", "fx_to_vnd", "fee_local", "fee_usd", "fee_vnd",
    "counterparty", "tag", "note", "position_id", "horizon", "entry_date", "exit_date",
    "internal_flow", "fx_source", "fx_timestamp",
    "borrow_apr", "borrow_term_days", "borrow_active",
})


def round_amount(value: Decimal, currency: str) -> Decimal:
    """Round to the currency's precision with banker's rounding (2dp, 0dp for VND-like)."""
    quantum = CURRENCY_PRECISION.get(currency.upper(), DEFAULT_PRECISION)
    return value.quantize(quantum, rounding=ROUND_HALF_EVEN)


def parse_type(raw: str) -> TxType:
    try:
        return TxType(raw.strip().lower())
    except ValueError:
        raise ValidationError(f"unknown transaction type: {raw!r}") from None


def delta_sign(tx_type: TxType) -> int:
    if tx_type in ASSET_INCREASING:
        return 1
    if tx_type in ASSET_DECREASING:
        return -1
    return 0


def is_zero_cash(tx_type: TxType, account_kind: AccountKind, internal_flow: bool) -> bool:
    """Internal moves never touch external cash; credit-card spend accrues a liability instead."""
    if internal_flow:
        return True
    return tx_type == TxType.EXPENSE and account_kind == AccountKind.CREDIT_CARD


def cash_flow(tx_type: TxType, amount: Decimal, fee: Decimal) -> Decimal:
    if tx_type in CASH_OUTFLOW:
        return -(amount + fee)
    if tx_type in CASH_INFLOW:
        return amount - fee
    return -fee


def _resolve_fx(draft: TransactionDraft, currency: str) -> tuple[Decimal, Decimal]:
    fx_usd = draft.fx_to_usd
    if fx_usd is None:
        if currency != Currency.USD:
            raise ValidationError(f"fx_to_usd is required for {currency} entries")
        fx_usd = Decimal(1)

    fx_vnd = draft.fx_to_vnd
    if fx_vnd is None:
        if currency != Currency.VND:
            raise ValidationError(f"fx_to_vnd is required for {currency} entries")
        fx_vnd = Decimal(1)

    if fx_usd <= 0 or fx_vnd <= 0:
        raise ValidationError("FX rates must be positive")
    return fx_usd, fx_vnd


def _validate(draft: TransactionDraft) -> None:
    if not draft.asset or not draft.asset.strip():
        raise ValidationError("asset is required")
    if not draft.account or not draft.account.strip():
        raise ValidationError("account is required")
    if draft.quantity < 0:
        raise ValidationError("quantity must not be negative")
    if draft.quantity == 0:
        raise ValidationError("quantity must be greater than zero")
    if draft.price_local < 0:
        raise ValidationError("price_local must not be negative")
    if draft.fee_local < 0 or (draft.fee_usd is not None and draft.fee_usd < 0) or (
        draft.fee_vnd is not None and draft.fee_vnd < 0
    ):
        raise ValidationError("fees must not be negative")
    if draft.horizon is not None and draft.horizon not in {h.value for h in Horizon}:
        raise ValidationError(f"invalid horizon: {draft.horizon!r}")


def derive(draft: TransactionDraft, account_kind: Optional[AccountKind] = None) -> DerivedTransaction:
    """Compute every derived column of a ledger entry.

    Deterministic: the same draft and account kind always produce the same
    result. account_kind falls back to AccountKind.infer(draft.account).

    Raises:
        ValidationError: unknown type, negative or zero quantity, negative
            price or fee, missing FX for a non-USD entry, bad horizon.
    """
    tx_type = parse_type(draft.type)
    _validate(draft)

    currency = (draft.local_currency or "USD").upper()
    fx_usd, fx_vnd = _resolve_fx(draft, currency)
    kind = account_kind if account_kind is not None else AccountKind.infer(draft.account)

    amount_local = draft.quantity * draft.price_local
    amount_usd = round_amount(amount_local * fx_usd, Currency.USD)
    amount_vnd = round_amount(amount_local * fx_vnd, Currency.VND)

    fee_local = draft.fee_local
    fee_usd = draft.fee_usd if draft.fee_usd is not None else round_amount(fee_local * fx_usd, Currency.USD)
    fee_vnd = draft.fee_vnd if draft.fee_vnd is not None else round_amount(fee_local * fx_vnd, Currency.VND)

    delta_qty = draft.quantity * delta_sign(tx_type)

    if is_zero_cash(tx_type, kind, draft.internal_flow):
        cf_local = cf_usd = cf_vnd = ZERO
    else:
        cf_local = cash_flow(tx_type, amount_local, fee_local)
        cf_usd = cash_flow(tx_type, amount_usd, fee_usd)
        cf_vnd = cash_flow(tx_type, amount_vnd, fee_vnd)

    data = draft.model_dump()
    data.update(
        type=tx_type.value,
        local_currency=currency,
        fx_to_usd=fx_usd,
        fx_to_vnd=fx_vnd,
        fee_local=fee_local,
        fee_usd=fee_usd,
        fee_vnd=fee_vnd,
        amount_local=amount_local,
        amount_usd=amount_usd,
        amount_vnd=amount_vnd,
        delta_qty=delta_qty,
        cashflow_local=cf_local,
        cashflow_usd=cf_usd,
        cashflow_vnd=cf_vnd,
    )
    return DerivedTransaction(**data)


def rederive(
    existing: TransactionDraft,
    changes: dict[str, Any],
    account_kind: Optional[AccountKind] = None,
) -> DerivedTransaction:
    """Amend: merge changes onto the stored inputs and derive again from scratch.

    None values in changes are ignored. fx_source/fx_timestamp survive unless
    replaced. A currency or rate change without an explicit fee_usd/fee_vnd
    drops the stored converted fees so they are recomputed.
    """
    unknown = set(changes) - AMENDABLE_FIELDS
    if unknown:
        raise ValidationError(f"fields cannot be amended: {', '.join(sorted(unknown))}")

    merged = TransactionDraft.model_validate(existing, from_attributes=True).model_dump()
    updates = {k: v for k, v in changes.items() if v is not None}
    if {"fee_local", "fx_to_usd", "local_currency"} & set(updates) and "fee_usd" not in updates:
        merged["fee_usd"] = None
    if {"fee_local", "fx_to_vnd", "local_currency"} & set(updates) and "fee_vnd" not in updates:
        merged["fee_vnd"] = None
    merged.update(updates)
    return derive(TransactionDraft(**merged), account_kind)
