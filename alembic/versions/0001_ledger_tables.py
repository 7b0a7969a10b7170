"""ledger tables

Revision ID: 0001_ledger
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001_ledger"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("currency", sa.String(10), nullable=True),
        sa.Column("label", sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_accounts")),
        sa.UniqueConstraint("name", name=op.f("uq_accounts_name")),
    )

    op.create_table(
        "positions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("asset", sa.String(50), nullable=False),
        sa.Column("account", sa.String(100), nullable=False),
        sa.Column("horizon", sa.String(20), nullable=True),
        sa.Column("deposit_date", sa.DateTime(), nullable=False),
        sa.Column("deposit_qty", sa.Numeric(30, 8), nullable=False),
        sa.Column("deposit_cost", sa.Numeric(30, 8), nullable=False),
        sa.Column("deposit_unit_cost", sa.Numeric(30, 12), nullable=False),
        sa.Column("withdrawal_date", sa.DateTime(), nullable=True),
        sa.Column("withdrawal_qty", sa.Numeric(30, 8), nullable=False),
        sa.Column("withdrawal_value", sa.Numeric(30, 8), nullable=False),
        sa.Column("withdrawal_unit_price", sa.Numeric(30, 12), nullable=False),
        sa.Column("pnl", sa.Numeric(30, 8), nullable=False),
        sa.Column("pnl_percent", sa.Numeric(30, 8), nullable=False),
        sa.Column("is_open", sa.Boolean(), nullable=False),
        sa.Column("exit_date", sa.DateTime(), nullable=True),
        sa.Column("origin_tx_id", sa.Uuid(), nullable=True),
        sa.Column("is_vault", sa.Boolean(), nullable=False),
        sa.Column("vault_name", sa.String(255), nullable=True),
        sa.Column("vault_status", sa.String(20), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_positions")),
        sa.UniqueConstraint("vault_name", name=op.f("uq_positions_vault_name")),
    )
    op.create_index(op.f("ix_positions_asset"), "positions", ["asset"])
    op.create_index(op.f("ix_positions_account"), "positions", ["account"])
    op.create_index(op.f("ix_positions_is_open"), "positions", ["is_open"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("asset", sa.String(50), nullable=False),
        sa.Column("account", sa.String(100), nullable=False),
        sa.Column("counterparty", sa.String(255), nullable=True),
        sa.Column("tag", sa.String(255), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Numeric(30, 8), nullable=False),
        sa.Column("price_local", sa.Numeric(30, 8), nullable=False),
        sa.Column("local_currency", sa.String(10), nullable=False),
        sa.Column("fx_to_usd", sa.Numeric(30, 12), nullable=False),
        sa.Column("fx_to_vnd", sa.Numeric(30, 8), nullable=False),
        sa.Column("fee_local", sa.Numeric(30, 8), nullable=False),
        sa.Column("fee_usd", sa.Numeric(30, 8), nullable=False),
        sa.Column("fee_vnd", sa.Numeric(30, 8), nullable=False),
        sa.Column("amount_local", sa.Numeric(30, 8), nullable=False),
        sa.Column("amount_usd", sa.Numeric(30, 8), nullable=False),
        sa.Column("amount_vnd", sa.Numeric(30, 8), nullable=False),
        sa.Column("delta_qty", sa.Numeric(30, 8), nullable=False),
        sa.Column("cashflow_local", sa.Numeric(30, 8), nullable=False),
        sa.Column("cashflow_usd", sa.Numeric(30, 8), nullable=False),
        sa.Column("cashflow_vnd", sa.Numeric(30, 8), nullable=False),
        sa.Column("internal_flow", sa.Boolean(), nullable=False),
        sa.Column("position_id", sa.Uuid(), sa.ForeignKey("positions.id", name=op.f("fk_transactions_position_id_positions")), nullable=True),
        sa.Column("horizon", sa.String(20), nullable=True),
        sa.Column("entry_date", sa.DateTime(), nullable=True),
        sa.Column("exit_date", sa.DateTime(), nullable=True),
        sa.Column("fx_source", sa.String(50), nullable=True),
        sa.Column("fx_timestamp", sa.DateTime(), nullable=True),
        sa.Column("borrow_apr", sa.Numeric(10, 8), nullable=True),
        sa.Column("borrow_term_days", sa.Integer(), nullable=True),
        sa.Column("borrow_active", sa.Boolean(), nullable=True),
        sa.Column("reverses_id", sa.Uuid(), sa.ForeignKey("transactions.id", name=op.f("fk_transactions_reverses_id_transactions")), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_transactions")),
    )
    for column in ("date", "type", "asset", "account", "tag", "position_id", "exit_date"):
        op.create_index(op.f(f"ix_transactions_{column}"), "transactions", [column])
    op.create_index("ix_transactions_asset_account", "transactions", ["asset", "account"])

    op.create_table(
        "closure_links",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("link_type", sa.String(30), nullable=False),
        sa.Column("from_tx", sa.Uuid(), sa.ForeignKey("transactions.id", name=op.f("fk_closure_links_from_tx_transactions"), ondelete="CASCADE"), nullable=False),
        sa.Column("to_tx", sa.Uuid(), sa.ForeignKey("transactions.id", name=op.f("fk_closure_links_to_tx_transactions"), ondelete="CASCADE"), nullable=False),
        sa.Column("position_id", sa.Uuid(), sa.ForeignKey("positions.id", name=op.f("fk_closure_links_position_id_positions"), ondelete="CASCADE"), nullable=True),
        sa.Column("exit_date", sa.DateTime(), nullable=True),
        sa.Column("withdrawal_qty", sa.Numeric(30, 8), nullable=False),
        sa.Column("withdrawal_value", sa.Numeric(30, 8), nullable=False),
        sa.Column("deposit_unit_cost", sa.Numeric(30, 12), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_closure_links")),
    )
    op.create_index(op.f("ix_closure_links_from_tx"), "closure_links", ["from_tx"])
    op.create_index(op.f("ix_closure_links_to_tx"), "closure_links", ["to_tx"])

    op.create_table(
        "fx_rates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("from_currency", sa.String(10), nullable=False),
        sa.Column("to_currency", sa.String(10), nullable=False),
        sa.Column("rate", sa.Numeric(30, 12), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_fx_rates")),
        sa.UniqueConstraint("from_currency", "to_currency", "date", name="uq_fx_rates_pair_date"),
    )
    for column in ("from_currency", "to_currency", "date"):
        op.create_index(op.f(f"ix_fx_rates_{column}"), "fx_rates", [column])

    op.create_table(
        "asset_prices",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("symbol", sa.String(50), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("price", sa.Numeric(30, 12), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_asset_prices")),
        sa.UniqueConstraint("symbol", "currency", "date", name="uq_asset_prices_symbol_currency_date"),
    )
    op.create_index(op.f("ix_asset_prices_symbol"), "asset_prices", ["symbol"])
    op.create_index(op.f("ix_asset_prices_date"), "asset_prices", ["date"])


def downgrade() -> None:
    op.drop_table("asset_prices")
    op.drop_table("fx_rates")
    op.drop_table("closure_links")
    op.drop_table("transactions")
    op.drop_table("positions")
    op.drop_table("accounts")
