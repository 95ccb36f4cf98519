"""Create the orders table.

Revision ID: 001_orders
Revises:
Create Date: 2026-10-17 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_orders"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("identifier", sa.String(200), nullable=False),
        sa.Column("token_id", sa.String(100), nullable=True),
        sa.Column("price", sa.Numeric(40, 18), nullable=True),
        sa.Column("nft_contract", sa.String(64), nullable=False),
        sa.Column("marketplace_contract", sa.String(64), nullable=False),
        sa.Column("seller_address", sa.String(64), nullable=True),
        sa.Column("buyer_address", sa.String(64), nullable=True),
        sa.Column("raw_payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("image", sa.Text(), nullable=True),
        sa.Column("on_chain_block", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("identifier"),
    )
    op.create_index("idx_orders_contract_status", "orders", ["nft_contract", "status"])
    op.create_index("idx_orders_contract_marketplace", "orders", ["nft_contract", "marketplace_contract"])
    op.create_index("idx_orders_token", "orders", ["nft_contract", "token_id"])


def downgrade() -> None:
    op.drop_index("idx_orders_token", table_name="orders")
    op.drop_index("idx_orders_contract_marketplace", table_name="orders")
    op.drop_index("idx_orders_contract_status", table_name="orders")
    op.drop_table("orders")
