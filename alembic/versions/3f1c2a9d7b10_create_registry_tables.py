"""create_registry_tables

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-18 09:12:41.208315

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1c2a9d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create asset_registrations, ownership_transfers and system_state."""
    op.create_table(
        "asset_registrations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("asset_id", sa.BigInteger(), nullable=False),
        sa.Column("owner", sqlmodel.sql.sqltypes.AutoString(length=42), nullable=False),
        sa.Column("description", sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column("event_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("transaction_hash", sqlmodel.sql.sqltypes.AutoString(length=66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("block_timestamp", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_asset_registrations_asset_id"), "asset_registrations", ["asset_id"], unique=True
    )
    op.create_index(op.f("ix_asset_registrations_owner"), "asset_registrations", ["owner"])
    op.create_index(
        op.f("ix_asset_registrations_event_timestamp"), "asset_registrations", ["event_timestamp"]
    )
    op.create_index(
        op.f("ix_asset_registrations_block_number"), "asset_registrations", ["block_number"]
    )

    op.create_table(
        "ownership_transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("asset_id", sa.BigInteger(), nullable=False),
        sa.Column("previous_owner", sqlmodel.sql.sqltypes.AutoString(length=42), nullable=False),
        sa.Column("new_owner", sqlmodel.sql.sqltypes.AutoString(length=42), nullable=False),
        sa.Column("event_timestamp", sa.BigInteger(), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("transaction_hash", sqlmodel.sql.sqltypes.AutoString(length=66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("block_timestamp", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "transaction_hash", "log_index", name="uq_ownership_transfers_tx_log"
        ),
    )
    op.create_index(op.f("ix_ownership_transfers_asset_id"), "ownership_transfers", ["asset_id"])
    op.create_index(
        op.f("ix_ownership_transfers_previous_owner"), "ownership_transfers", ["previous_owner"]
    )
    op.create_index(op.f("ix_ownership_transfers_new_owner"), "ownership_transfers", ["new_owner"])
    op.create_index(
        op.f("ix_ownership_transfers_event_timestamp"), "ownership_transfers", ["event_timestamp"]
    )
    op.create_index(
        op.f("ix_ownership_transfers_block_number"), "ownership_transfers", ["block_number"]
    )

    op.create_table(
        "system_state",
        sa.Column("key", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("state_value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    """Drop registry tables."""
    op.drop_table("system_state")

    op.drop_index(op.f("ix_ownership_transfers_block_number"), table_name="ownership_transfers")
    op.drop_index(op.f("ix_ownership_transfers_event_timestamp"), table_name="ownership_transfers")
    op.drop_index(op.f("ix_ownership_transfers_new_owner"), table_name="ownership_transfers")
    op.drop_index(op.f("ix_ownership_transfers_previous_owner"), table_name="ownership_transfers")
    op.drop_index(op.f("ix_ownership_transfers_asset_id"), table_name="ownership_transfers")
    op.drop_table("ownership_transfers")

    op.drop_index(op.f("ix_asset_registrations_block_number"), table_name="asset_registrations")
    op.drop_index(op.f("ix_asset_registrations_event_timestamp"), table_name="asset_registrations")
    op.drop_index(op.f("ix_asset_registrations_owner"), table_name="asset_registrations")
    op.drop_index(op.f("ix_asset_registrations_asset_id"), table_name="asset_registrations")
    op.drop_table("asset_registrations")
