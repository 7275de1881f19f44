"""locations, catalog, stock ledger and transfers

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _updated_at(name: str = "updated_at") -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    op.create_table(
        "locations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("code", sa.String(length=30), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_id", "code", name="uq_locations_business_code"),
    )
    op.create_index("ix_locations_business_id", "locations", ["business_id"], unique=False)
    op.create_index(
        "ix_locations_business_active_created_at",
        "locations",
        ["business_id", "is_active", "created_at"],
        unique=False,
    )

    op.create_table(
        "location_access_scopes",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("location_id", sa.String(length=36), nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=False),
        sa.Column("can_manage_inventory", sa.Boolean(), nullable=False, server_default="0"),
        _created_at(),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("location_id", "actor_id", name="uq_location_access_scope"),
    )
    op.create_index("ix_location_access_scopes_business_id", "location_access_scopes", ["business_id"], unique=False)
    op.create_index("ix_location_access_scopes_location_id", "location_access_scopes", ["location_id"], unique=False)
    op.create_index("ix_location_access_scopes_actor_id", "location_access_scopes", ["actor_id"], unique=False)
    op.create_index(
        "ix_location_access_scopes_business_actor",
        "location_access_scopes",
        ["business_id", "actor_id"],
        unique=False,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sku", sa.String(length=100), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default="1"),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_products_business_id", "products", ["business_id"], unique=False)
    op.create_index("ix_products_business_created_at", "products", ["business_id", "created_at"], unique=False)

    op.create_table(
        "product_variations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False, server_default="Default"),
        sa.Column("sku", sa.String(length=100), nullable=True),
        sa.Column("selling_price", sa.Numeric(12, 2), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_product_variations_business_id", "product_variations", ["business_id"], unique=False)
    op.create_index("ix_product_variations_product_id", "product_variations", ["product_id"], unique=False)
    op.create_index(
        "ix_product_variations_business_product",
        "product_variations",
        ["business_id", "product_id"],
        unique=False,
    )
    op.create_index(
        "ux_product_variations_business_sku_lower",
        "product_variations",
        ["business_id", sa.text("lower(sku)")],
        unique=True,
        postgresql_where=sa.text("sku IS NOT NULL"),
        sqlite_where=sa.text("sku IS NOT NULL"),
    )

    op.create_table(
        "stock_ledger_entries",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("product_variation_id", sa.String(length=36), nullable=False),
        sa.Column("location_id", sa.String(length=36), nullable=False),
        sa.Column("entry_type", sa.String(length=30), nullable=False),
        sa.Column("quantity_delta", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("sequence_no", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(length=50), nullable=True),
        sa.Column("reference_id", sa.String(length=36), nullable=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("actor_id", sa.String(length=36), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["product_variation_id"], ["product_variations.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "product_variation_id",
            "location_id",
            "sequence_no",
            name="uq_stock_ledger_entries_variation_location_sequence",
        ),
    )
    op.create_index("ix_stock_ledger_entries_business_id", "stock_ledger_entries", ["business_id"], unique=False)
    op.create_index(
        "ix_stock_ledger_entries_product_variation_id",
        "stock_ledger_entries",
        ["product_variation_id"],
        unique=False,
    )
    op.create_index("ix_stock_ledger_entries_location_id", "stock_ledger_entries", ["location_id"], unique=False)
    op.create_index("ix_stock_ledger_entries_reference_id", "stock_ledger_entries", ["reference_id"], unique=False)
    op.create_index(
        "ix_stock_ledger_entries_business_location_variation_created_at",
        "stock_ledger_entries",
        ["business_id", "location_id", "product_variation_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_stock_ledger_entries_reference",
        "stock_ledger_entries",
        ["reference_type", "reference_id"],
        unique=False,
    )

    op.create_table(
        "stock_projections",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("product_variation_id", sa.String(length=36), nullable=False),
        sa.Column("location_id", sa.String(length=36), nullable=False),
        sa.Column("quantity_available", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("selling_price", sa.Numeric(12, 2), nullable=True),
        _updated_at("last_updated_at"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["product_variation_id"], ["product_variations.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "product_variation_id",
            "location_id",
            name="uq_stock_projections_variation_location",
        ),
    )
    op.create_index("ix_stock_projections_business_id", "stock_projections", ["business_id"], unique=False)
    op.create_index(
        "ix_stock_projections_product_variation_id",
        "stock_projections",
        ["product_variation_id"],
        unique=False,
    )
    op.create_index("ix_stock_projections_location_id", "stock_projections", ["location_id"], unique=False)
    op.create_index(
        "ix_stock_projections_business_location",
        "stock_projections",
        ["business_id", "location_id"],
        unique=False,
    )

    op.create_table(
        "stock_transfers",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("business_id", sa.String(length=36), nullable=False),
        sa.Column("transfer_number", sa.String(length=40), nullable=False),
        sa.Column("from_location_id", sa.String(length=36), nullable=False),
        sa.Column("to_location_id", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=36), nullable=False),
        sa.Column("checked_by", sa.String(length=36), nullable=True),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(length=36), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(length=255), nullable=True),
        sa.Column("sent_by", sa.String(length=36), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrived_by", sa.String(length=36), nullable=True),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verification_started_by", sa.String(length=36), nullable=True),
        sa.Column("verification_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by", sa.String(length=36), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", sa.String(length=36), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(length=36), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=255), nullable=True),
        sa.Column("stock_deducted", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("stock_added", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["from_location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["to_location_id"], ["locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_id", "transfer_number", name="uq_stock_transfers_business_number"),
    )
    op.create_index("ix_stock_transfers_business_id", "stock_transfers", ["business_id"], unique=False)
    op.create_index("ix_stock_transfers_from_location_id", "stock_transfers", ["from_location_id"], unique=False)
    op.create_index("ix_stock_transfers_to_location_id", "stock_transfers", ["to_location_id"], unique=False)
    op.create_index("ix_stock_transfers_created_by", "stock_transfers", ["created_by"], unique=False)
    op.create_index(
        "ix_stock_transfers_business_created_at",
        "stock_transfers",
        ["business_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_stock_transfers_business_status_created_at",
        "stock_transfers",
        ["business_id", "status", "created_at"],
        unique=False,
    )

    op.create_table(
        "stock_transfer_items",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("stock_transfer_id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("product_variation_id", sa.String(length=36), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("received_quantity", sa.Integer(), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("verified_by", sa.String(length=36), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_discrepancy", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("discrepancy_notes", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["stock_transfer_id"], ["stock_transfers.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["product_variation_id"], ["product_variations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stock_transfer_id", "product_variation_id", name="uq_stock_transfer_items_variation"),
    )
    op.create_index(
        "ix_stock_transfer_items_stock_transfer_id",
        "stock_transfer_items",
        ["stock_transfer_id"],
        unique=False,
    )
    op.create_index(
        "ix_stock_transfer_items_product_variation_id",
        "stock_transfer_items",
        ["product_variation_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("stock_transfer_items")
    op.drop_table("stock_transfers")
    op.drop_table("stock_projections")
    op.drop_table("stock_ledger_entries")
    op.drop_index("ux_product_variations_business_sku_lower", table_name="product_variations")
    op.drop_table("product_variations")
    op.drop_table("products")
    op.drop_table("location_access_scopes")
    op.drop_table("locations")
