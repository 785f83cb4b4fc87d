"""Invoice settlement of charges and paid tier upgrades

Revision ID: 20261019_settlement_upgrades
Revises: 20261018_initial
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_settlement_upgrades"
down_revision = "20261018_initial"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("charge_records", schema=None) as batch_op:
        batch_op.add_column(sa.Column("settled_invoice_id", sa.String(length=96), nullable=True))
        batch_op.create_index("ix_charge_records_settled_invoice_id", ["settled_invoice_id"], unique=False)

    with op.batch_alter_table("payment_confirmations", schema=None) as batch_op:
        batch_op.add_column(
            sa.Column("payment_type", sa.String(length=24), nullable=False, server_default="PARKING_CHARGE")
        )

    op.create_table(
        "tier_upgrade_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payer_id", sa.String(length=64), nullable=False),
        sa.Column("from_tier", sa.String(length=16), nullable=False),
        sa.Column("to_tier", sa.String(length=16), nullable=False),
        sa.Column("fee_cents", sa.Integer(), nullable=False),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_confirmation_id", sa.Integer(), nullable=True),
        sa.Column("requested_by", sa.String(length=64), nullable=True),
        sa.Column("processed_by", sa.String(length=64), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["payer_id"], ["payers.id"]),
        sa.ForeignKeyConstraint(["payment_confirmation_id"], ["payment_confirmations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("tier_upgrade_records", schema=None) as batch_op:
        batch_op.create_index("ix_tier_upgrade_records_payer_id", ["payer_id"], unique=False)
        batch_op.create_index("ix_tier_upgrade_records_paid", ["is_paid"], unique=False)


def downgrade():
    op.drop_table("tier_upgrade_records")

    with op.batch_alter_table("payment_confirmations", schema=None) as batch_op:
        batch_op.drop_column("payment_type")

    with op.batch_alter_table("charge_records", schema=None) as batch_op:
        batch_op.drop_index("ix_charge_records_settled_invoice_id")
        batch_op.drop_column("settled_invoice_id")
