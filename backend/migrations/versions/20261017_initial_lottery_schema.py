"""Initial lottery pack and closing schema

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "lottery_games",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(4), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tickets_per_pack", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "lottery_bins",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("bin_number", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("store_id", "bin_number", name="uq_lottery_bins_store_number"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("lottery_bins", schema=None) as batch_op:
        batch_op.create_index("ix_lottery_bins_store_id", ["store_id"], unique=False)

    op.create_table(
        "lottery_packs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("game_code", sa.String(4), nullable=False),
        sa.Column("pack_number", sa.String(7), nullable=False),
        sa.Column("serial_start", sa.Integer(), nullable=False),
        sa.Column("serial_end", sa.Integer(), nullable=False),
        sa.Column("ticket_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("bin_id", sa.Integer(), nullable=True),
        sa.Column("last_sold_serial", sa.Integer(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("depleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["game_code"], ["lottery_games.code"]),
        sa.ForeignKeyConstraint(["bin_id"], ["lottery_bins.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("store_id", "pack_number", name="uq_lottery_packs_store_pack"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("lottery_packs", schema=None) as batch_op:
        batch_op.create_index("ix_lottery_packs_store_id", ["store_id"], unique=False)
        batch_op.create_index("ix_lottery_packs_game_code", ["game_code"], unique=False)
        batch_op.create_index("ix_lottery_packs_bin_id", ["bin_id"], unique=False)
        batch_op.create_index("ix_lottery_packs_store_status", ["store_id", "status"], unique=False)
        batch_op.create_index("ix_lottery_packs_bin_status", ["bin_id", "status"], unique=False)
        batch_op.create_index(
            "uq_lottery_packs_active_bin",
            ["bin_id"],
            unique=True,
            sqlite_where=sa.text("status = 'ACTIVE'"),
            postgresql_where=sa.text("status = 'ACTIVE'"),
        )

    # No foreign key to lottery_packs: snapshots outlive purged packs
    op.create_table(
        "returned_packs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("pack_id", sa.Integer(), nullable=True),
        sa.Column("pack_number", sa.String(7), nullable=False),
        sa.Column("game_code", sa.String(4), nullable=False),
        sa.Column("game_name", sa.String(255), nullable=True),
        sa.Column("bin_number", sa.Integer(), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("return_reason", sa.String(32), nullable=False),
        sa.Column("return_notes", sa.Text(), nullable=True),
        sa.Column("last_sold_serial", sa.Integer(), nullable=True),
        sa.Column("tickets_sold_on_return", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("return_sales_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("returned_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("returned_packs", schema=None) as batch_op:
        batch_op.create_index("ix_returned_packs_store_id", ["store_id"], unique=False)
        batch_op.create_index("ix_returned_packs_pack_id", ["pack_id"], unique=False)
        batch_op.create_index("ix_returned_packs_returned_at", ["returned_at"], unique=False)
        batch_op.create_index("ix_returned_packs_store_key", ["store_id", "game_code", "pack_number"], unique=False)

    op.create_table(
        "closing_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(8), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("closing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("difference", sa.Integer(), nullable=True),
        sa.Column("tickets_sold", sa.Integer(), nullable=True),
        sa.Column("sales_amount_cents", sa.Integer(), nullable=True),
        sa.Column("expected_cash_cents", sa.Integer(), nullable=True),
        sa.Column("actual_cash_cents", sa.Integer(), nullable=True),
        sa.Column("cash_difference_cents", sa.Integer(), nullable=True),
        sa.Column("variance_reason", sa.Text(), nullable=True),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("closing_sessions", schema=None) as batch_op:
        batch_op.create_index("ix_closing_sessions_store_id", ["store_id"], unique=False)
        batch_op.create_index("ix_closing_sessions_status", ["status"], unique=False)
        batch_op.create_index("ix_closing_sessions_store_kind_date", ["store_id", "kind", "business_date"], unique=False)

    op.create_table(
        "closing_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("closing_session_id", sa.Integer(), nullable=False),
        sa.Column("bin_id", sa.Integer(), nullable=True),
        sa.Column("pack_id", sa.Integer(), nullable=False),
        sa.Column("outcome", sa.String(32), nullable=False),
        sa.Column("starting_serial", sa.Integer(), nullable=False),
        sa.Column("closing_serial", sa.Integer(), nullable=False),
        sa.Column("expected_count", sa.Integer(), nullable=False),
        sa.Column("actual_count", sa.Integer(), nullable=False),
        sa.Column("difference", sa.Integer(), nullable=False),
        sa.Column("sales_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("depleted", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["closing_session_id"], ["closing_sessions.id"]),
        sa.ForeignKeyConstraint(["bin_id"], ["lottery_bins.id"]),
        sa.ForeignKeyConstraint(["pack_id"], ["lottery_packs.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("closing_session_id", "pack_id", name="uq_closing_lines_session_pack"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("closing_lines", schema=None) as batch_op:
        batch_op.create_index("ix_closing_lines_closing_session_id", ["closing_session_id"], unique=False)
        batch_op.create_index("ix_closing_lines_pack_id", ["pack_id"], unique=False)

    op.create_table(
        "variance_approvals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("closing_session_id", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("approved_by", sa.Integer(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["closing_session_id"], ["closing_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("closing_session_id"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("variance_approvals")

    with op.batch_alter_table("closing_lines", schema=None) as batch_op:
        batch_op.drop_index("ix_closing_lines_pack_id")
        batch_op.drop_index("ix_closing_lines_closing_session_id")
    op.drop_table("closing_lines")

    with op.batch_alter_table("closing_sessions", schema=None) as batch_op:
        batch_op.drop_index("ix_closing_sessions_store_kind_date")
        batch_op.drop_index("ix_closing_sessions_status")
        batch_op.drop_index("ix_closing_sessions_store_id")
    op.drop_table("closing_sessions")

    with op.batch_alter_table("returned_packs", schema=None) as batch_op:
        batch_op.drop_index("ix_returned_packs_store_key")
        batch_op.drop_index("ix_returned_packs_returned_at")
        batch_op.drop_index("ix_returned_packs_pack_id")
        batch_op.drop_index("ix_returned_packs_store_id")
    op.drop_table("returned_packs")

    with op.batch_alter_table("lottery_packs", schema=None) as batch_op:
        batch_op.drop_index("uq_lottery_packs_active_bin")
        batch_op.drop_index("ix_lottery_packs_bin_status")
        batch_op.drop_index("ix_lottery_packs_store_status")
        batch_op.drop_index("ix_lottery_packs_bin_id")
        batch_op.drop_index("ix_lottery_packs_game_code")
        batch_op.drop_index("ix_lottery_packs_store_id")
    op.drop_table("lottery_packs")

    with op.batch_alter_table("lottery_bins", schema=None) as batch_op:
        batch_op.drop_index("ix_lottery_bins_store_id")
    op.drop_table("lottery_bins")

    op.drop_table("lottery_games")
