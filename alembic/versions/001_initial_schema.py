"""Initial schema: trader_positions, decision_records.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- trader_positions ---
    op.create_table(
        "trader_positions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("trader_id", sa.String(64), nullable=False),
        sa.Column("exchange_id", sa.String(32), server_default=""),
        sa.Column("exchange_type", sa.String(32), server_default=""),
        sa.Column("exchange_position_id", sa.String(128), server_default=""),
        sa.Column("symbol", sa.String(30), nullable=False),
        sa.Column(
            "side",
            sa.String(5),
            sa.CheckConstraint("side IN ('LONG', 'SHORT')"),
            nullable=False,
        ),
        sa.Column("quantity", sa.Float, nullable=False),
        sa.Column("entry_price", sa.Float, nullable=False),
        sa.Column("entry_order_id", sa.String(64), server_default=""),
        sa.Column("entry_time", sa.DateTime(timezone=True)),
        sa.Column("exit_price", sa.Float, server_default="0"),
        sa.Column("exit_order_id", sa.String(64), server_default=""),
        sa.Column("exit_time", sa.DateTime(timezone=True)),
        sa.Column("realized_pnl", sa.Float, server_default="0"),
        sa.Column("fee", sa.Float, server_default="0"),
        sa.Column("leverage", sa.Integer, server_default="1"),
        sa.Column(
            "status",
            sa.String(10),
            sa.CheckConstraint("status IN ('OPEN', 'CLOSED')"),
            server_default="OPEN",
        ),
        sa.Column("source", sa.String(20), server_default=""),
        sa.Column("close_reason", sa.String(30), server_default=""),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index("idx_positions_trader", "trader_positions", ["trader_id"])
    op.create_index("idx_positions_status", "trader_positions", ["trader_id", "status"])
    op.create_index(
        "idx_positions_identity",
        "trader_positions",
        ["trader_id", "symbol", "side", "status"],
    )
    op.create_index("idx_positions_entry", "trader_positions", [sa.text("entry_time DESC")])
    op.create_index("idx_positions_exit", "trader_positions", [sa.text("exit_time DESC")])

    # --- decision_records ---
    op.create_table(
        "decision_records",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("trader_id", sa.String(64), nullable=False),
        sa.Column("cycle_number", sa.Integer, server_default="0"),
        sa.Column("system_prompt", sa.Text),
        sa.Column("user_prompt", sa.Text),
        sa.Column("cot_trace", sa.Text),
        sa.Column("raw_response", sa.Text),
        sa.Column("decisions_json", JSONB),
        sa.Column("success", sa.Boolean, server_default=sa.false()),
        sa.Column("error_message", sa.Text),
        sa.Column("ai_request_duration_ms", sa.Integer),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index("idx_decision_trader", "decision_records", ["trader_id"])
    op.create_index("idx_decision_created", "decision_records", [sa.text("created_at DESC")])


def downgrade() -> None:
    op.drop_table("decision_records")
    op.drop_table("trader_positions")
