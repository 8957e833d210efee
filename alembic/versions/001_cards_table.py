"""Initial schema: cards

Revision ID: 001_cards_table
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001_cards_table"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "cards",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("external_id", sa.String(), nullable=False, comment="Remote catalog identifier"),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("rarity", sa.String(), nullable=True),
        sa.Column("ap", sa.String(), nullable=True),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("bp", sa.String(), nullable=True),
        sa.Column("affinity", sa.String(), nullable=True),
        sa.Column("effect", sa.Text(), nullable=True),
        sa.Column("trigger", sa.Text(), nullable=True),
        sa.Column("image_small", sa.String(), nullable=True),
        sa.Column("image_large", sa.String(), nullable=True),
        sa.Column("set_name", sa.String(), nullable=True),
        sa.Column("need_energy_value", sa.String(), nullable=True),
        sa.Column("need_energy_logo", sa.String(), nullable=True),
        # Legacy columns
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("card_number", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_cards_external_id", "cards", ["external_id"], unique=True)
    op.create_index("ix_cards_code", "cards", ["code"])
    op.create_index("ix_cards_type", "cards", ["type"])
    op.create_index("ix_cards_rarity", "cards", ["rarity"])
    op.create_index("ix_cards_set_name", "cards", ["set_name"])


def downgrade() -> None:
    op.drop_index("ix_cards_set_name", table_name="cards")
    op.drop_index("ix_cards_rarity", table_name="cards")
    op.drop_index("ix_cards_type", table_name="cards")
    op.drop_index("ix_cards_code", table_name="cards")
    op.drop_index("ix_cards_external_id", table_name="cards")
    op.drop_table("cards")
