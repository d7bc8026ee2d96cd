"""initial schema: categories and lots

Revision ID: 5b1c9e2d7a40
Revises:
Create Date: 2026-09-28 10:12:41.306115

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b1c9e2d7a40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("category_id", sa.Integer, nullable=False),
        sa.Column("name", sa.Text, server_default=""),
    )
    op.create_index("ix_categories_category_id", "categories", ["category_id"], unique=True)

    op.create_table(
        "lots",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("category_id", sa.Integer, sa.ForeignKey("categories.id"), nullable=False),
        sa.Column("title", sa.Text, server_default=""),
        sa.Column("normalized_title", sa.Text, server_default=""),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("normalized_description", sa.Text, server_default=""),
        sa.Column("begin_date", sa.DateTime, nullable=True),
        sa.Column("end_date", sa.DateTime, nullable=True),
        sa.Column("price", sa.Float, server_default="0"),
        sa.Column("start_price", sa.Float, server_default="0"),
        sa.Column("final_price", sa.Float, nullable=True),
        sa.Column("year_published", sa.Integer, nullable=True),
        sa.Column("seller_name", sa.Text, server_default=""),
        sa.Column("city", sa.Text, server_default=""),
        sa.Column("type", sa.Text, server_default=""),
        sa.Column("status", sa.Integer, server_default="0"),
        sa.Column("sold_quantity", sa.Integer, server_default="0"),
        sa.Column("bids_count", sa.Integer, server_default="0"),
        sa.Column("pics_count", sa.Integer, server_default="0"),
        sa.Column("tags", sa.JSON, nullable=True),
        sa.Column("image_urls", sa.JSON, nullable=True),
        sa.Column("thumbnail_urls", sa.JSON, nullable=True),
        sa.Column("pics_ratio", sa.JSON, nullable=True),
        # auction lifecycle
        sa.Column("is_monitored", sa.Boolean, server_default="0"),
        sa.Column("is_less_valuable", sa.Boolean, server_default="0"),
        # image archive
        sa.Column("is_images_compressed", sa.Boolean, server_default="0"),
        sa.Column("image_archive_url", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_lots_category_id", "lots", ["category_id"])
    op.create_index("ix_lots_normalized_title", "lots", ["normalized_title"])
    op.create_index("ix_lots_end_date", "lots", ["end_date"])
    op.create_index("ix_lots_is_monitored", "lots", ["is_monitored"])


def downgrade() -> None:
    op.drop_table("lots")
    op.drop_table("categories")
