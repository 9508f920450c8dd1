"""Create homes table

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates the `homes` table holding one row per listing, plus the
       indexes the API queries rely on.
How:   UUID primary key, TIMESTAMP WITH TIME ZONE for created_at, and a GIN
       index over the same tsvector expression HomeStore.search() ranks on.

Rollback: downgrade() drops the table entirely (destructive — all data lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Must match app.models.home.search_document() character for character,
# otherwise the planner won't use the index
SEARCH_DOCUMENT = (
    "to_tsvector('english', "
    "street || ' ' || city || ' ' || state || ' ' || zip || ' ' || description)"
)


def upgrade() -> None:
    """Create the homes table with all columns, constraints, and indexes."""
    op.create_table(
        "homes",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("price", sa.Float(), nullable=False),

        # Address
        sa.Column("street", sa.String(255), nullable=False,
                  comment="Update/delete selector (streetQuery)"),
        sa.Column("city", sa.String(120), nullable=False),
        sa.Column("state", sa.String(64), nullable=False),
        sa.Column("zip", sa.String(20), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lon", sa.Float(), nullable=False),

        # Property
        sa.Column("bedrooms", sa.Integer(), nullable=False),
        sa.Column("bathrooms", sa.Float(), nullable=False),
        sa.Column("square_feet", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),

        # Agent and images (fully-qualified URLs)
        sa.Column("agent", sa.String(120), nullable=False),
        sa.Column("agent_phone", sa.String(40), nullable=False),
        sa.Column("agent_img", sa.String(512), nullable=False),
        sa.Column("house_img_main", sa.String(512), nullable=False),
        sa.Column("house_img_inside_1", sa.String(512), nullable=False),
        sa.Column("house_img_inside_2", sa.String(512), nullable=False),

        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
            comment="Insertion order for paging and match tie-breaks",
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_homes_street", "homes", ["street"])
    op.create_index("ix_homes_created_at", "homes", ["created_at"])
    op.create_index(
        "idx_homes_search",
        "homes",
        [sa.text(SEARCH_DOCUMENT)],
        postgresql_using="gin",
    )


def downgrade() -> None:
    """
    Drop the homes table entirely.

    WARNING: destructive. Listing images on disk are left in place.
    """
    op.drop_index("idx_homes_search", table_name="homes")
    op.drop_index("ix_homes_created_at", table_name="homes")
    op.drop_index("ix_homes_street", table_name="homes")
    op.drop_table("homes")
