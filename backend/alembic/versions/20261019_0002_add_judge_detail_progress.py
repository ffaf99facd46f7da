"""add judge detail progress

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 14:30:00.000000

"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "judges",
        sa.Column("political_affiliation", sa.Text(), nullable=True),
    )
    op.add_column(
        "judges",
        sa.Column("political_affiliations", sa.JSON(), nullable=True),
    )
    op.add_column(
        "judges",
        sa.Column("has_positions", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.add_column(
        "judges",
        sa.Column("positions_synced_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.add_column(
        "judges",
        sa.Column("education_synced_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.add_column(
        "judges",
        sa.Column("political_affiliations_synced_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("judges", "political_affiliations_synced_at")
    op.drop_column("judges", "education_synced_at")
    op.drop_column("judges", "positions_synced_at")
    op.drop_column("judges", "has_positions")
    op.drop_column("judges", "political_affiliations")
    op.drop_column("judges", "political_affiliation")
