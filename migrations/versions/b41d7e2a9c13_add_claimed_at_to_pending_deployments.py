"""add claimed_at to pending_deployments

Revision ID: b41d7e2a9c13
Revises: 7c2e4b91d0a5
Create Date: 2026-10-19 16:20:41.518203

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b41d7e2a9c13'
down_revision = '7c2e4b91d0a5'
branch_labels = None
depends_on = None


def upgrade():
    # --- Set while a deploy attempt holds the row; cleared when it fails ---
    op.add_column('pending_deployments', sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True))


def downgrade():
    op.drop_column('pending_deployments', 'claimed_at')
