"""subscriptions.price_id: keep the Stripe price so the billing cycle is known

Revision ID: 0002_subscription_price_id
Revises: 0001_initial
Create Date: 2026-10-19 14:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_subscription_price_id'
down_revision = '0001_initial'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('subscriptions') as batch_op:
        batch_op.add_column(sa.Column('price_id', sa.String(length=64), nullable=True))


def downgrade():
    with op.batch_alter_table('subscriptions') as batch_op:
        batch_op.drop_column('price_id')
