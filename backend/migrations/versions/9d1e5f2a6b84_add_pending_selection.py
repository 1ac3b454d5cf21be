"""add pending_selection and selection_deadline to game

Revision ID: 9d1e5f2a6b84
Revises: 4c2a9e7b1f03
Create Date: 2026-10-18 16:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '9d1e5f2a6b84'
down_revision = '4c2a9e7b1f03'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    cols = {c['name'] for c in insp.get_columns('game')}
    with op.batch_alter_table('game') as batch_op:
        if 'pending_selection' not in cols:
            batch_op.add_column(sa.Column('pending_selection', sa.Text(), nullable=True))
        if 'selection_deadline' not in cols:
            batch_op.add_column(sa.Column('selection_deadline', sa.Float(), nullable=True))


def downgrade():
    with op.batch_alter_table('game') as batch_op:
        batch_op.drop_column('selection_deadline')
        batch_op.drop_column('pending_selection')
