"""create archived_session table

Revision ID: 4c7a9e2b1f03
Revises:
Create Date: 2026-10-16 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7a9e2b1f03'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'archived_session' in insp.get_table_names():
        return
    op.create_table(
        'archived_session',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.String(length=36), nullable=False),
        sa.Column('game_code', sa.String(length=6), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('phase', sa.String(length=32), nullable=True),
        sa.Column('rounds_played', sa.Integer(), nullable=True),
        sa.Column('player_count', sa.Integer(), nullable=True),
        sa.Column('snapshot', sa.Text(), nullable=True),
        sa.Column('round_history', sa.Text(), nullable=True),
        sa.Column('archived_at', sa.Float(), nullable=True),
    )
    with op.batch_alter_table('archived_session') as batch_op:
        batch_op.create_index('ix_archived_session_session_id', ['session_id'])
        batch_op.create_index('ix_archived_session_game_code', ['game_code'])


def downgrade():
    with op.batch_alter_table('archived_session') as batch_op:
        batch_op.drop_index('ix_archived_session_game_code')
        batch_op.drop_index('ix_archived_session_session_id')
    op.drop_table('archived_session')
