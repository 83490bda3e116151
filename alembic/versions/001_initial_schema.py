"""Initial schema with the replay records table.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Consumed authorization digests
    op.create_table(
        'replay_records',
        sa.Column('digest', sa.String(66), nullable=False),
        sa.Column('user', sa.String(42), nullable=False),
        sa.Column('pid', sa.String(80), nullable=False),
        sa.Column('amount', sa.String(80), nullable=False),
        sa.Column('deadline', sa.String(80), nullable=False),
        sa.Column('expires_at', sa.BigInteger(), nullable=False),
        sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('digest')
    )
    op.create_index('ix_replay_records_user', 'replay_records', ['user'])
    op.create_index('ix_replay_records_tx_hash', 'replay_records', ['tx_hash'])
    op.create_index('ix_replay_records_expires_at', 'replay_records', ['expires_at'])


def downgrade() -> None:
    op.drop_index('ix_replay_records_expires_at', table_name='replay_records')
    op.drop_index('ix_replay_records_tx_hash', table_name='replay_records')
    op.drop_index('ix_replay_records_user', table_name='replay_records')
    op.drop_table('replay_records')
