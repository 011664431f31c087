"""create_promotions_and_events

Revision ID: 3a6f1c2d9e41
Revises:
Create Date: 2026-10-18 10:12:31.204118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3a6f1c2d9e41'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _schedule_columns():
    return [
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('place_id', sa.String(length=255), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('recurring', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recurring_days', sa.JSON(), nullable=True),
        sa.Column('date', sa.Date(), nullable=True),
        sa.Column('all_day', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('start_time', sa.String(length=5), nullable=True),
        sa.Column('end_time', sa.String(length=5), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('promotions', *_schedule_columns())
    op.create_index('ix_promotions_id', 'promotions', ['id'])
    op.create_index('ix_promotions_place_id', 'promotions', ['place_id'])

    op.create_table('events', *_schedule_columns())
    op.create_index('ix_events_id', 'events', ['id'])
    op.create_index('ix_events_place_id', 'events', ['place_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_events_place_id', table_name='events')
    op.drop_index('ix_events_id', table_name='events')
    op.drop_table('events')
    op.drop_index('ix_promotions_place_id', table_name='promotions')
    op.drop_index('ix_promotions_id', table_name='promotions')
    op.drop_table('promotions')
