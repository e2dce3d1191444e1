"""Create videos table.

Revision ID: 001_hls_videos
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_hls_videos'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'videos',
        sa.Column('id', sa.String(64), nullable=False),
        sa.Column('original_name', sa.String(512), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='processing'),
        sa.Column('hls_path', sa.String(1024), nullable=True),
        sa.Column('hls_path_1080p', sa.String(1024), nullable=True),
        sa.Column('hls_path_720p', sa.String(1024), nullable=True),
        sa.Column('hls_path_480p', sa.String(1024), nullable=True),
        sa.Column('hls_path_360p', sa.String(1024), nullable=True),
        sa.Column('hls_path_240p', sa.String(1024), nullable=True),
        sa.Column('thumb_path', sa.String(1024), nullable=True),
        sa.Column('duration', sa.Float(), nullable=True),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_videos_status', 'videos', ['status'])


def downgrade() -> None:
    op.drop_index('ix_videos_status', table_name='videos')
    op.drop_table('videos')
