"""Feed schema: videos, video_tags, video_likes, video_comments

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    user_role = postgresql.ENUM('breeder', 'adopter', name='user_role', create_type=False)
    video_status = postgresql.ENUM('uploading', 'processing', 'ready', 'failed', name='video_status', create_type=False)
    user_role.create(op.get_bind(), checkfirst=True)
    video_status.create(op.get_bind(), checkfirst=True)

    # Videos table
    op.create_table(
        'videos',
        sa.Column('video_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('uploader_id', sa.String(64), nullable=False),
        sa.Column('uploader_role', user_role, nullable=False),
        sa.Column('title', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', video_status, nullable=False, server_default='uploading'),
        sa.Column('raw_key', sa.String(512), nullable=False),
        sa.Column('hls_key', sa.String(512), nullable=True),  # videos/hls/{video_id}/master.m3u8
        sa.Column('thumbnail_key', sa.String(512), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('view_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('like_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('comment_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('encode_lease_until', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('like_count >= 0', name='ck_videos_like_count_non_negative'),
        sa.CheckConstraint('comment_count >= 0', name='ck_videos_comment_count_non_negative'),
    )
    op.create_index('ix_videos_status', 'videos', ['status'])
    op.create_index('idx_videos_feed', 'videos', ['status', 'is_public', 'created_at'])
    op.create_index('idx_videos_uploader_created', 'videos', ['uploader_id', 'created_at'])
    op.create_index('idx_videos_view_count', 'videos', ['view_count'])

    # Tags table
    op.create_table(
        'video_tags',
        sa.Column('video_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('tag', sa.String(64), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('video_id', 'tag'),
        sa.ForeignKeyConstraint(['video_id'], ['videos.video_id'], ondelete='CASCADE'),
    )
    op.create_index('ix_video_tags_tag', 'video_tags', ['tag'])

    # Likes table
    op.create_table(
        'video_likes',
        sa.Column('like_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('video_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('user_role', user_role, nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['video_id'], ['videos.video_id'], ondelete='CASCADE'),
        sa.UniqueConstraint('video_id', 'user_id', name='uq_video_likes_video_user'),
    )
    op.create_index('ix_video_likes_video_id', 'video_likes', ['video_id'])
    op.create_index('idx_video_likes_user_created', 'video_likes', ['user_id', 'created_at'])

    # Comments table
    op.create_table(
        'video_comments',
        sa.Column('comment_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('video_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('user_role', user_role, nullable=False),
        sa.Column('content', sa.String(500), nullable=False),
        sa.Column('parent_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('like_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['video_id'], ['videos.video_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_id'], ['video_comments.comment_id'], ondelete='CASCADE'),
    )
    op.create_index('ix_video_comments_user_id', 'video_comments', ['user_id'])
    op.create_index('ix_video_comments_parent_id', 'video_comments', ['parent_id'])
    op.create_index('idx_video_comments_video_created', 'video_comments', ['video_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('video_comments')
    op.drop_table('video_likes')
    op.drop_table('video_tags')
    op.drop_table('videos')
    op.execute('DROP TYPE IF EXISTS video_status')
    op.execute('DROP TYPE IF EXISTS user_role')
