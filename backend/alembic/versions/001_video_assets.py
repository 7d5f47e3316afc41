"""Video assets catalog migration.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'video_assets',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('raw_asset_ref', sa.String(64), nullable=True),
        # json, not jsonb: key order is the rendition order
        sa.Column('rendition_map', sa.JSON(), nullable=False, server_default=sa.text("'{}'::json")),
        sa.Column('original_width', sa.Integer(), nullable=True),
        sa.Column('original_height', sa.Integer(), nullable=True),
        sa.Column('transcoding_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('is_transcoded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('duration', sa.String(20), nullable=False, server_default=''),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "transcoding_status IN ('pending', 'processing', 'completed', 'failed')",
            name='ck_video_assets_transcoding_status',
        ),
    )

    op.create_index('ix_video_assets_transcoding_status', 'video_assets', ['transcoding_status'])


def downgrade() -> None:
    op.drop_index('ix_video_assets_transcoding_status')
    op.drop_table('video_assets')
