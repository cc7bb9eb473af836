"""Initial schema: cities, pois, heat_cells, jobs

Revision ID: 3f9c2a1d7b40
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f9c2a1d7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')
ACTIVE_JOBS = sa.text("status IN ('pending', 'running')")


def upgrade() -> None:
    op.create_table(
        'cities',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('slug', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('country', sa.String(2), nullable=True),
        sa.Column('min_lat', sa.Float(), nullable=False),
        sa.Column('max_lat', sa.Float(), nullable=False),
        sa.Column('min_lng', sa.Float(), nullable=False),
        sa.Column('max_lng', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'pois',
        sa.Column('id', sa.Text(), primary_key=True),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('lat', sa.Float(), nullable=False),
        sa.Column('lng', sa.Float(), nullable=False),
        sa.Column('source', sa.String(50), nullable=True),
        sa.Column('tags', JSON_TYPE, nullable=True),
        sa.Column('imported_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_pois_location', 'pois', ['lat', 'lng'])
    op.create_index('ix_pois_category_location', 'pois', ['category', 'lat', 'lng'])

    op.create_table(
        'heat_cells',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('lat', sa.Float(), nullable=False),
        sa.Column('lng', sa.Float(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('grid_step', sa.Float(), nullable=False),
        sa.Column('city_id', sa.Integer(), sa.ForeignKey('cities.id', ondelete='SET NULL'), nullable=True),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('lat', 'lng', 'grid_step', name='uq_heat_cells_coords_step'),
    )
    op.create_index('ix_heat_cells_bounds', 'heat_cells', ['lat', 'lng'])
    op.create_index('ix_heat_cells_city_id', 'heat_cells', ['city_id'])

    op.create_table(
        'jobs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('city_id', sa.Integer(), sa.ForeignKey('cities.id', ondelete='SET NULL'), nullable=True),
        sa.Column('grid_step', sa.Float(), nullable=True),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_items', sa.Integer(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('metadata', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('heartbeat_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_jobs_type', 'jobs', ['type'])
    op.create_index('ix_jobs_status', 'jobs', ['status'])
    op.create_index(
        'uq_jobs_active_city_step',
        'jobs',
        ['city_id', 'grid_step'],
        unique=True,
        postgresql_where=ACTIVE_JOBS,
        sqlite_where=ACTIVE_JOBS,
    )


def downgrade() -> None:
    op.drop_index('uq_jobs_active_city_step', table_name='jobs')
    op.drop_index('ix_jobs_status', table_name='jobs')
    op.drop_index('ix_jobs_type', table_name='jobs')
    op.drop_table('jobs')
    op.drop_index('ix_heat_cells_city_id', table_name='heat_cells')
    op.drop_index('ix_heat_cells_bounds', table_name='heat_cells')
    op.drop_table('heat_cells')
    op.drop_index('ix_pois_category_location', table_name='pois')
    op.drop_index('ix_pois_location', table_name='pois')
    op.drop_table('pois')
    op.drop_table('cities')
