"""create course access tables

Revision ID: 3c9e51a0d2b7
Revises:
Create Date: 2026-09-28 10:05:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c9e51a0d2b7'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Courses are owned by the catalog; this service only reads them
    op.create_table('courses',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('title', sa.String(length=255), nullable=False),
    sa.Column('is_free', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('published', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_courses_published', 'courses', ['published'], unique=False)

    op.create_table('access_codes',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('code', sa.String(length=14), nullable=False),
    sa.Column('course_id', sa.Uuid(), nullable=False),
    sa.Column('is_used', sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column('used_by', sa.String(length=64), nullable=True),
    sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_by', sa.String(length=64), nullable=False),
    sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='RESTRICT'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('code')
    )
    op.create_index('idx_access_codes_course', 'access_codes', ['course_id'], unique=False)
    op.create_index('idx_access_codes_created_at', 'access_codes', ['created_at'], unique=False)

    # The composite unique constraint is what collapses concurrent enrollments
    op.create_table('enrollments',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('user_id', sa.String(length=64), nullable=False),
    sa.Column('course_id', sa.Uuid(), nullable=False),
    sa.Column('enrolled_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='RESTRICT'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('user_id', 'course_id', name='uq_enrollments_user_course')
    )
    op.create_index('idx_enrollments_course', 'enrollments', ['course_id'], unique=False)


def downgrade() -> None:
    # Drop indexes
    op.drop_index('idx_enrollments_course', table_name='enrollments')
    op.drop_index('idx_access_codes_created_at', table_name='access_codes')
    op.drop_index('idx_access_codes_course', table_name='access_codes')
    op.drop_index('idx_courses_published', table_name='courses')

    # Drop tables
    op.drop_table('enrollments')
    op.drop_table('access_codes')
    op.drop_table('courses')
