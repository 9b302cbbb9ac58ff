"""programs, lessons, notifications

Revision ID: 0001
Revises: 
Create Date: 2025-09-05

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('organizations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('owner_id', sa.String(64), nullable=True),
        sa.Column('term_periods_enabled', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('billing_account_id', sa.String(128), nullable=True),
    )
    op.create_index('ix_organizations_owner_id', 'organizations', ['owner_id'])

    op.create_table('organization_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('role', sa.String(32), nullable=False, server_default='member'),
        sa.UniqueConstraint('organization_id', 'user_id', name='uq_org_member_user'),
    )

    op.create_table('user_roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('role', sa.String(32), nullable=False),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
    )
    op.create_index('ix_user_roles_user_org', 'user_roles', ['user_id', 'organization_id'])

    op.create_table('organization_followers',
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_id', sa.String(64), primary_key=True),
    )

    op.create_table('programs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.String(16), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('style', sa.String(120), nullable=True),
        sa.Column('level', sa.String(120), nullable=True),
        sa.Column('min_age', sa.Integer(), nullable=True),
        sa.Column('max_age', sa.Integer(), nullable=True),
        sa.Column('price', sa.Float(), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('waitlist_enabled', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('show_capacity_to_users', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('is_trial', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('accepts_payment', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('accepts_class_passes', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('linked_form_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_programs_organization_id', 'programs', ['organization_id'])

    op.create_table('recurring_schedules',
        sa.Column('program_id', sa.Integer(), sa.ForeignKey('programs.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('weekday', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('season_start', sa.Date(), nullable=True),
        sa.Column('season_end', sa.Date(), nullable=True),
    )

    op.create_table('single_occurrence_schedules',
        sa.Column('program_id', sa.Integer(), sa.ForeignKey('programs.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
    )

    op.create_table('program_locations',
        sa.Column('program_id', sa.Integer(), sa.ForeignKey('programs.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('location_id', sa.String(64), primary_key=True),
    )

    op.create_table('program_teachers',
        sa.Column('program_id', sa.Integer(), sa.ForeignKey('programs.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('teacher_id', sa.String(64), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assigned_by', sa.String(64), nullable=True),
    )

    op.create_table('lessons',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('program_id', sa.Integer(), sa.ForeignKey('programs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('location_id', sa.String(64), nullable=True),
        sa.Column('teacher_id', sa.String(64), nullable=True),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
    )
    op.create_index('ix_lessons_program_date', 'lessons', ['program_id', 'date'])

    op.create_table('enrollments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('program_id', sa.Integer(), sa.ForeignKey('programs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_enrollments_program_id', 'enrollments', ['program_id'])

    op.create_table('notification_preferences',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('category', sa.String(32), nullable=False),
        sa.Column('disable_all', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('channel', sa.String(16), nullable=False, server_default='push'),
        sa.Column('scope', sa.String(16), nullable=True),
        sa.UniqueConstraint('user_id', 'category', name='uq_notification_pref_user_category'),
    )
    op.create_index('ix_notification_preferences_user_id', 'notification_preferences', ['user_id'])

    op.create_table('notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('type', sa.String(32), nullable=False, server_default='info'),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('action_type', sa.String(64), nullable=True),
        sa.Column('action_data', sa.JSON(), nullable=True),
        sa.Column('url', sa.String(255), nullable=True),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

def downgrade():
    op.drop_table('notifications')
    op.drop_table('notification_preferences')
    op.drop_table('enrollments')
    op.drop_index('ix_lessons_program_date', table_name='lessons')
    op.drop_table('lessons')
    op.drop_table('program_teachers')
    op.drop_table('program_locations')
    op.drop_table('single_occurrence_schedules')
    op.drop_table('recurring_schedules')
    op.drop_table('programs')
    op.drop_table('organization_followers')
    op.drop_table('user_roles')
    op.drop_table('organization_members')
    op.drop_index('ix_organizations_owner_id', table_name='organizations')
    op.drop_table('organizations')
