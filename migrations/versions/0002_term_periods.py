"""term periods + optional term_period_id on programs/lessons

Revision ID: 0002
Revises: 0001
Create Date: 2025-10-01

Колонки term_period_id опциональны: код работает и на базе без этой ревизии.
"""
from alembic import op
import sqlalchemy as sa

revision = '0002'
down_revision = '0001'
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('term_periods',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('starts_on', sa.Date(), nullable=True),
        sa.Column('ends_on', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('0')),
    )
    op.create_index('ix_term_periods_org_active', 'term_periods', ['organization_id', 'is_active'])

    with op.batch_alter_table('programs') as b:
        b.add_column(sa.Column('term_period_id', sa.Integer(), nullable=True))
    with op.batch_alter_table('lessons') as b:
        b.add_column(sa.Column('term_period_id', sa.Integer(), nullable=True))

def downgrade():
    with op.batch_alter_table('lessons') as b:
        b.drop_column('term_period_id')
    with op.batch_alter_table('programs') as b:
        b.drop_column('term_period_id')
    op.drop_index('ix_term_periods_org_active', table_name='term_periods')
    op.drop_table('term_periods')
