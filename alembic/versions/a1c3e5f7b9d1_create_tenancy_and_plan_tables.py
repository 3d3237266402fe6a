"""Create tenancy and plan tables

Revision ID: a1c3e5f7b9d1
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a1c3e5f7b9d1'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
    ]


def upgrade() -> None:
    # Tenancy graph
    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('uuid', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('current_organization_id', sa.Integer(), nullable=True),
        sa.Column('current_workspace_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('uuid'),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table('organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('uuid', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('market', sa.String(length=50), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('uuid'),
    )
    op.create_index('ix_organizations_id', 'organizations', ['id'])
    op.create_index('ix_organizations_slug', 'organizations', ['slug'], unique=True)
    op.create_index('ix_organizations_owner_id', 'organizations', ['owner_id'])

    op.create_table('workspaces',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('uuid', sa.String(length=36), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('uuid'),
        sa.UniqueConstraint('organization_id', 'slug', name='uq_workspaces_organization_slug'),
    )
    op.create_index('ix_workspaces_id', 'workspaces', ['id'])
    op.create_index('ix_workspaces_organization_id', 'workspaces', ['organization_id'])

    op.create_table('organization_users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('capabilities', sa.JSON(), nullable=True),
        sa.Column('joined_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column('invited_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['invited_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'user_id', name='uq_organization_users_org_user'),
    )
    op.create_index('ix_organization_users_id', 'organization_users', ['id'])
    op.create_index('ix_organization_users_organization_id', 'organization_users', ['organization_id'])
    op.create_index('ix_organization_users_user_id', 'organization_users', ['user_id'])

    op.create_table('workspace_users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workspace_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('capabilities', sa.JSON(), nullable=True),
        sa.Column('joined_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column('invited_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['invited_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('workspace_id', 'user_id', name='uq_workspace_users_workspace_user'),
    )
    op.create_index('ix_workspace_users_id', 'workspace_users', ['id'])
    op.create_index('ix_workspace_users_workspace_id', 'workspace_users', ['workspace_id'])
    op.create_index('ix_workspace_users_user_id', 'workspace_users', ['user_id'])

    # Plan catalog
    op.create_table('plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('uuid', sa.String(length=36), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('max_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('market', sa.String(length=50), nullable=False),
        sa.Column('billing_cycle', sa.String(length=20), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('group', sa.String(length=100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('uuid'),
    )
    op.create_index('ix_plans_id', 'plans', ['id'])
    op.create_index('ix_plans_slug', 'plans', ['slug'], unique=True)
    op.create_index('ix_plans_group', 'plans', ['group'])

    op.create_table('plan_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=False),
        sa.Column('feature', sa.String(length=100), nullable=False),
        sa.Column('value', sa.String(length=255), nullable=True),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('tracking_scope', sa.String(length=20), nullable=False),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('plan_id', 'feature', name='uq_plan_limits_plan_feature'),
    )
    op.create_index('ix_plan_limits_id', 'plan_limits', ['id'])
    op.create_index('ix_plan_limits_plan_id', 'plan_limits', ['plan_id'])
    op.create_index('ix_plan_limits_feature', 'plan_limits', ['feature'])

    op.create_table('plan_features',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('feature', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('tracking_scope', sa.String(length=20), nullable=False),
        sa.Column('period', sa.String(length=20), nullable=False),
        sa.Column('display_order', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_plan_features_id', 'plan_features', ['id'])
    op.create_index('ix_plan_features_feature', 'plan_features', ['feature'], unique=True)

    op.create_table('organization_plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_by', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ends_at', sa.DateTime(), nullable=True),
        sa.Column('trial_start', sa.DateTime(), nullable=True),
        sa.Column('trial_end', sa.DateTime(), nullable=True),
        sa.Column('billing_cycle', sa.String(length=20), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('charging_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('charging_currency', sa.String(length=3), nullable=True),
        sa.Column('purchase_uuid', sa.String(length=100), nullable=True),
        sa.Column('checkout_uuid', sa.String(length=100), nullable=True),
        sa.Column('price_uuid', sa.String(length=100), nullable=True),
        sa.Column('extra', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['revoked_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_organization_plans_id', 'organization_plans', ['id'])
    op.create_index('ix_organization_plans_organization_id', 'organization_plans', ['organization_id'])
    op.create_index('ix_organization_plans_plan_id', 'organization_plans', ['plan_id'])
    op.create_index('ix_organization_plans_status', 'organization_plans', ['status'])

    # Usage ledger
    op.create_table('usage_tracking',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('workspace_id', sa.Integer(), nullable=True),
        sa.Column('feature', sa.String(length=100), nullable=False),
        sa.Column('current_usage', sa.Integer(), nullable=False),
        sa.Column('period_type', sa.String(length=20), nullable=False),
        sa.Column('period_starts_at', sa.DateTime(), nullable=True),
        sa.Column('period_ends_at', sa.DateTime(), nullable=True),
        sa.Column('period_key', sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'period_key', name='uq_usage_tracking_period'),
        sa.CheckConstraint('current_usage >= 0', name='ck_usage_tracking_non_negative'),
    )
    op.create_index('ix_usage_tracking_id', 'usage_tracking', ['id'])
    op.create_index('ix_usage_tracking_organization_id', 'usage_tracking', ['organization_id'])
    op.create_index('ix_usage_tracking_workspace_id', 'usage_tracking', ['workspace_id'])
    op.create_index('ix_usage_tracking_feature', 'usage_tracking', ['feature'])

    op.create_table('workspace_feature_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('workspace_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('feature', sa.String(length=100), nullable=False),
        sa.Column('allocated', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id']),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('workspace_id', 'feature', name='uq_workspace_feature_limits_workspace_feature'),
    )
    op.create_index('ix_workspace_feature_limits_id', 'workspace_feature_limits', ['id'])
    op.create_index('ix_workspace_feature_limits_workspace_id', 'workspace_feature_limits', ['workspace_id'])
    op.create_index('ix_workspace_feature_limits_organization_id', 'workspace_feature_limits', ['organization_id'])

    op.create_table('organization_feature_overrides',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('feature', sa.String(length=100), nullable=False),
        sa.Column('value', sa.String(length=255), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['approved_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'feature', name='uq_organization_feature_overrides_org_feature'),
    )
    op.create_index('ix_organization_feature_overrides_id', 'organization_feature_overrides', ['id'])
    op.create_index(
        'ix_organization_feature_overrides_organization_id', 'organization_feature_overrides', ['organization_id']
    )


def downgrade() -> None:
    op.drop_table('organization_feature_overrides')
    op.drop_table('workspace_feature_limits')
    op.drop_table('usage_tracking')
    op.drop_table('organization_plans')
    op.drop_table('plan_features')
    op.drop_table('plan_limits')
    op.drop_table('plans')
    op.drop_table('workspace_users')
    op.drop_table('organization_users')
    op.drop_table('workspaces')
    op.drop_table('organizations')
    op.drop_table('users')
