"""initial_schema

Revision ID: 5c1e0a7d3b21
Revises:
Create Date: 2026-03-01 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c1e0a7d3b21'
down_revision = None
branch_labels = None
depends_on = None


def _catalog_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Text(), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('access_roles', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'invitations',
        sa.Column('id', sa.Text(), primary_key=True),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('role', sa.Text(), nullable=False),
        sa.Column('company_name', sa.Text(), nullable=True),
        sa.Column('organization_id', sa.Text(), nullable=True),
        sa.Column('inviter_id', sa.Text(), nullable=False),
        sa.Column('inviter_name', sa.Text(), nullable=False),
        sa.Column('inviter_company', sa.Text(), nullable=True),
        sa.Column('token', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('pending_slot', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('accepted_uid', sa.Text(), nullable=True),
        sa.Column('version', sa.BigInteger(), nullable=False, server_default='0'),
        sa.UniqueConstraint('token', name='uq_invitations_token'),
        # One pending invitation per (email, inviter): pending_slot is NULL once consumed
        sa.UniqueConstraint('email', 'inviter_id', 'pending_slot', name='uq_invitations_one_pending'),
    )
    op.create_index('idx_invitations_inviter_created', 'invitations', ['inviter_id', 'created_at'])

    op.create_table(
        'users',
        sa.Column('uid', sa.Text(), primary_key=True),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('display_name', sa.Text(), nullable=False),
        sa.Column('role', sa.Text(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('distributor_id', sa.Text(), nullable=True),
        sa.Column('is_distributor_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('managed_users', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('version', sa.BigInteger(), nullable=False, server_default='0'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )
    op.create_index('idx_users_distributor', 'users', ['distributor_id'])

    op.create_table(
        'organizations',
        sa.Column('id', sa.Text(), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('company_name', sa.Text(), nullable=False),
        sa.Column('address', sa.Text(), nullable=False, server_default=''),
        sa.Column('contact_email', sa.Text(), nullable=False, server_default=''),
        sa.Column('contact_phone', sa.Text(), nullable=False, server_default=''),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('team_members', sa.JSON(), nullable=False),
        sa.Column('admin_members', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.BigInteger(), nullable=False, server_default='0'),
    )

    op.create_table('categories', *_catalog_columns())
    op.create_table('product_types', *_catalog_columns())
    op.create_table(
        'languages',
        *_catalog_columns(),
        sa.Column('code', sa.Text(), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_table(
        'products',
        *_catalog_columns(),
        sa.Column('reference', sa.Text(), nullable=True),
        sa.Column('category_id', sa.Text(), nullable=True),
        sa.Column('product_type_id', sa.Text(), nullable=True),
    )
    op.create_table(
        'documents',
        *_catalog_columns(),
        sa.Column('file_url', sa.Text(), nullable=False),
        sa.Column('file_type', sa.Text(), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('version', sa.Text(), nullable=False, server_default='1.0'),
        sa.Column('uploaded_by', sa.Text(), nullable=True),
        sa.Column('category_id', sa.Text(), nullable=True),
        sa.Column('product_type_id', sa.Text(), nullable=True),
        sa.Column('language_id', sa.Text(), nullable=True),
        sa.Column('product_id', sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('documents')
    op.drop_table('products')
    op.drop_table('languages')
    op.drop_table('product_types')
    op.drop_table('categories')
    op.drop_table('organizations')
    op.drop_index('idx_users_distributor', table_name='users')
    op.drop_table('users')
    op.drop_index('idx_invitations_inviter_created', table_name='invitations')
    op.drop_table('invitations')
