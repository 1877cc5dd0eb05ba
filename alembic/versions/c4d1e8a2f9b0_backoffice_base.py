"""backoffice_base

Revision ID: c4d1e8a2f9b0
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c4d1e8a2f9b0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Accounts, role records, investments, configuration, audit trail and upgrade requests"""
    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('permission_type', sa.String(64), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
    )
    op.create_index('ix_permissions_permission_type', 'permissions', ['permission_type'], unique=True)

    op.create_table(
        'user_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='GUEST'),
        sa.Column('phone_number', sa.String(20), nullable=True),
        sa.Column('address', sa.String(500), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_date', sa.DateTime(), nullable=False),
        sa.Column('last_modified_date', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_user_accounts_email', 'user_accounts', ['email'], unique=True)
    op.create_index('ix_user_accounts_role', 'user_accounts', ['role'])

    op.create_table(
        'user_account_permissions',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user_accounts.id'), primary_key=True),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id'), primary_key=True),
    )

    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.String(), nullable=False, unique=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('user_accounts.id'), nullable=False, unique=True),
        sa.Column('location_id', sa.String(), nullable=False, server_default='HOMEBASE'),
        sa.Column('department', sa.String(), nullable=False, server_default='GENERAL'),
        sa.Column('hire_date', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('client_id', sa.String(), nullable=False),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('user_accounts.id'), nullable=False, unique=True),
        sa.Column('assigned_employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=True),
        sa.Column('registration_date', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_clients_client_id', 'clients', ['client_id'])
    op.create_index('ix_clients_assigned_employee_id', 'clients', ['assigned_employee_id'])

    op.create_table(
        'admins',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('admin_id', sa.String(), nullable=False, unique=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('user_accounts.id'), nullable=False, unique=True),
        sa.Column('super_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('system_access_level', sa.String(), nullable=False, server_default='FULL'),
        sa.Column('department', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )

    op.create_table(
        'guests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('guest_id', sa.String(), nullable=False, unique=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('user_accounts.id'), nullable=False, unique=True),
        sa.Column('registration_date', sa.DateTime(), nullable=False),
        sa.Column('last_activity_date', sa.DateTime(), nullable=True),
        sa.Column('interest_area', sa.String(), nullable=True),
        sa.Column('referral_source', sa.String(), nullable=True),
        sa.Column('upgrade_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.create_table(
        'investments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('investment_id', sa.String(), nullable=False, unique=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('investment_type', sa.String(), nullable=True),
        sa.Column('ticker_symbol', sa.String(10), nullable=True),
        sa.Column('shares', sa.Numeric(18, 6), nullable=True),
        sa.Column('purchase_price_per_share', sa.Numeric(15, 2), nullable=True),
        sa.Column('current_price_per_share', sa.Numeric(15, 2), nullable=True),
        sa.Column('amount', sa.Numeric(15, 2), nullable=True),
        sa.Column('current_value', sa.Numeric(15, 2), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('risk_level', sa.String(20), nullable=False, server_default='MEDIUM'),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=True),
        sa.Column('created_by_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=True),
        sa.Column('created_date', sa.DateTime(), nullable=False),
        sa.Column('last_modified_at', sa.DateTime(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
    )
    op.create_index('ix_investments_ticker_symbol', 'investments', ['ticker_symbol'])
    op.create_index('ix_investments_client_id', 'investments', ['client_id'])

    op.create_table(
        'system_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('config_key', sa.String(), nullable=False, unique=True),
        sa.Column('config_value', sa.String(), nullable=True),
        sa.Column('maintenance_mode', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('session_timeout', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('backup_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('backup_schedule', sa.String(), nullable=False, server_default='DAILY'),
        sa.Column('backup_retention_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_modified', sa.DateTime(), nullable=True),
        sa.Column('modified_by', sa.String(), nullable=True),
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('user_email', sa.String(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=True),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('old_value', sa.Text(), nullable=True),
        sa.Column('new_value', sa.Text(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('error_message', sa.Text(), nullable=True),
    )
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])

    op.create_table(
        'guest_upgrade_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('user_accounts.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('request_date', sa.DateTime(), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('additional_info', sa.JSON(), nullable=False),
        sa.Column('processed_date', sa.DateTime(), nullable=True),
        sa.Column('processed_by', sa.String(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
    )
    op.create_index('ix_guest_upgrade_requests_account_id', 'guest_upgrade_requests', ['account_id'])
    op.create_index('ix_guest_upgrade_requests_status', 'guest_upgrade_requests', ['status'])
    # At most one PENDING request per account
    op.create_index(
        'uq_guest_upgrade_requests_pending_account',
        'guest_upgrade_requests',
        ['account_id'],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user_accounts.id'), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('notification_type', sa.String(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])


def downgrade() -> None:
    """Drop the back-office schema"""
    op.drop_table('notifications')
    op.drop_index('uq_guest_upgrade_requests_pending_account', table_name='guest_upgrade_requests')
    op.drop_table('guest_upgrade_requests')
    op.drop_table('audit_logs')
    op.drop_table('system_configs')
    op.drop_table('investments')
    op.drop_table('guests')
    op.drop_table('admins')
    op.drop_table('clients')
    op.drop_table('employees')
    op.drop_table('user_account_permissions')
    op.drop_table('user_accounts')
    op.drop_table('permissions')
