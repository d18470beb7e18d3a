"""Initial practice schema (firms, users, clients, compliance, documents, calendar, chat)

Revision ID: a1c4e7d2f9b3
Revises:
Create Date: 2026-10-18T09:14:27.518204
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1c4e7d2f9b3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUM_TYPES = (
    'userrole', 'userstatus', 'clienttype', 'compliancefrequency', 'taskstatus',
    'documentstatus', 'eventsource', 'conversationtype', 'notificationtype',
)


def upgrade() -> None:
    # --- firms ---
    op.create_table(
        'firms',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('gstin', sa.String(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gstin'),
    )
    op.create_index('ix_firms_name', 'firms', ['name'])
    op.create_index('ix_firms_created_at', 'firms', ['created_at'])

    # --- users ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', sa.Enum('SUPER_ADMIN', 'CA_ADMIN', 'CA_STAFF', 'CLIENT', name='userrole'), nullable=False),
        sa.Column('firm_id', sa.String(), sa.ForeignKey('firms.id'), nullable=True),
        sa.Column('status', sa.Enum('ACTIVE', 'INACTIVE', name='userstatus'), nullable=False, server_default='ACTIVE'),
        sa.Column('can_view_clients', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('can_edit_clients', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('can_access_documents', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('can_access_tasks', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('can_access_calendar', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('can_access_chat', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_firm_id', 'users', ['firm_id'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])
    op.create_index('idx_user_firm_role', 'users', ['firm_id', 'role'])

    # --- clients ---
    op.create_table(
        'clients',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('firm_id', sa.String(), sa.ForeignKey('firms.id'), nullable=False),
        sa.Column('primary_user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('type', sa.Enum('INDIVIDUAL', 'BUSINESS', name='clienttype'), nullable=False),
        sa.Column('pan', sa.String(), nullable=True),
        sa.Column('gstin', sa.String(), nullable=True),
        sa.Column('cin', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('primary_user_id'),
        sa.UniqueConstraint('firm_id', 'pan', name='uq_client_firm_pan'),
    )
    op.create_index('ix_clients_firm_id', 'clients', ['firm_id'])
    op.create_index('ix_clients_created_at', 'clients', ['created_at'])

    # --- compliance_types ---
    op.create_table(
        'compliance_types',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('code', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('frequency', sa.Enum('ANNUAL', 'MONTHLY', 'QUARTERLY', name='compliancefrequency'), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_compliance_types_code', 'compliance_types', ['code'], unique=True)

    # --- compliance_tasks ---
    op.create_table(
        'compliance_tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('firm_id', sa.String(), sa.ForeignKey('firms.id'), nullable=False),
        sa.Column('client_id', sa.String(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('compliance_type_id', sa.String(), sa.ForeignKey('compliance_types.id'), nullable=False),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'IN_PROGRESS', 'FILED', 'APPROVED', name='taskstatus'), nullable=False, server_default='PENDING'),
        sa.Column('assigned_to_user_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_by_user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_compliance_tasks_firm_id', 'compliance_tasks', ['firm_id'])
    op.create_index('ix_compliance_tasks_client_id', 'compliance_tasks', ['client_id'])
    op.create_index('ix_compliance_tasks_due_date', 'compliance_tasks', ['due_date'])
    op.create_index('ix_compliance_tasks_status', 'compliance_tasks', ['status'])
    op.create_index('ix_compliance_tasks_assigned_to_user_id', 'compliance_tasks', ['assigned_to_user_id'])
    op.create_index('idx_task_firm_client', 'compliance_tasks', ['firm_id', 'client_id'])
    op.create_index('idx_task_firm_status', 'compliance_tasks', ['firm_id', 'status'])

    # --- task_comments ---
    op.create_table(
        'task_comments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('compliance_tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('author_user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_comments_task_id', 'task_comments', ['task_id'])

    # --- document_folders ---
    op.create_table(
        'document_folders',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('firm_id', sa.String(), sa.ForeignKey('firms.id'), nullable=False),
        sa.Column('client_id', sa.String(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('financial_year', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('parent_folder_id', sa.String(), sa.ForeignKey('document_folders.id'), nullable=True),
        sa.Column('natural_key', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('natural_key'),
    )
    op.create_index('ix_document_folders_firm_id', 'document_folders', ['firm_id'])
    op.create_index('ix_document_folders_client_id', 'document_folders', ['client_id'])

    # --- documents ---
    op.create_table(
        'documents',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('folder_id', sa.String(), sa.ForeignKey('document_folders.id'), nullable=False),
        sa.Column('firm_id', sa.String(), sa.ForeignKey('firms.id'), nullable=False),
        sa.Column('client_id', sa.String(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('file_name', sa.String(), nullable=False),
        sa.Column('mime_type', sa.String(), nullable=False, server_default='application/octet-stream'),
        sa.Column('size', sa.BigInteger(), nullable=True, server_default='0'),
        sa.Column('storage_path', sa.String(), nullable=False),
        sa.Column('version_group_id', sa.String(), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.Enum('REQUESTED', 'UPLOADED', 'REVIEWED', 'APPROVED', name='documentstatus'), nullable=False, server_default='UPLOADED'),
        sa.Column('uploaded_by_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('version_group_id', 'version_number', name='uq_document_version'),
        sa.UniqueConstraint('folder_id', 'file_name', 'version_number', name='uq_document_folder_name_version'),
    )
    op.create_index('ix_documents_folder_id', 'documents', ['folder_id'])
    op.create_index('ix_documents_firm_id', 'documents', ['firm_id'])
    op.create_index('ix_documents_client_id', 'documents', ['client_id'])
    op.create_index('ix_documents_version_group_id', 'documents', ['version_group_id'])
    op.create_index('ix_documents_uploaded_at', 'documents', ['uploaded_at'])
    op.create_index('idx_document_folder_name', 'documents', ['folder_id', 'file_name'])

    # --- calendar_events ---
    op.create_table(
        'calendar_events',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('firm_id', sa.String(), sa.ForeignKey('firms.id'), nullable=False),
        sa.Column('client_id', sa.String(), sa.ForeignKey('clients.id'), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('source', sa.Enum('MANUAL', 'SYSTEM', name='eventsource'), nullable=False, server_default='MANUAL'),
        sa.Column('related_task_id', sa.String(), sa.ForeignKey('compliance_tasks.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_calendar_events_firm_id', 'calendar_events', ['firm_id'])
    op.create_index('ix_calendar_events_client_id', 'calendar_events', ['client_id'])
    op.create_index('ix_calendar_events_start_at', 'calendar_events', ['start_at'])

    # --- conversations / messages / message_reads ---
    op.create_table(
        'conversations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('firm_id', sa.String(), sa.ForeignKey('firms.id'), nullable=False),
        sa.Column('client_id', sa.String(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('type', sa.Enum('INTERNAL', 'CA_CLIENT', name='conversationtype'), nullable=False),
        sa.Column('related_document_id', sa.String(), sa.ForeignKey('documents.id', ondelete='SET NULL'), nullable=True),
        sa.Column('related_task_id', sa.String(), sa.ForeignKey('compliance_tasks.id', ondelete='SET NULL'), nullable=True),
        sa.Column('correlation_key', sa.String(), nullable=False),
        sa.Column('created_by_user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('correlation_key'),
    )
    op.create_index('ix_conversations_firm_id', 'conversations', ['firm_id'])
    op.create_index('ix_conversations_client_id', 'conversations', ['client_id'])
    op.create_index('ix_conversations_created_at', 'conversations', ['created_at'])

    op.create_table(
        'messages',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('conversation_id', sa.String(), sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_messages_conversation_id', 'messages', ['conversation_id'])
    op.create_index('ix_messages_created_at', 'messages', ['created_at'])

    op.create_table(
        'message_reads',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('message_id', sa.String(), sa.ForeignKey('messages.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('message_id', 'user_id', name='uq_message_read'),
    )
    op.create_index('ix_message_reads_message_id', 'message_reads', ['message_id'])
    op.create_index('ix_message_reads_user_id', 'message_reads', ['user_id'])

    # --- notifications ---
    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('type', sa.Enum('DEADLINE_REMINDER', 'DOCUMENT_UPLOADED', 'FILING_COMPLETED', 'TASK_ASSIGNED', name='notificationtype'), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])
    op.create_index('idx_notification_user_read', 'notifications', ['user_id', 'read_at'])

    # --- audit_logs ---
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('firm_id', sa.String(), sa.ForeignKey('firms.id'), nullable=True),
        sa.Column('resource_type', sa.String(), nullable=True),
        sa.Column('resource_id', sa.String(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_event_type', 'audit_logs', ['event_type'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_firm_id', 'audit_logs', ['firm_id'])
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('idx_audit_firm_timestamp', 'audit_logs', ['firm_id', 'timestamp'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('notifications')
    op.drop_table('message_reads')
    op.drop_table('messages')
    op.drop_table('conversations')
    op.drop_table('calendar_events')
    op.drop_table('documents')
    op.drop_table('document_folders')
    op.drop_table('task_comments')
    op.drop_table('compliance_tasks')
    op.drop_table('compliance_types')
    op.drop_table('clients')
    op.drop_table('users')
    op.drop_table('firms')
    for enum_name in ENUM_TYPES:
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
