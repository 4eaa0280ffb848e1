"""Initial schema: workspaces, members, API keys, feature docs, tickets, comments and activity.

Revision ID: 001
Revises:
Create Date: 2026-10-17

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

STATUS_VALUES = ('unclaimed', 'in_progress', 'done')
ACTOR_VALUES = ('user', 'agent', 'system')


def upgrade() -> None:
    op.create_table(
        'workspaces',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('docs', sa.Text),
        sa.Column('prefix', sa.String(5), nullable=False),
        sa.Column('ticket_counter', sa.Integer, nullable=False, server_default='0'),
        sa.Column('doc_counter', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('ticket_counter >= 0', name='ck_workspace_ticket_counter'),
        sa.CheckConstraint('doc_counter >= 0', name='ck_workspace_doc_counter'),
    )

    op.create_table(
        'workspace_members',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('workspace_id', sa.Uuid, sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('role', sa.Enum('owner', 'admin', 'member', name='member_role'), nullable=False, server_default='member'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('workspace_id', 'user_id', name='uq_workspace_member'),
    )
    op.create_index('ix_workspace_members_workspace_id', 'workspace_members', ['workspace_id'])
    op.create_index('ix_workspace_members_user_id', 'workspace_members', ['user_id'])

    op.create_table(
        'workspace_docs_versions',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('workspace_id', sa.Uuid, sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('docs', sa.Text, nullable=False, server_default=''),
        sa.Column('actor_type', sa.Enum(*ACTOR_VALUES, name='actor_type'), nullable=False),
        sa.Column('actor_id', sa.String(255), nullable=False),
        sa.Column('actor_display_name', sa.String(255)),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        'ix_workspace_docs_versions_workspace_created', 'workspace_docs_versions', ['workspace_id', 'created_at']
    )

    op.create_table(
        'api_keys',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('workspace_id', sa.Uuid, sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('key_hash', sa.String(64), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('role', sa.Enum('admin', 'agent', name='api_key_role'), nullable=False, server_default='agent'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_api_keys_workspace_id', 'api_keys', ['workspace_id'])
    op.create_index('ix_api_keys_key_hash', 'api_keys', ['key_hash'], unique=True)

    op.create_table(
        'feature_docs',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('workspace_id', sa.Uuid, sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('content', sa.Text, nullable=False, server_default=''),
        sa.Column('number', sa.Integer, nullable=False),
        sa.Column('status', sa.Enum(*STATUS_VALUES, name='doc_status'), nullable=False, server_default='unclaimed'),
        sa.Column('order', sa.Float, nullable=False),
        sa.Column('parent_doc_id', sa.Uuid, sa.ForeignKey('feature_docs.id', ondelete='SET NULL')),
        sa.Column('archived', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('workspace_id', 'number', name='uq_feature_doc_number'),
        sa.CheckConstraint('parent_doc_id IS NULL OR parent_doc_id != id', name='ck_feature_doc_not_own_parent'),
    )
    op.create_index('ix_feature_docs_workspace_id', 'feature_docs', ['workspace_id'])
    op.create_index('ix_feature_docs_parent_doc_id', 'feature_docs', ['parent_doc_id'])

    op.create_table(
        'tickets',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('workspace_id', sa.Uuid, sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('doc_id', sa.Uuid, sa.ForeignKey('feature_docs.id', ondelete='SET NULL')),
        sa.Column('number', sa.Integer, nullable=False),
        sa.Column('parent_id', sa.Uuid, sa.ForeignKey('tickets.id', ondelete='CASCADE')),
        sa.Column('order', sa.Float, nullable=False),
        sa.Column('archived', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text, nullable=False, server_default=''),
        sa.Column('status', sa.Enum(*STATUS_VALUES, name='ticket_status'), nullable=False, server_default='unclaimed'),
        sa.Column('owner_id', sa.String(255)),
        sa.Column('owner_type', sa.Enum('user', 'agent', name='owner_type')),
        sa.Column('owner_display_name', sa.String(255)),
        sa.Column('child_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('child_done_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('workspace_id', 'number', name='uq_ticket_number'),
        sa.CheckConstraint('parent_id IS NULL OR parent_id != id', name='ck_ticket_not_own_parent'),
        sa.CheckConstraint(
            "status != 'unclaimed' OR (owner_id IS NULL AND owner_type IS NULL AND owner_display_name IS NULL)",
            name='ck_ticket_unclaimed_has_no_owner',
        ),
        sa.CheckConstraint('child_count >= 0 AND child_done_count >= 0', name='ck_ticket_child_counts'),
    )
    op.create_index('ix_tickets_workspace_id', 'tickets', ['workspace_id'])
    op.create_index('ix_tickets_doc_id', 'tickets', ['doc_id'])
    op.create_index('ix_tickets_parent_id', 'tickets', ['parent_id'])
    op.create_index('ix_tickets_workspace_status', 'tickets', ['workspace_id', 'status'])

    op.create_table(
        'ticket_comments',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('workspace_id', sa.Uuid, sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('ticket_id', sa.Uuid, sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('body', sa.Text, nullable=False),
        sa.Column('author_type', sa.Enum(*ACTOR_VALUES, name='comment_author_type'), nullable=False),
        sa.Column('author_id', sa.String(255), nullable=False),
        sa.Column('author_display_name', sa.String(255)),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_ticket_comments_ticket_id', 'ticket_comments', ['ticket_id'])

    # ticket_id is not a foreign key: the audit trail outlives deleted tickets
    op.create_table(
        'ticket_activities',
        sa.Column('id', sa.BigInteger().with_variant(sa.Integer(), 'sqlite'), primary_key=True, autoincrement=True),
        sa.Column('workspace_id', sa.Uuid, sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('ticket_id', sa.Uuid, nullable=False),
        sa.Column('type', sa.Enum(
            'ticket_created', 'ticket_updated', 'ticket_status_changed',
            'ticket_assignment_changed', 'ticket_comment_added', 'ticket_deleted',
            name='activity_type',
        ), nullable=False),
        sa.Column('actor_type', sa.Enum(*ACTOR_VALUES, name='activity_actor_type'), nullable=False),
        sa.Column('actor_id', sa.String(255), nullable=False),
        sa.Column('actor_display_name', sa.String(255)),
        sa.Column('data', sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_ticket_activities_ticket_created', 'ticket_activities', ['ticket_id', 'created_at'])

    op.create_table(
        'user_profiles',
        sa.Column('user_id', sa.String(255), primary_key=True),
        sa.Column('email', sa.String(255)),
        sa.Column('name', sa.String(255)),
        sa.Column('image', sa.String(1024)),
        sa.Column('last_synced_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_user_profiles_email', 'user_profiles', ['email'])


def downgrade() -> None:
    op.drop_table('user_profiles')
    op.drop_table('ticket_activities')
    op.drop_table('ticket_comments')
    op.drop_table('tickets')
    op.drop_table('feature_docs')
    op.drop_table('api_keys')
    op.drop_table('workspace_docs_versions')
    op.drop_table('workspace_members')
    op.drop_table('workspaces')

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for enum_name in (
            'activity_type', 'activity_actor_type', 'comment_author_type', 'owner_type', 'ticket_status',
            'doc_status', 'api_key_role', 'actor_type', 'member_role',
        ):
            op.execute(f'DROP TYPE IF EXISTS {enum_name}')
