"""Create contacts table

Revision ID: 0001_create_contacts
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_create_contacts'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'contacts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('phone_number', sa.String(length=50), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('linked_id', sa.Integer(), nullable=True),
        sa.Column('link_precedence', sa.String(length=20), nullable=False, server_default='primary'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['linked_id'], ['contacts.id'], ),
        sa.CheckConstraint("link_precedence IN ('primary', 'secondary')", name='ck_contacts_link_precedence'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_contacts_email'), 'contacts', ['email'], unique=False)
    op.create_index(op.f('ix_contacts_phone_number'), 'contacts', ['phone_number'], unique=False)
    op.create_index(op.f('ix_contacts_linked_id'), 'contacts', ['linked_id'], unique=False)
    op.create_index(op.f('ix_contacts_link_precedence'), 'contacts', ['link_precedence'], unique=False)
    op.create_index('ix_contacts_created_at_id', 'contacts', ['created_at', 'id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_contacts_created_at_id', table_name='contacts')
    op.drop_index(op.f('ix_contacts_link_precedence'), table_name='contacts')
    op.drop_index(op.f('ix_contacts_linked_id'), table_name='contacts')
    op.drop_index(op.f('ix_contacts_phone_number'), table_name='contacts')
    op.drop_index(op.f('ix_contacts_email'), table_name='contacts')
    op.drop_table('contacts')
