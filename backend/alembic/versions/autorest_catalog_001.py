"""auto_rest_catalog

Revision ID: autorest_catalog_001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'autorest_catalog_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'exposed_entities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=True),
        sa.Column('service_id', sa.String(length=64), nullable=False),
        sa.Column('connection_id', sa.String(length=64), nullable=True),
        sa.Column('database_name', sa.String(length=255), nullable=True),
        sa.Column('schema_name', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False, server_default='TABLE'),
        sa.Column('primary_key', sa.String(length=255), nullable=False, server_default='id'),
        sa.Column('default_sort', sa.JSON(), nullable=True),
        sa.Column('path_slug', sa.String(length=255), nullable=False),
        sa.Column('allow_read', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('allow_create', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('allow_update', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('allow_delete', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('service_id', 'name', name='uq_exposed_entities_service_name'),
        sa.UniqueConstraint('service_id', 'path_slug', name='uq_exposed_entities_service_slug'),
    )
    op.create_index(op.f('ix_exposed_entities_id'), 'exposed_entities', ['id'], unique=False)
    op.create_index(op.f('ix_exposed_entities_organization_id'), 'exposed_entities', ['organization_id'], unique=False)
    op.create_index(op.f('ix_exposed_entities_service_id'), 'exposed_entities', ['service_id'], unique=False)

    op.create_table(
        'field_policies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.String(length=64), nullable=True),
        sa.Column('masked_fields', sa.JSON(), nullable=False),
        sa.Column('include_fields', sa.JSON(), nullable=True),
        sa.Column('exclude_fields', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['entity_id'], ['exposed_entities.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entity_id', 'role_id', name='uq_field_policies_entity_role'),
    )
    op.create_index(op.f('ix_field_policies_id'), 'field_policies', ['id'], unique=False)
    op.create_index(op.f('ix_field_policies_entity_id'), 'field_policies', ['entity_id'], unique=False)

    op.create_table(
        'row_policies',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.String(length=64), nullable=True),
        sa.Column('filter_template', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['entity_id'], ['exposed_entities.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entity_id', 'role_id', name='uq_row_policies_entity_role'),
    )
    op.create_index(op.f('ix_row_policies_id'), 'row_policies', ['id'], unique=False)
    op.create_index(op.f('ix_row_policies_entity_id'), 'row_policies', ['entity_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_row_policies_entity_id'), table_name='row_policies')
    op.drop_index(op.f('ix_row_policies_id'), table_name='row_policies')
    op.drop_table('row_policies')
    op.drop_index(op.f('ix_field_policies_entity_id'), table_name='field_policies')
    op.drop_index(op.f('ix_field_policies_id'), table_name='field_policies')
    op.drop_table('field_policies')
    op.drop_index(op.f('ix_exposed_entities_service_id'), table_name='exposed_entities')
    op.drop_index(op.f('ix_exposed_entities_organization_id'), table_name='exposed_entities')
    op.drop_index(op.f('ix_exposed_entities_id'), table_name='exposed_entities')
    op.drop_table('exposed_entities')
