"""Initial import pipeline schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


IMPORT_STATUSES = ('pending', 'uploaded', 'analyzing', 'processing', 'completed', 'error')


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_organizations_id'), 'organizations', ['id'], unique=False)

    op.create_table(
        'data_imports',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('original_filename', sa.String(length=500), nullable=False),
        sa.Column('storage_path', sa.String(length=1000), nullable=True),
        sa.Column('file_type', sa.String(length=10), nullable=True),
        sa.Column('table_name', sa.String(length=63), nullable=True),
        sa.Column('status', sa.Enum(*IMPORT_STATUSES, name='importstatus'), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('row_count', sa.Integer(), nullable=True),
        sa.Column('context', sa.Text(), nullable=True),
        sa.Column('data_quality', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE')
    )
    op.create_index(op.f('ix_data_imports_id'), 'data_imports', ['id'], unique=False)
    op.create_index(op.f('ix_data_imports_organization_id'), 'data_imports', ['organization_id'], unique=False)
    op.create_index('idx_data_imports_org_table', 'data_imports', ['organization_id', 'table_name'], unique=False)

    op.create_table(
        'column_metadata',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('import_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('original_name', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('data_type', sa.String(length=20), nullable=False),
        sa.Column('sample_values', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('statistics', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['import_id'], ['data_imports.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('import_id', 'original_name', name='uq_column_metadata_import_name')
    )
    op.create_index(op.f('ix_column_metadata_id'), 'column_metadata', ['id'], unique=False)
    op.create_index(op.f('ix_column_metadata_import_id'), 'column_metadata', ['import_id'], unique=False)

    op.create_table(
        'import_rows',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('import_id', sa.Integer(), nullable=False),
        sa.Column('row_number', sa.Integer(), nullable=False),
        sa.Column('data', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['import_id'], ['data_imports.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('import_id', 'row_number', name='uq_import_rows_import_row_number')
    )
    op.create_index(op.f('ix_import_rows_import_id'), 'import_rows', ['import_id'], unique=False)

    op.create_table(
        'data_analyses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('import_id', sa.Integer(), nullable=False),
        sa.Column('analysis_type', sa.String(length=50), nullable=False),
        sa.Column('configuration', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('results', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['import_id'], ['data_imports.id'], ondelete='CASCADE')
    )
    op.create_index(op.f('ix_data_analyses_id'), 'data_analyses', ['id'], unique=False)
    op.create_index(op.f('ix_data_analyses_import_id'), 'data_analyses', ['import_id'], unique=False)
    op.create_index(op.f('ix_data_analyses_analysis_type'), 'data_analyses', ['analysis_type'], unique=False)

    op.create_table(
        'data_transformations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('import_id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('column_name', sa.String(length=255), nullable=False),
        sa.Column('transformation_type', sa.String(length=50), nullable=False),
        sa.Column('parameters', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('rows_affected', sa.Integer(), nullable=False),
        sa.Column('applied_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['import_id'], ['data_imports.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE')
    )
    op.create_index(op.f('ix_data_transformations_id'), 'data_transformations', ['id'], unique=False)
    op.create_index(op.f('ix_data_transformations_import_id'), 'data_transformations', ['import_id'], unique=False)
    op.create_index(op.f('ix_data_transformations_organization_id'), 'data_transformations', ['organization_id'], unique=False)

    # Audit tables are append-only at the database level too
    op.execute("""
        CREATE OR REPLACE FUNCTION reject_audit_mutation() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION '% records are immutable', TG_TABLE_NAME;
        END;
        $$ LANGUAGE plpgsql
    """)
    for table in ('data_analyses', 'data_transformations'):
        op.execute(
            f"CREATE TRIGGER {table}_immutable BEFORE UPDATE OR DELETE ON {table} "
            f"FOR EACH ROW EXECUTE FUNCTION reject_audit_mutation()"
        )


def downgrade() -> None:
    for table in ('data_analyses', 'data_transformations'):
        op.execute(f"DROP TRIGGER IF EXISTS {table}_immutable ON {table}")
    op.execute("DROP FUNCTION IF EXISTS reject_audit_mutation()")

    op.drop_index(op.f('ix_data_transformations_organization_id'), table_name='data_transformations')
    op.drop_index(op.f('ix_data_transformations_import_id'), table_name='data_transformations')
    op.drop_index(op.f('ix_data_transformations_id'), table_name='data_transformations')
    op.drop_table('data_transformations')

    op.drop_index(op.f('ix_data_analyses_analysis_type'), table_name='data_analyses')
    op.drop_index(op.f('ix_data_analyses_import_id'), table_name='data_analyses')
    op.drop_index(op.f('ix_data_analyses_id'), table_name='data_analyses')
    op.drop_table('data_analyses')

    op.drop_index(op.f('ix_import_rows_import_id'), table_name='import_rows')
    op.drop_table('import_rows')

    op.drop_index(op.f('ix_column_metadata_import_id'), table_name='column_metadata')
    op.drop_index(op.f('ix_column_metadata_id'), table_name='column_metadata')
    op.drop_table('column_metadata')

    op.drop_index('idx_data_imports_org_table', table_name='data_imports')
    op.drop_index(op.f('ix_data_imports_organization_id'), table_name='data_imports')
    op.drop_index(op.f('ix_data_imports_id'), table_name='data_imports')
    op.drop_table('data_imports')
    op.execute("DROP TYPE IF EXISTS importstatus")

    op.drop_index(op.f('ix_organizations_id'), table_name='organizations')
    op.drop_table('organizations')
