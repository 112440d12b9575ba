"""create_curator_tables

Revision ID: 3f6c0a1d9e24
Revises:
Create Date: 2026-10-17 09:12:40

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '3f6c0a1d9e24'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Users and their capabilities
    op.execute('''
        CREATE TABLE IF NOT EXISTS users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            internal_id TEXT,
            auth0_id TEXT UNIQUE,
            email TEXT,
            name TEXT,
            capabilities TEXT[] NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );
    ''')

    # Knowledge graph: entities and relationships
    op.execute('''
        CREATE TABLE IF NOT EXISTS knowledge_objects (
            internal_id TEXT PRIMARY KEY,
            standard_id TEXT UNIQUE,
            entity_type TEXT NOT NULL,
            parent_types TEXT[] NOT NULL DEFAULT '{}',
            name TEXT,
            data JSONB NOT NULL DEFAULT '{}'::jsonb,
            deleted_by TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_knowledge_objects_updated_at
        ON knowledge_objects (updated_at);

        CREATE INDEX IF NOT EXISTS idx_knowledge_objects_entity_type
        ON knowledge_objects (entity_type);
    ''')

    op.execute('''
        CREATE TABLE IF NOT EXISTS knowledge_relationships (
            internal_id TEXT PRIMARY KEY,
            standard_id TEXT UNIQUE,
            entity_type TEXT NOT NULL,
            parent_types TEXT[] NOT NULL DEFAULT '{}',
            name TEXT,
            from_id TEXT NOT NULL,
            to_id TEXT NOT NULL,
            data JSONB NOT NULL DEFAULT '{}'::jsonb,
            deleted_by TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_knowledge_relationships_updated_at
        ON knowledge_relationships (updated_at);

        CREATE INDEX IF NOT EXISTS idx_knowledge_relationships_from_to
        ON knowledge_relationships (from_id, to_id);
    ''')

    # Platform objects: background tasks, retention rules, notifications
    op.execute('''
        CREATE TABLE IF NOT EXISTS internal_objects (
            internal_id TEXT PRIMARY KEY,
            id TEXT NOT NULL,
            standard_id TEXT,
            entity_type TEXT NOT NULL,
            parent_types TEXT[] NOT NULL DEFAULT '{}',
            name TEXT,
            user_id TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),

            -- Background tasks
            type TEXT,
            scope TEXT,
            initiator_id TEXT,
            completed BOOLEAN,
            actions JSONB,
            task_ids TEXT[],
            task_filters TEXT,
            task_search TEXT,
            task_position TEXT,
            task_processed_number INTEGER,
            task_expected_number INTEGER,
            errors JSONB,
            authorized_members JSONB,
            authorized_authorities TEXT[],

            -- Retention rules
            max_retention INTEGER,
            retention_unit TEXT,
            filters TEXT,
            remaining_count INTEGER,
            last_deleted_count INTEGER,

            last_execution_date TIMESTAMPTZ
        );

        CREATE INDEX IF NOT EXISTS idx_internal_objects_entity_type_created
        ON internal_objects (entity_type, created_at DESC);
    ''')

    # Stored files and the import works attached to them
    op.execute('''
        CREATE TABLE IF NOT EXISTS files (
            id TEXT PRIMARY KEY,
            name TEXT,
            upload_status TEXT,
            last_modified TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_files_last_modified
        ON files (last_modified);

        CREATE TABLE IF NOT EXISTS works (
            id TEXT PRIMARY KEY,
            file_id TEXT REFERENCES files(id) ON DELETE CASCADE,
            status TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_works_file_id
        ON works (file_id);
    ''')

    # Manager leases (one row per lock key)
    op.execute('''
        CREATE TABLE IF NOT EXISTS manager_locks (
            lock_key TEXT PRIMARY KEY,
            holder_id TEXT NOT NULL,
            acquired_at TIMESTAMPTZ NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL
        );
    ''')

    op.execute('''
        CREATE TABLE IF NOT EXISTS audit_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            actor_id TEXT,
            actor_name TEXT,
            actor_email TEXT,
            event_type TEXT NOT NULL,
            event_scope TEXT NOT NULL,
            event_access TEXT NOT NULL,
            message TEXT NOT NULL,
            context_data JSONB NOT NULL DEFAULT '{}'::jsonb
        );

        CREATE INDEX IF NOT EXISTS idx_audit_logs_timestamp
        ON audit_logs (timestamp DESC);
    ''')


def downgrade() -> None:
    op.execute('''
        DROP TABLE IF EXISTS audit_logs;
        DROP TABLE IF EXISTS manager_locks;
        DROP TABLE IF EXISTS works;
        DROP TABLE IF EXISTS files;
        DROP TABLE IF EXISTS internal_objects;
        DROP TABLE IF EXISTS knowledge_relationships;
        DROP TABLE IF EXISTS knowledge_objects;
        DROP TABLE IF EXISTS users;
    ''')
