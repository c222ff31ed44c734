"""Employee, Projects and the project_employee join table, with change notifications.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Base tables. created_by records the signed-in user set by user_conn().
    for table in ("Employee", "Projects"):
        op.execute(f"""
            CREATE TABLE "{table}" (
                id BIGSERIAL PRIMARY KEY,
                name TEXT NOT NULL CHECK (btrim(name) <> ''),
                created_by UUID DEFAULT NULLIF(current_setting('app.user_id', true), '')::uuid,
                created_at TIMESTAMPTZ DEFAULT now()
            );
        """)

    # Join table. The pair is the key, so an assignment can't exist twice.
    op.execute("""
        CREATE TABLE project_employee (
            emp_id BIGINT NOT NULL REFERENCES "Employee"(id) ON DELETE CASCADE,
            project_id BIGINT NOT NULL REFERENCES "Projects"(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ DEFAULT now(),
            PRIMARY KEY (emp_id, project_id)
        );
    """)

    op.execute("""
        CREATE INDEX idx_project_employee_project ON project_employee(project_id);
    """)

    # Search is a case-insensitive substring match on name
    op.execute('CREATE INDEX idx_employee_name_lower ON "Employee"(lower(name));')
    op.execute('CREATE INDEX idx_projects_name_lower ON "Projects"(lower(name));')

    # Row-level security: any signed-in user (app.user_id set by user_conn) may
    # read and write the roster. The table owner bypasses it for migrations.
    for table in ("Employee", "Projects", "project_employee"):
        op.execute(f'ALTER TABLE "{table}" ENABLE ROW LEVEL SECURITY;')
        op.execute(f"""
            CREATE POLICY {table.lower()}_signed_in ON "{table}"
                USING (current_setting('app.user_id', true) <> '')
                WITH CHECK (current_setting('app.user_id', true) <> '');
        """)

    # Change feed: one JSON payload per row change on roster_changes.
    # Deletes carry the full old row so join deletes still name both keys.
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_roster_change() RETURNS trigger AS $$
        BEGIN
            PERFORM pg_notify(
                'roster_changes',
                json_build_object(
                    'table', TG_TABLE_NAME,
                    'type', TG_OP,
                    'record', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE row_to_json(NEW) END,
                    'old_record', CASE WHEN TG_OP = 'INSERT' THEN NULL ELSE row_to_json(OLD) END
                )::text
            );
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
    """)

    for table in ("Employee", "Projects", "project_employee"):
        op.execute(f"""
            CREATE TRIGGER notify_{table.lower()}_change
            AFTER INSERT OR UPDATE OR DELETE ON "{table}"
            FOR EACH ROW EXECUTE FUNCTION notify_roster_change();
        """)


def downgrade():
    op.execute("DROP TABLE IF EXISTS project_employee CASCADE;")
    op.execute('DROP TABLE IF EXISTS "Projects" CASCADE;')
    op.execute('DROP TABLE IF EXISTS "Employee" CASCADE;')
    op.execute("DROP FUNCTION IF EXISTS notify_roster_change();")
