"""
Database schema: roadmap_fields (the record table whose structure users
evolve), column_config (the column catalog), the NOTIFY trigger that
announces catalog changes, the privileged add/drop procedures, and user
provisioning. All DDL runs as app_admin (the table owner).
"""

from psycopg2 import sql

from store.config import COLUMN_TABLE, RECORD_TABLE, TERMINAL_STATUS

GROUP_ROLE = "app_user"
ADMIN_ROLE = "app_admin"

NOTIFY_CHANNEL = "column_config"

# Physical fields managed by the application itself; never in the catalog
INTERNAL_FIELDS = ("id", "sort_order")

# (field_key, display_name, sql_type): fields that predate user-driven
# schema evolution. Seeded into both the table and the catalog.
SYSTEM_COLUMNS = [
    ("priority_rank", "Priority Rank", "integer"),
    ("product", "Product", "text"),
    ("status", "Status", "text"),
    ("initiative", "Initiative", "text"),
    ("objective", "Objective", "text"),
    ("deliverables", "Deliverables", "text"),
    ("outcomes", "Measure of Success / Outcomes", "text"),
    ("impact_effort", "User Impact / Effort", "text"),
    ("priority", "Priority", "text"),
    ("start_date", "Start Date", "date"),
    ("end_date", "End Date", "date"),
    ("quarter_due", "Quarter Due", "text"),
    ("production_live_date", "Production Live Date", "date"),
    ("dev_status", "Product Dev Status", "text"),
    ("notes", "Notes", "text"),
    ("requested_by", "Requested By", "text"),
    ("engineer_assigned", "Engineer Assigned", "text"),
    ("est_hours_story_points", "Est. Hours / Story Points", "numeric"),
    ("dependencies", "Dependencies", "text"),
    ("tags_labels", "Tags / Labels", "text"),
    ("epic_theme", "Epic / Theme", "text"),
    ("business_value_roi", "Business Value / ROI", "text"),
    ("external_links", "External Links", "text"),
    ("actual_completion_date", "Actual Completion Date", "date"),
    ("customer_impact", "Customer Impact", "text"),
    ("team", "Team", "text"),
]

PROTECTED_FIELDS = list(INTERNAL_FIELDS) + [key for key, _, _ in SYSTEM_COLUMNS]


def bootstrap_schema(admin_conn):
    """Create tables, trigger, procedures and seed rows. Idempotent."""
    admin_conn.autocommit = True
    with admin_conn.cursor() as cur:
        # ── Record table: one row per roadmap initiative ──────────────
        system_cols = sql.SQL(",\n").join(
            sql.SQL("{} {}").format(sql.Identifier(key), sql.SQL(sql_type))
            for key, _, sql_type in SYSTEM_COLUMNS
        )
        cur.execute(sql.SQL("""
            CREATE TABLE IF NOT EXISTS {table} (
                id          BIGINT GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
                sort_order  INT,
                {system_cols}
            );
        """).format(table=sql.Identifier(RECORD_TABLE), system_cols=system_cols))

        # ── Column catalog ───────────────────────────────────────────
        cur.execute(sql.SQL("""
            CREATE TABLE IF NOT EXISTS {table} (
                id                UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                column_name       TEXT NOT NULL UNIQUE,
                display_name      TEXT NOT NULL,
                data_type         TEXT NOT NULL
                    CHECK (data_type IN ('text', 'integer', 'numeric', 'date', 'boolean')),
                is_visible        BOOLEAN NOT NULL DEFAULT true,
                sort_order        INT NOT NULL,
                is_system_column  BOOLEAN NOT NULL DEFAULT false,
                is_required       BOOLEAN NOT NULL DEFAULT false,
                created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at        TIMESTAMPTZ NOT NULL DEFAULT now()
            );
        """).format(table=sql.Identifier(COLUMN_TABLE)))

        cur.execute(sql.SQL("""
            CREATE INDEX IF NOT EXISTS idx_column_config_sort_order
                ON {table} (sort_order);
        """).format(table=sql.Identifier(COLUMN_TABLE)))

        # ── Seed system columns into the catalog ─────────────────────
        for position, (key, display_name, sql_type) in enumerate(SYSTEM_COLUMNS, start=1):
            cur.execute(
                sql.SQL("""
                    INSERT INTO {table}
                        (column_name, display_name, data_type, is_visible,
                         sort_order, is_system_column, is_required)
                    VALUES (%s, %s, %s, true, %s, true, false)
                    ON CONFLICT (column_name) DO NOTHING
                """).format(table=sql.Identifier(COLUMN_TABLE)),
                (key, display_name, sql_type, position),
            )

        # ── Privileged procedures: the only path that alters the table ─
        cur.execute(sql.SQL("""
            CREATE OR REPLACE FUNCTION add_column_to_roadmap(col_name TEXT, col_type TEXT)
            RETURNS void AS $$
            BEGIN
                IF col_name !~ '^[a-z][a-z0-9_]*$' OR length(col_name) > 63 THEN
                    RAISE EXCEPTION 'invalid column name: %', col_name
                        USING ERRCODE = 'invalid_name';
                END IF;
                IF col_type NOT IN ('text', 'integer', 'numeric', 'date', 'boolean') THEN
                    RAISE EXCEPTION 'unsupported column type: %', col_type
                        USING ERRCODE = 'invalid_parameter_value';
                END IF;
                EXECUTE format('ALTER TABLE %I ADD COLUMN %I ' || col_type,
                               {table}, col_name);
            END;
            $$ LANGUAGE plpgsql;
        """).format(table=sql.Literal(RECORD_TABLE)))

        cur.execute(sql.SQL("""
            CREATE OR REPLACE FUNCTION drop_column_from_roadmap(col_name TEXT)
            RETURNS void AS $$
            BEGIN
                IF col_name = ANY({protected}::text[]) THEN
                    RAISE EXCEPTION 'column % is protected', col_name
                        USING ERRCODE = 'insufficient_privilege';
                END IF;
                EXECUTE format('ALTER TABLE %I DROP COLUMN %I', {table}, col_name);
            END;
            $$ LANGUAGE plpgsql;
        """).format(
            table=sql.Literal(RECORD_TABLE),
            protected=sql.Literal(PROTECTED_FIELDS),
        ))

        cur.execute("REVOKE ALL ON FUNCTION add_column_to_roadmap(TEXT, TEXT) FROM PUBLIC;")
        cur.execute("REVOKE ALL ON FUNCTION drop_column_from_roadmap(TEXT) FROM PUBLIC;")

        # ── NOTIFY trigger: fires on every catalog change ────────────
        cur.execute(sql.SQL("""
            CREATE OR REPLACE FUNCTION notify_column_change() RETURNS trigger AS $$
            DECLARE
                changed RECORD;
            BEGIN
                IF TG_OP = 'DELETE' THEN
                    changed := OLD;
                ELSE
                    changed := NEW;
                END IF;
                PERFORM pg_notify({channel}, json_build_object(
                    'op', TG_OP,
                    'id', changed.id,
                    'column_name', changed.column_name,
                    'backend_pid', pg_backend_pid()
                )::text);
                RETURN NULL;
            END;
            $$ LANGUAGE plpgsql;
        """).format(channel=sql.Literal(NOTIFY_CHANNEL)))
        cur.execute(sql.SQL(
            "DROP TRIGGER IF EXISTS column_config_notify ON {table};"
        ).format(table=sql.Identifier(COLUMN_TABLE)))
        cur.execute(sql.SQL("""
            CREATE TRIGGER column_config_notify
                AFTER INSERT OR UPDATE OR DELETE ON {table}
                FOR EACH ROW EXECUTE FUNCTION notify_column_change();
        """).format(table=sql.Identifier(COLUMN_TABLE)))

        # ── Grant table permissions to group role ────────────────────
        cur.execute(sql.SQL(
            "GRANT SELECT, INSERT, UPDATE, DELETE ON {records}, {columns} TO {role};"
        ).format(
            records=sql.Identifier(RECORD_TABLE),
            columns=sql.Identifier(COLUMN_TABLE),
            role=sql.Identifier(GROUP_ROLE),
        ))
        cur.execute(sql.SQL(
            "GRANT USAGE, SELECT ON ALL SEQUENCES IN SCHEMA public TO {role};"
        ).format(role=sql.Identifier(GROUP_ROLE)))


def clear_completed_priority_rank(conn, terminal_status=TERMINAL_STATUS):
    """Null priority_rank on every terminal-status row. Returns rows touched."""
    with conn.cursor() as cur:
        cur.execute(
            sql.SQL("""
                UPDATE {table}
                SET priority_rank = NULL
                WHERE status = %s
                  AND priority_rank IS NOT NULL
            """).format(table=sql.Identifier(RECORD_TABLE)),
            (terminal_status,),
        )
        return cur.rowcount


def provision_user(admin_conn, username, password):
    """
    Create a new PG role for a user. NOSUPERUSER, NOCREATEDB, NOCREATEROLE,
    LOGIN with password, inherits app_user. Cannot call the add/drop
    procedures.
    """
    admin_conn.autocommit = True
    _validate_identifier(username)
    with admin_conn.cursor() as cur:
        cur.execute("SELECT 1 FROM pg_roles WHERE rolname = %s", (username,))
        if cur.fetchone() is None:
            cur.execute(
                sql.SQL(
                    "CREATE ROLE {} LOGIN PASSWORD %s "
                    "NOSUPERUSER NOCREATEDB NOCREATEROLE"
                ).format(sql.Identifier(username)),
                (password,),
            )
            cur.execute(sql.SQL("GRANT {} TO {};").format(
                sql.Identifier(GROUP_ROLE), sql.Identifier(username)))
        else:
            cur.execute(
                sql.SQL("ALTER ROLE {} PASSWORD %s").format(sql.Identifier(username)),
                (password,),
            )


def _validate_identifier(name):
    """Prevent SQL injection in role names."""
    if not name or not all(c.isalnum() or c == '_' for c in name):
        raise ValueError(f"Invalid identifier: {name!r}")
    if len(name) > 63:
        raise ValueError(f"Identifier too long: {name!r}")
