"""
RoadmapServer — an embedded PostgreSQL holding the roadmap tables.

pgserver ships the PostgreSQL binaries. On start the server ensures the
two roles exist, lays down the schema as app_admin, and then requires
scram-sha-256 for every role except the local superuser.
"""

import os
import urllib.parse

import pgserver
import psycopg2
import structlog
from psycopg2 import sql

from store.client import RecordStore
from store.schema import ADMIN_ROLE, GROUP_ROLE, bootstrap_schema


logger = structlog.get_logger(__name__)

DEFAULT_DATA_DIR = os.getenv(
    "ROADMAP_PGDATA",
    os.path.join(os.path.dirname(__file__), "..", ".pgdata", "roadmap"),
)

# In production, set ROADMAP_ADMIN_PASSWORD from a secrets manager
ADMIN_PASSWORD = os.getenv("ROADMAP_ADMIN_PASSWORD", "admin_secret")

# Only the superuser (local socket, private temp dir) skips the password
_HBA_TEMPLATE = """\
# TYPE  DATABASE  USER           ADDRESS        METHOD
local   all       {superuser}                   trust
local   all       all                           scram-sha-256
host    all       all            127.0.0.1/32   scram-sha-256
host    all       all            ::1/128        scram-sha-256
"""

# role → attributes; app_admin owns the tables and may grant app_user
_ROLE_ATTRIBUTES = {
    ADMIN_ROLE: "LOGIN NOSUPERUSER NOCREATEDB CREATEROLE",
    GROUP_ROLE: "NOLOGIN NOSUPERUSER NOCREATEDB NOCREATEROLE",
}


class RoadmapServer:
    """
    Usage:
        with RoadmapServer(data_dir="/tmp/roadmap") as server:
            store = server.record_store("alice", "alice_pw")
    """

    def __init__(self, data_dir=None, admin_password=None):
        self.data_dir = os.path.abspath(data_dir or DEFAULT_DATA_DIR)
        self.admin_password = admin_password or ADMIN_PASSWORD
        self._pg = None

    @property
    def is_running(self):
        return self._pg is not None

    def start(self):
        os.makedirs(self.data_dir, exist_ok=True)
        self._pg = pgserver.get_server(self.data_dir)
        self._ensure_roles()
        admin = self.admin_conn()
        try:
            bootstrap_schema(admin)
        finally:
            admin.close()
        if self._write_hba():
            self._reload_config()
        logger.info("server_started", data_dir=self.data_dir, **self.conn_info())
        return self

    def stop(self):
        if self._pg is not None:
            self._pg.cleanup()
            self._pg = None
            logger.info("server_stopped", data_dir=self.data_dir)

    # ── Connections ──────────────────────────────────────────────────

    def conn_info(self):
        """host / port / dbname of the running server."""
        parsed = urllib.parse.urlparse(self._pg.get_uri())
        query = urllib.parse.parse_qs(parsed.query)
        return {
            "host": query.get("host", ["/tmp"])[0],
            "port": parsed.port or 5432,
            "dbname": parsed.path.lstrip("/") or "postgres",
        }

    def connect(self, user, password, autocommit=True):
        conn = psycopg2.connect(user=user, password=password, **self.conn_info())
        conn.autocommit = autocommit
        return conn

    def admin_conn(self):
        """Autocommit connection as app_admin, the schema owner."""
        return self.connect(ADMIN_ROLE, self.admin_password)

    def record_store(self, user, password):
        """RecordStore bound to this server for an already provisioned user."""
        return RecordStore(user=user, password=password, **self.conn_info())

    # ── Bootstrap ────────────────────────────────────────────────────

    def _superuser(self):
        return urllib.parse.urlparse(self._pg.get_uri()).username or os.getenv("USER", "postgres")

    def _superuser_conn(self):
        conn = psycopg2.connect(self._pg.get_uri())
        conn.autocommit = True
        return conn

    def _ensure_roles(self):
        """Create or refresh app_admin and app_user. Idempotent."""
        conn = self._superuser_conn()
        try:
            with conn.cursor() as cur:
                for role, attributes in _ROLE_ATTRIBUTES.items():
                    cur.execute("SELECT 1 FROM pg_roles WHERE rolname = %s", (role,))
                    verb = "ALTER" if cur.fetchone() else "CREATE"
                    statement = sql.SQL("{} ROLE {} " + attributes).format(
                        sql.SQL(verb), sql.Identifier(role))
                    if role == ADMIN_ROLE:
                        cur.execute(statement + sql.SQL(" PASSWORD %s"), (self.admin_password,))
                    else:
                        cur.execute(statement)

                cur.execute(sql.SQL("GRANT CREATE, USAGE ON SCHEMA public TO {}").format(
                    sql.Identifier(ADMIN_ROLE)))
                cur.execute(sql.SQL("GRANT USAGE ON SCHEMA public TO {}").format(
                    sql.Identifier(GROUP_ROLE)))
                cur.execute(sql.SQL("GRANT {} TO {} WITH ADMIN OPTION").format(
                    sql.Identifier(GROUP_ROLE), sql.Identifier(ADMIN_ROLE)))
        finally:
            conn.close()

    def _write_hba(self):
        """Write pg_hba.conf if it differs. Returns True when it changed."""
        path = os.path.join(self.data_dir, "pg_hba.conf")
        desired = _HBA_TEMPLATE.format(superuser=self._superuser())
        if os.path.exists(path):
            with open(path) as f:
                if f.read().strip() == desired.strip():
                    return False
        with open(path, "w") as f:
            f.write(desired)
        return True

    def _reload_config(self):
        conn = self._superuser_conn()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT pg_reload_conf()")
        finally:
            conn.close()
        logger.info("auth_hardened", data_dir=self.data_dir)

    def __enter__(self):
        return self.start()

    def __exit__(self, *args):
        self.stop()
