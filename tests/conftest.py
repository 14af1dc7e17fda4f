"""
Shared fixtures: one embedded PostgreSQL server per test session, a
provisioned end user, and a reset that restores the seeded catalog and an
empty record table before each database test.
"""

import os
import sys
import tempfile

import psycopg2
import pytest
from psycopg2 import sql

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from store.client import RecordStore
from store.config import COLUMN_TABLE, RECORD_TABLE
from store.schema import PROTECTED_FIELDS, bootstrap_schema, provision_user
from store.server import RoadmapServer
from store.subscriptions import EventBus


@pytest.fixture(scope="session")
def server():
    """Start an embedded PostgreSQL server for testing."""
    tmp_dir = tempfile.mkdtemp(prefix="test_roadmap_")
    srv = RoadmapServer(data_dir=tmp_dir, admin_password="test_admin_pw")
    srv.start()
    yield srv
    srv.stop()


@pytest.fixture(scope="session")
def conn_info(server):
    """Connection info dict."""
    return server.conn_info()


@pytest.fixture(scope="session")
def _provision_users(server):
    """Provision test users: alice, bob."""
    admin_conn = server.admin_conn()
    provision_user(admin_conn, "alice", "alice_pw")
    provision_user(admin_conn, "bob", "bob_pw")
    admin_conn.close()


@pytest.fixture()
def admin_conn(server):
    """Autocommit connection as app_admin."""
    conn = server.admin_conn()
    yield conn
    conn.close()


@pytest.fixture()
def alice_conn(conn_info, _provision_users):
    """Raw connection as alice (member of app_user)."""
    conn = psycopg2.connect(user="alice", password="alice_pw", **conn_info)
    conn.autocommit = True
    yield conn
    conn.close()


@pytest.fixture()
def alice_store(conn_info, _provision_users):
    """RecordStore connected as alice."""
    store = RecordStore(user="alice", password="alice_pw", **conn_info)
    yield store
    store.close()


@pytest.fixture()
def bus():
    return EventBus()


@pytest.fixture()
def clean_db(server):
    """Drop custom fields, reseed the catalog and empty the record table."""
    conn = server.admin_conn()
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT column_name FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = %s
            """,
            (RECORD_TABLE,),
        )
        custom = [name for (name,) in cur.fetchall() if name not in PROTECTED_FIELDS]
        for name in custom:
            cur.execute(sql.SQL("ALTER TABLE {} DROP COLUMN {}").format(
                sql.Identifier(RECORD_TABLE), sql.Identifier(name)))
        cur.execute(sql.SQL("TRUNCATE {}, {}").format(
            sql.Identifier(RECORD_TABLE), sql.Identifier(COLUMN_TABLE)))
    bootstrap_schema(conn)
    conn.close()
    yield
