import os
import pathlib

import pytest

SCHEMA = pathlib.Path(__file__).resolve().parent.parent / "db" / "schema.sql"

TABLES = (
    "withdrawal_requests, commission_ledger, trade_history, commission_tier_rules, "
    "group_assignments, partner_referrals, partners"
)


@pytest.fixture
def db(monkeypatch):
    """
    real Postgres, schema applied and tables emptied.
    set IB_TEST_DATABASE_DSN to run these tests.
    """
    dsn = os.environ.get("IB_TEST_DATABASE_DSN")
    if not dsn:
        pytest.skip("IB_TEST_DATABASE_DSN not set")

    from config import get_settings
    from db.db import get_conn

    monkeypatch.setenv("IB_DATABASE_DSN", dsn)
    get_settings.cache_clear()

    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA.read_text())
            cur.execute(f"TRUNCATE {TABLES} RESTART IDENTITY CASCADE;")
        conn.commit()

    yield get_conn

    get_settings.cache_clear()
