from decimal import Decimal

import pytest

from balance_db import reconcile_balance_db, request_withdrawal_db
from commission_db import (
    commission_structure_db,
    compute_commission_db,
    last_known_commission_db,
    refresh_ledger_cache_db,
)
from seed import add_referral, add_trade, add_withdrawal, assign_group, create_partner


def _seed_scenario(get_conn):
    """
    partner P: group g1 (2.5 USD/lot, 10% spread share), own account 'p-own'.
    referred user U: 4 lots in g1, closed, profit 120, fixed 10.0 upstream.
    plus noise: P's own trade, an open trade, an unreferred user's trade.
    """
    with get_conn() as conn:
        p_id = create_partner(conn, "p@example.com", user_id="p-own", referral_code="IBP00001")
        assign_group(conn, p_id, "real\\g1", 2.5, 10, group_name="G1")
        add_referral(conn, p_id, "U")
        add_trade(conn, "T1", "U", p_id, "real\\g1", 4, 10.0, 1.2345, 120)
        add_trade(conn, "T2", "p-own", p_id, "real\\g1", 10, 25.0, 1.1, 50)
        add_trade(conn, "T3", "U", p_id, "real\\g1", 1, 2.5, 0, 0)
        add_trade(conn, "T4", "stranger", p_id, "real\\g1", 3, 7.5, 1.1, 10)
        conn.commit()
    return p_id


def test_compute_scenario_and_write_through(db):
    p_id = _seed_scenario(db)

    totals = compute_commission_db(p_id)
    assert totals["fixed_earned"] == Decimal("10.0")
    assert totals["spread_earned"] == Decimal("0.4")
    assert totals["total_earned"] == Decimal("10.4")
    assert totals["trade_count"] == 1

    cached = last_known_commission_db(p_id)
    assert cached["counterparty_id"] == str(p_id)
    assert cached["total_earned"] == Decimal("10.4")


def test_refresh_twice_is_idempotent(db):
    p_id = _seed_scenario(db)

    refresh_ledger_cache_db(p_id)
    first = last_known_commission_db(p_id)
    refresh_ledger_cache_db(p_id)
    second = last_known_commission_db(p_id)

    for field in ("total_earned", "fixed_earned", "spread_earned", "trade_count", "total_lots"):
        assert first[field] == second[field]
    assert second["last_updated"] >= first["last_updated"]


def test_per_counterparty_refresh_keeps_aggregate_latest(db):
    p_id = _seed_scenario(db)
    with db() as conn:
        add_referral(conn, p_id, "V")
        add_trade(conn, "T5", "V", p_id, "g1", 2, 5.0, 1.3, -15)
        conn.commit()

    totals = refresh_ledger_cache_db(p_id, per_counterparty=True)
    assert totals["total_earned"] == Decimal("15.6")

    with db() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT counterparty_id FROM commission_ledger WHERE partner_id = %s ORDER BY counterparty_id",
                (p_id,),
            )
            rows = [r[0] for r in cur.fetchall()]
    assert sorted(rows) == sorted([str(p_id), "U", "V"])
    assert last_known_commission_db(p_id)["counterparty_id"] == str(p_id)


def test_partner_without_downline_earns_nothing(db):
    with db() as conn:
        p_id = create_partner(conn, "lonely@example.com", user_id="lonely")
        assign_group(conn, p_id, "g1", 2.5, 10)
        add_trade(conn, "X1", "someone", p_id, "g1", 4, 10.0, 1.1, 5)
        conn.commit()

    totals = compute_commission_db(p_id)
    assert totals["total_earned"] == 0
    assert totals["trade_count"] == 0


def test_application_referred_by_counts_as_downline(db):
    with db() as conn:
        p_id = create_partner(conn, "p@example.com", user_id="p-own")
        assign_group(conn, p_id, "g1", 0, 50)
        create_partner(conn, "child@example.com", status="pending", user_id="child", referred_by=p_id)
        add_trade(conn, "C1", "child", p_id, "g1", 2, 1.0, 1.1, 3)
        conn.commit()

    totals = compute_commission_db(p_id)
    assert totals["total_earned"] == Decimal("2.0")


def test_unknown_or_unapproved_partner_is_zero(db):
    with db() as conn:
        pending_id = create_partner(conn, "new@example.com", status="pending")
        conn.commit()

    assert compute_commission_db(pending_id)["total_earned"] == 0
    assert compute_commission_db(999999)["total_earned"] == 0
    assert last_known_commission_db(999999) is None


def test_balance_with_approved_withdrawal(db):
    p_id = _seed_scenario(db)
    with db() as conn:
        add_withdrawal(conn, p_id, 5.0, "approved")
        add_withdrawal(conn, p_id, 1.0, "Pending")
        add_withdrawal(conn, p_id, 3.0, "rejected")
        conn.commit()

    summary = reconcile_balance_db(p_id)
    assert summary["total_earned"] == Decimal("10.4")
    assert summary["total_paid"] == Decimal("5.0")
    assert summary["pending"] == Decimal("1.0")
    assert summary["available"] == Decimal("5.4")
    assert summary["source"] == "live"


def test_withdrawal_request_checks_available(db):
    p_id = _seed_scenario(db)

    with pytest.raises(ValueError):
        request_withdrawal_db(p_id, Decimal("11"), "bank")

    result = request_withdrawal_db(p_id, Decimal("4"), "bank")
    assert result["request"]["status"] == "pending"

    # 10.4 earned, 4 pending: 6.4 left to request
    with pytest.raises(ValueError):
        request_withdrawal_db(p_id, Decimal("6.5"), "bank")


def test_commission_structure(db):
    with db() as conn:
        p_id = create_partner(conn, "p@example.com", tier_names="Gold")
        assign_group(conn, p_id, "real\\g1", 2.5, 10, group_name="Classic", tier_name="Gold")
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO commission_tier_rules (tier_name, level, usd_per_lot, spread_share_percentage)
                VALUES ('Gold', 2, 1, 5), ('gold', 1, 3, 10), ('Silver', 1, 2, 8)
                """
            )
        conn.commit()

    structure = commission_structure_db(p_id)
    assert structure["tiers"] == ["Gold"]
    assert structure["groups"][0]["group_name"] == "Classic"
    assert [lvl["level"] for lvl in structure["levels"]] == [1, 2]
    assert structure["levels"][0]["usd_per_lot"] == Decimal("3")
