import logging
from datetime import datetime
from typing import Any, Dict, Optional

import psycopg
from psycopg import Connection

from attribution import referred_user_ids, select_trades
from commission_engine import compute_by_counterparty, compute_commission, zero_totals
from commission_rules import build_rule_index, tier_levels
from db.db import get_conn
from db.repositories import (
    get_group_assignments,
    get_latest_ledger_entry,
    get_partner,
    get_partner_trades,
    get_referral_records,
    get_referred_applications,
    get_tier_rules,
    upsert_commission_ledger,
)
from errors import UpstreamUnavailable
from group_keys import parse_csv
from ledger_cache import aggregate_key

logger = logging.getLogger(__name__)


def _is_approved(partner: Optional[Dict[str, Any]]) -> bool:
    return partner is not None and str(partner.get("status") or "").strip().lower() == "approved"


def _eligible_trades(
    conn: Connection,
    partner: Dict[str, Any],
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
):
    partner_id = partner["id"]
    referred = referred_user_ids(
        partner_id,
        get_referral_records(conn, partner_id),
        get_referred_applications(conn, partner_id),
    )
    if not referred:
        logger.info("partner %s has no referred users; commission is zero", partner_id)
        return []

    trades = get_partner_trades(conn, partner_id, since=since, until=until)
    return list(
        select_trades(
            partner_id,
            trades,
            referred,
            own_user_id=partner.get("user_id"),
            since=since,
            until=until,
        )
    )


def _write_through(conn: Connection, partner_id: int, totals: Dict[str, Any], per_counterparty=None) -> None:
    """
    per-counterparty rows first (if any), the partner-wide aggregate last,
    so the latest ledger row is always the aggregate.
    """
    for counterparty_id, user_totals in (per_counterparty or {}).items():
        upsert_commission_ledger(conn, partner_id, counterparty_id, user_totals)
    upsert_commission_ledger(conn, partner_id, aggregate_key(partner_id), totals)
    logger.info(
        "ledger cache updated for partner %s: total=%s fixed=%s spread=%s trades=%s",
        partner_id,
        totals["total_earned"],
        totals["fixed_earned"],
        totals["spread_earned"],
        totals["trade_count"],
    )


def _recompute_in_tx(
    conn: Connection,
    partner_id: int,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    write_through: bool = True,
    per_counterparty: bool = False,
) -> Dict[str, Any]:
    partner = get_partner(conn, partner_id)
    if not _is_approved(partner):
        # unknown or not-yet-approved partners simply have nothing earned
        logger.info("partner %s missing or not approved; returning zero commission", partner_id)
        return zero_totals()

    trades = _eligible_trades(conn, partner, since=since, until=until)
    rule_index = build_rule_index(get_group_assignments(conn, partner_id))
    totals = compute_commission(trades, rule_index)

    if write_through:
        breakdown = compute_by_counterparty(trades, rule_index) if per_counterparty else None
        _write_through(conn, partner_id, totals, per_counterparty=breakdown)

    return totals


def compute_commission_db(
    partner_id: int,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    current commission for a partner, always recomputed from the trade
    ledger. all-time computations are written through to the ledger
    cache; a time-windowed computation is returned as-is.

    raises UpstreamUnavailable if the database can't be read.
    """
    windowed = since is not None or until is not None
    try:
        with get_conn() as conn:
            try:
                totals = _recompute_in_tx(
                    conn,
                    partner_id,
                    since=since,
                    until=until,
                    write_through=not windowed,
                )
                conn.commit()
                return totals
            except Exception:
                conn.rollback()
                raise
    except psycopg.Error as e:
        raise UpstreamUnavailable(f"commission recomputation failed for partner {partner_id}: {e}") from e


def refresh_ledger_cache_db(partner_id: int, per_counterparty: bool = False) -> Dict[str, Any]:
    """
    force recompute + upsert. with per_counterparty=True one ledger row is
    written per referred user as well as the aggregate row.
    """
    try:
        with get_conn() as conn:
            try:
                totals = _recompute_in_tx(
                    conn,
                    partner_id,
                    write_through=True,
                    per_counterparty=per_counterparty,
                )
                conn.commit()
                return totals
            except Exception:
                conn.rollback()
                raise
    except psycopg.Error as e:
        raise UpstreamUnavailable(f"ledger refresh failed for partner {partner_id}: {e}") from e


def last_known_commission_db(partner_id: int) -> Optional[Dict[str, Any]]:
    """
    the cached 'last known' view: latest ledger row, no recomputation.
    None if the partner was never computed.
    """
    try:
        with get_conn() as conn:
            return get_latest_ledger_entry(conn, partner_id)
    except psycopg.Error as e:
        raise UpstreamUnavailable(f"ledger cache read failed for partner {partner_id}: {e}") from e


def commission_structure_db(partner_id: int) -> Dict[str, Any]:
    """
    the partner's group assignments plus the tier level stack that applies
    uniformly across them.
    """
    with get_conn() as conn:
        partner = get_partner(conn, partner_id)
        if partner is None:
            return {"partner_id": partner_id, "tiers": [], "groups": [], "levels": []}

        tiers = parse_csv(partner.get("tier_names"))
        assignments = get_group_assignments(conn, partner_id)
        rules = get_tier_rules(conn, partner_id, tiers)

    if not tiers:
        tiers = [a["tier_name"] for a in assignments if a.get("tier_name")][:1]

    return {
        "partner_id": partner_id,
        "tiers": tiers,
        "groups": [
            {
                "group_id": a["group_id"],
                "group_name": a.get("group_name") or a["group_id"],
                "tier_name": a.get("tier_name"),
                "usd_per_lot": a["usd_per_lot"],
                "spread_share_percentage": a["spread_share_percentage"],
            }
            for a in assignments
        ],
        "levels": tier_levels(rules, tiers),
    }
