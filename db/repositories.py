from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from psycopg import Connection
from psycopg.rows import dict_row


PARTNER_COLUMNS = """
    id, user_id, full_name, email, status, referral_code,
    referred_by, group_ids, tier_names, created_at
"""


# ---------
# partners
# ---------

def get_partner(conn: Connection, partner_id: int, for_update: bool = False) -> Optional[Dict[str, Any]]:
    """
    fetch a partner row as a dict, or None if it doesn't exist.
    for_update=True locks the row until the transaction ends.
    """
    sql = f"SELECT {PARTNER_COLUMNS} FROM partners WHERE id = %s"
    if for_update:
        sql += " FOR UPDATE"
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql, (partner_id,))
        return cur.fetchone()


def referral_code_taken(conn: Connection, code: str, exclude_partner_id: Optional[int] = None) -> bool:
    """
    case-insensitive existence check, optionally ignoring one partner.
    """
    with conn.cursor() as cur:
        if exclude_partner_id is None:
            cur.execute(
                "SELECT 1 FROM partners WHERE UPPER(referral_code) = UPPER(%s)",
                (code,),
            )
        else:
            cur.execute(
                "SELECT 1 FROM partners WHERE UPPER(referral_code) = UPPER(%s) AND id <> %s",
                (code, exclude_partner_id),
            )
        return cur.fetchone() is not None


def set_partner_referral_code(conn: Connection, partner_id: int, code: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE partners SET referral_code = %s, updated_at = NOW() WHERE id = %s",
            (code, partner_id),
        )
        if cur.rowcount != 1:
            raise ValueError(f"Failed to update referral code for partner {partner_id}")


def get_partner_by_referral_code(conn: Connection, referral_code: str) -> int:
    """
    return the id of the approved partner owning referral_code.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT id FROM partners
            WHERE UPPER(referral_code) = UPPER(%s)
              AND LOWER(TRIM(status)) = 'approved'
            """,
            (referral_code.strip(),),
        )
        row = cur.fetchone()
        if row is None:
            raise ValueError(f"No approved partner found with referral_code={referral_code}")
        return row[0]


def get_partner_referrer_id(conn: Connection, partner_id: int) -> Optional[int]:
    """
    fetch referred_by for a partner, or None if they have no referrer.
    """
    with conn.cursor() as cur:
        cur.execute(
            "SELECT referred_by FROM partners WHERE id = %s",
            (partner_id,),
        )
        row = cur.fetchone()
        if row is None:
            raise ValueError(f"Partner {partner_id} not found")
        return row[0]


def set_partner_referrer_id(conn: Connection, child_id: int, parent_id: int) -> None:
    """
    set referred_by for child to parent. assumes all checks already done.
    """
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE partners SET referred_by = %s, updated_at = NOW() WHERE id = %s",
            (parent_id, child_id),
        )
        if cur.rowcount != 1:
            raise ValueError(f"Failed to update referrer for partner {child_id}")


# ---------
# referral graph / attribution inputs
# ---------

def get_referral_records(conn: Connection, partner_id: int) -> List[Dict[str, Any]]:
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            SELECT partner_id, user_id
            FROM partner_referrals
            WHERE partner_id = %s AND user_id IS NOT NULL
            """,
            (partner_id,),
        )
        return cur.fetchall()


def get_referred_applications(conn: Connection, partner_id: int) -> List[Dict[str, Any]]:
    """
    applications that name partner_id in referred_by.
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            SELECT id, referred_by, user_id
            FROM partners
            WHERE referred_by = %s AND user_id IS NOT NULL
            """,
            (partner_id,),
        )
        return cur.fetchall()


def get_group_assignments(conn: Connection, partner_id: int) -> List[Dict[str, Any]]:
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            SELECT group_id, group_name, tier_name, usd_per_lot, spread_share_percentage
            FROM group_assignments
            WHERE partner_id = %s
            ORDER BY id ASC
            """,
            (partner_id,),
        )
        return cur.fetchall()


def get_tier_rules(conn: Connection, partner_id: int, tier_names: List[str]) -> List[Dict[str, Any]]:
    """
    tier rules named either by the partner's tier_names or by one of their
    group assignments.
    """
    lowered = [t.strip().lower() for t in tier_names if t.strip()]
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            SELECT r.tier_name, r.level, r.usd_per_lot, r.spread_share_percentage
            FROM commission_tier_rules r
            WHERE LOWER(r.tier_name) = ANY(%s)
               OR LOWER(r.tier_name) IN (
                    SELECT LOWER(ga.tier_name)
                    FROM group_assignments ga
                    WHERE ga.partner_id = %s AND ga.tier_name IS NOT NULL
               )
            ORDER BY r.level ASC, r.id ASC
            """,
            (lowered, partner_id),
        )
        return cur.fetchall()


def get_partner_trades(
    conn: Connection,
    partner_id: int,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    closed, non-zero-profit trades attributed to partner_id, optionally
    bounded to [since, until) on closed_at.
    """
    params: List[Any] = [partner_id]
    where_clauses = [
        "partner_id = %s",
        "close_price IS NOT NULL",
        "close_price <> 0",
        "profit <> 0",
    ]
    if since is not None:
        where_clauses.append("closed_at >= %s")
        params.append(since)
    if until is not None:
        where_clauses.append("closed_at < %s")
        params.append(until)

    where_sql = " AND ".join(where_clauses)

    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            f"""
            SELECT order_id, user_id, partner_id, group_id, volume_lots,
                   fixed_commission, close_price, profit, closed_at
            FROM trade_history
            WHERE {where_sql}
            """,
            tuple(params),
        )
        return cur.fetchall()


# ---------
# commission ledger (cache)
# ---------

def upsert_commission_ledger(
    conn: Connection,
    partner_id: int,
    counterparty_id: str,
    totals: Dict[str, Any],
) -> Dict[str, Any]:
    """
    write-through of freshly computed totals for (partner_id, counterparty_id).
    a conflict overwrites every total and bumps last_updated.
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            INSERT INTO commission_ledger
                (partner_id, counterparty_id, total_earned, fixed_earned,
                 spread_earned, trade_count, total_lots, last_updated)
            VALUES (%s, %s, %s, %s, %s, %s, %s, clock_timestamp())
            ON CONFLICT (partner_id, counterparty_id)
            DO UPDATE SET
                total_earned  = EXCLUDED.total_earned,
                fixed_earned  = EXCLUDED.fixed_earned,
                spread_earned = EXCLUDED.spread_earned,
                trade_count   = EXCLUDED.trade_count,
                total_lots    = EXCLUDED.total_lots,
                last_updated  = clock_timestamp()
            RETURNING partner_id, counterparty_id, total_earned, fixed_earned,
                      spread_earned, trade_count, total_lots, last_updated
            """,
            (
                partner_id,
                str(counterparty_id),
                totals.get("total_earned", Decimal("0")),
                totals.get("fixed_earned", Decimal("0")),
                totals.get("spread_earned", Decimal("0")),
                int(totals.get("trade_count") or 0),
                totals.get("total_lots", Decimal("0")),
            ),
        )
        return cur.fetchone()


def get_latest_ledger_entry(conn: Connection, partner_id: int) -> Optional[Dict[str, Any]]:
    """
    most recently updated ledger row for the partner (not a sum).
    """
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            SELECT partner_id, counterparty_id, total_earned, fixed_earned,
                   spread_earned, trade_count, total_lots, last_updated
            FROM commission_ledger
            WHERE partner_id = %s
            ORDER BY last_updated DESC, id DESC
            LIMIT 1
            """,
            (partner_id,),
        )
        return cur.fetchone()


# ---------
# withdrawals
# ---------

def get_withdrawals(
    conn: Connection,
    partner_id: int,
    status: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    params: List[Any] = [partner_id]
    where = "partner_id = %s"
    if status:
        where += " AND LOWER(TRIM(status)) = %s"
        params.append(status.strip().lower())

    sql = f"""
        SELECT id, partner_id, amount, method, account_details, status,
               created_at, updated_at
        FROM withdrawal_requests
        WHERE {where}
        ORDER BY created_at DESC
    """
    if limit is not None:
        sql += " LIMIT %s"
        params.append(limit)

    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql, tuple(params))
        return cur.fetchall()


def insert_withdrawal(
    conn: Connection,
    partner_id: int,
    amount: Decimal,
    method: str,
    account_details: Optional[str] = None,
) -> Dict[str, Any]:
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(
            """
            INSERT INTO withdrawal_requests (partner_id, amount, method, account_details)
            VALUES (%s, %s, %s, %s)
            RETURNING id, partner_id, amount, method, account_details, status,
                      created_at, updated_at
            """,
            (partner_id, amount, method, account_details),
        )
        return cur.fetchone()
