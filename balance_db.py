import logging
from typing import Any, Dict, List, Optional

import psycopg

from balance_engine import reconcile, reconcile_with_fallback, requestable_amount, zero_balance
from commission_db import compute_commission_db, last_known_commission_db
from db.db import get_conn
from db.repositories import get_partner, get_withdrawals, insert_withdrawal
from errors import PartnerNotFound
from money import to_decimal

logger = logging.getLogger(__name__)


def reconcile_balance_db(partner_id: int) -> Dict[str, Any]:
    """
    {total_earned, total_paid, pending, available, fixed_earned,
     spread_earned, source} for a partner.

    earnings come from a fresh recomputation (which refreshes the ledger
    cache); if that fails we use the last cached totals, then zeros. if
    the withdrawal history itself can't be read the whole summary is
    zero: we never show an available balance we can't back up.
    """
    try:
        with get_conn() as conn:
            withdrawals = get_withdrawals(conn, partner_id)
    except psycopg.Error as e:
        logger.error("withdrawal history unavailable for partner %s: %s", partner_id, e)
        return zero_balance()

    return reconcile_with_fallback(
        compute=lambda: compute_commission_db(partner_id),
        read_cached=lambda: last_known_commission_db(partner_id),
        withdrawals=withdrawals,
    )


def list_withdrawals_db(partner_id: int, status: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    with get_conn() as conn:
        return get_withdrawals(conn, partner_id, status=status, limit=limit)


def request_withdrawal_db(
    partner_id: int,
    amount,
    method: str,
    account_details: Optional[str] = None,
) -> Dict[str, Any]:
    """
    create a pending withdrawal request.

    rules:
      - amount > 0, method required
      - partner must exist and be approved
      - amount <= available - already pending (fresh earnings)

    the partner row is locked while the withdrawal history is re-read and
    the row inserted, so two concurrent requests can't both spend the
    same balance.
    """
    amount = to_decimal(amount)
    if amount <= 0:
        raise ValueError("Valid amount required")
    method = (method or "").strip()
    if not method:
        raise ValueError("Payment method required")

    earned = compute_commission_db(partner_id)

    with get_conn() as conn:
        try:
            partner = get_partner(conn, partner_id, for_update=True)
            if partner is None:
                raise PartnerNotFound(f"Partner {partner_id} not found")
            if str(partner.get("status") or "").strip().lower() != "approved":
                raise ValueError(f"Partner {partner_id} is not approved")

            summary = reconcile(earned["total_earned"], get_withdrawals(conn, partner_id))
            allowed = requestable_amount(summary)
            if amount > allowed:
                raise ValueError(
                    f"Requested {amount} exceeds available balance {allowed} for partner {partner_id}."
                )

            row = insert_withdrawal(conn, partner_id, amount, method, account_details)
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    logger.info("withdrawal %s requested by partner %s: %s via %s", row["id"], partner_id, amount, method)
    summary["pending"] += amount
    return {"request": row, "summary": summary}
