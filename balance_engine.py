import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from errors import UpstreamUnavailable
from money import ZERO, fmt_money, to_decimal

logger = logging.getLogger(__name__)

PAID_STATUSES = {"approved", "paid", "completed"}
PENDING_STATUS = "pending"


def summarize_withdrawals(withdrawals: Iterable[Dict[str, Any]]) -> Tuple[Decimal, Decimal]:
    """
    returns (total_paid, pending).

    approved / paid / completed count as paid out; pending is reported
    on its own and does not reduce the available balance. rejected and
    any other status is ignored.
    """
    total_paid = ZERO
    pending = ZERO
    for w in withdrawals:
        status = str(w.get("status") or "").strip().lower()
        amount = to_decimal(w.get("amount"))
        if status in PAID_STATUSES:
            total_paid += amount
        elif status == PENDING_STATUS:
            pending += amount
    return total_paid, pending


def reconcile(total_earned, withdrawals: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    available = max(total_earned - total_paid, 0)
    """
    earned = to_decimal(total_earned)
    total_paid, pending = summarize_withdrawals(withdrawals)
    available = max(earned - total_paid, ZERO)
    return {
        "total_earned": earned,
        "total_paid": total_paid,
        "pending": pending,
        "available": available,
    }


def reconcile_with_fallback(
    compute: Callable[[], Dict[str, Any]],
    read_cached: Callable[[], Optional[Dict[str, Any]]],
    withdrawals: Iterable[Dict[str, Any]],
) -> Dict[str, Any]:
    """
    balance summary that never fails on the earnings side.

    1) compute() - live recomputation (normally also writes the cache)
    2) read_cached() - last ledger entry, if compute raised UpstreamUnavailable
    3) zero earnings if there is no cache either

    the returned dict carries source = live | cache | none.
    """
    source = "live"
    try:
        earned = compute()
    except UpstreamUnavailable as e:
        logger.warning("live commission unavailable, falling back to ledger cache: %s", e)
        try:
            earned = read_cached()
        except UpstreamUnavailable as cache_err:
            logger.error("ledger cache unavailable too: %s", cache_err)
            earned = None
        source = "cache" if earned is not None else "none"

    if earned is None:
        earned = {}

    summary = reconcile(earned.get("total_earned"), withdrawals)
    summary["fixed_earned"] = to_decimal(earned.get("fixed_earned"))
    summary["spread_earned"] = to_decimal(earned.get("spread_earned"))
    summary["source"] = source
    return summary


def format_balance(summary: Dict[str, Any]) -> Dict[str, Any]:
    return {
        k: fmt_money(v) if isinstance(v, Decimal) else v
        for k, v in summary.items()
    }


def zero_balance(source: str = "none") -> Dict[str, Any]:
    return {
        "total_earned": ZERO,
        "total_paid": ZERO,
        "pending": ZERO,
        "available": ZERO,
        "fixed_earned": ZERO,
        "spread_earned": ZERO,
        "source": source,
    }


def requestable_amount(summary: Dict[str, Any]) -> Decimal:
    """
    what a new withdrawal may ask for: available minus what is already
    pending, floored at zero.
    """
    return max(to_decimal(summary.get("available")) - to_decimal(summary.get("pending")), ZERO)
