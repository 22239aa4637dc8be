import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from commission_rules import RuleIndex, resolve_rule
from money import ZERO, fmt_money, to_decimal

logger = logging.getLogger(__name__)

MONEY_FIELDS = ("fixed_earned", "spread_earned", "total_earned", "total_lots")


def zero_totals() -> Dict[str, Any]:
    return {
        "fixed_earned": ZERO,
        "spread_earned": ZERO,
        "total_earned": ZERO,
        "trade_count": 0,
        "total_lots": ZERO,
        "groups": [],
    }


def compute_commission(trades: Iterable[Dict[str, Any]], rule_index: RuleIndex) -> Dict[str, Any]:
    """
    score already-filtered trades against a partner's rule index.

    per group bucket:
      fixed  = sum of the fixed commission recorded on each trade upstream
      spread = bucket lots * spread_share_percentage / 100

    total_earned = fixed_earned + spread_earned. nothing is rounded here;
    use format_totals() for display.

    returns zero totals when there are no trades.
    """
    buckets: Dict[str, Dict[str, Any]] = {}
    for trade in trades:
        group_id = trade.get("group_id") or ""
        bucket = buckets.get(group_id)
        if bucket is None:
            bucket = {"lots": ZERO, "fixed": ZERO, "trade_count": 0}
            buckets[group_id] = bucket
        bucket["lots"] += to_decimal(trade.get("volume_lots"))
        bucket["fixed"] += to_decimal(trade.get("fixed_commission"))
        bucket["trade_count"] += 1

    totals = zero_totals()
    if not buckets:
        return totals

    fixed_earned = ZERO
    spread_earned = ZERO
    total_lots = ZERO
    trade_count = 0
    groups: List[Dict[str, Any]] = []

    for group_id, bucket in buckets.items():
        rule, match = resolve_rule(rule_index, group_id)
        if rule is None:
            # no rules at all for this partner: spread is zero, fixed still counts
            logger.warning(
                "no commission rule for group %r (%s trades); spread share skipped",
                group_id,
                bucket["trade_count"],
            )
            spread = ZERO
        else:
            if match != "exact":
                logger.info(
                    "group %r matched rule for %r via %s",
                    group_id,
                    rule.get("group_id"),
                    match,
                )
            spread = bucket["lots"] * (rule["spread_share_percentage"] / Decimal("100"))

        fixed_earned += bucket["fixed"]
        spread_earned += spread
        total_lots += bucket["lots"]
        trade_count += bucket["trade_count"]

        groups.append(
            {
                "group_id": group_id,
                "lots": bucket["lots"],
                "fixed": bucket["fixed"],
                "spread": spread,
                "trade_count": bucket["trade_count"],
                "match": match,
            }
        )

    totals["fixed_earned"] = fixed_earned
    totals["spread_earned"] = spread_earned
    totals["total_earned"] = fixed_earned + spread_earned
    totals["trade_count"] = trade_count
    totals["total_lots"] = total_lots
    totals["groups"] = groups
    return totals


def compute_by_counterparty(
    trades: Iterable[Dict[str, Any]],
    rule_index: RuleIndex,
) -> Dict[str, Dict[str, Any]]:
    """
    same computation, split per referred user (user_id as text).
    used for the per-referral ledger breakdown.
    """
    per_user: Dict[str, List[Dict[str, Any]]] = {}
    for trade in trades:
        per_user.setdefault(str(trade.get("user_id")), []).append(trade)

    return {
        user_id: compute_commission(user_trades, rule_index)
        for user_id, user_trades in per_user.items()
    }


def format_totals(totals: Dict[str, Any]) -> Dict[str, Any]:
    """
    JSON view: money as 2dp strings, counts as ints.
    """
    out: Dict[str, Any] = {}
    for key, value in totals.items():
        if key in MONEY_FIELDS:
            out[key] = fmt_money(value)
        elif key == "groups":
            out[key] = [
                {
                    "group_id": g["group_id"],
                    "lots": fmt_money(g["lots"]),
                    "fixed": fmt_money(g["fixed"]),
                    "spread": fmt_money(g["spread"]),
                    "trade_count": g["trade_count"],
                    "match": g["match"],
                }
                for g in value
            ]
        elif hasattr(value, "isoformat"):
            out[key] = value.isoformat()
        else:
            out[key] = value
    return out
