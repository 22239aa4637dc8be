from typing import Any, Dict, Iterable, Iterator, Optional, Set


def is_commission_eligible(trade: Dict[str, Any]) -> bool:
    """
    closed trade with a real close price and non-zero profit.
    open positions carry close_price NULL or 0.
    """
    close_price = trade.get("close_price")
    profit = trade.get("profit")
    if close_price is None or close_price == 0:
        return False
    if profit is None or profit == 0:
        return False
    return True


def referred_user_ids(
    partner_id: int,
    referrals: Iterable[Dict[str, Any]],
    applications: Iterable[Dict[str, Any]],
) -> Set[str]:
    """
    the partner's downline as a set of counterparty user ids:
      - explicit referral records for this partner
      - users whose own application says referred_by = partner_id
    user ids are compared as text.
    """
    ids: Set[str] = set()

    for r in referrals:
        if r.get("partner_id") == partner_id and r.get("user_id"):
            ids.add(str(r["user_id"]))

    for app in applications:
        if app.get("referred_by") == partner_id and app.get("user_id"):
            ids.add(str(app["user_id"]))

    return ids


def select_trades(
    partner_id: int,
    trades: Iterable[Dict[str, Any]],
    referred_ids: Set[str],
    own_user_id: Optional[str] = None,
    since=None,
    until=None,
) -> Iterator[Dict[str, Any]]:
    """
    yield the trades that count toward partner_id's commission.

    no downline means no commission: an empty referred set yields nothing,
    whatever else is in the ledger. the partner's own account never counts,
    even when a trade is attributed to them. since/until bound closed_at
    as [since, until).
    """
    if not referred_ids:
        return

    own = str(own_user_id) if own_user_id is not None else None

    for trade in trades:
        if trade.get("partner_id") != partner_id:
            continue
        user_id = trade.get("user_id")
        if user_id is None:
            continue
        user_id = str(user_id)
        if own is not None and user_id == own:
            continue
        if user_id not in referred_ids:
            continue
        if not is_commission_eligible(trade):
            continue
        closed_at = trade.get("closed_at")
        if since is not None and (closed_at is None or closed_at < since):
            continue
        if until is not None and (closed_at is None or closed_at >= until):
            continue
        yield trade
