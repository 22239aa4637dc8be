from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from money import to_decimal

LedgerKey = Tuple[int, str]

LEDGER_FIELDS = ("total_earned", "fixed_earned", "spread_earned", "trade_count", "total_lots")


def aggregate_key(partner_id: int) -> str:
    """counterparty id under which the partner-wide aggregate is stored."""
    return str(partner_id)


def upsert_ledger_entry(
    ledger: Dict[LedgerKey, Dict[str, Any]],
    partner_id: int,
    counterparty_id: str,
    totals: Dict[str, Any],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    in-memory twin of upsert_commission_ledger.

    ledger: dict (partner_id, counterparty_id) -> entry.
    a second write for the same pair overwrites every total and bumps
    last_updated; the entry moves to the end so ties resolve to the
    latest write.
    """
    key = (partner_id, str(counterparty_id))
    entry = {
        "partner_id": partner_id,
        "counterparty_id": str(counterparty_id),
        "total_earned": to_decimal(totals.get("total_earned")),
        "fixed_earned": to_decimal(totals.get("fixed_earned")),
        "spread_earned": to_decimal(totals.get("spread_earned")),
        "trade_count": int(totals.get("trade_count") or 0),
        "total_lots": to_decimal(totals.get("total_lots")),
        "last_updated": now or datetime.now(timezone.utc),
    }
    ledger.pop(key, None)
    ledger[key] = entry
    return entry


def read_latest_entry(
    ledger: Dict[LedgerKey, Dict[str, Any]],
    partner_id: int,
) -> Optional[Dict[str, Any]]:
    """
    most recently updated entry for the partner, not a sum over
    counterparties. None if the partner has never been cached.
    """
    latest = None
    for (pid, _), entry in ledger.items():
        if pid != partner_id:
            continue
        if latest is None or entry["last_updated"] >= latest["last_updated"]:
            latest = entry
    return latest
