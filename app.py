import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from balance_db import list_withdrawals_db, reconcile_balance_db, request_withdrawal_db
from balance_engine import format_balance
from commission_db import (
    commission_structure_db,
    compute_commission_db,
    last_known_commission_db,
    refresh_ledger_cache_db,
)
from commission_engine import format_totals
from config import get_settings
from errors import PartnerNotFound, ReferralCodeExhausted, UpstreamUnavailable
from money import fmt_money
from referral_db import issue_referral_code_db, register_referral_db, update_referral_code_db

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title="IB Commission Engine", version="0.1.0")

# CORS middleware to allow the partner dashboard to call the API
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------
# pydantic models (requests)
# ---------

class ReferralRegisterRequest(BaseModel):
    child_partner_id: int = Field(..., description="Partner ID of the applicant being referred")
    referral_code: str = Field(..., description="Referral code used on the application")

class ReferralCodeUpdateRequest(BaseModel):
    referral_code: str = Field(..., description="New referral code (max 8 letters/digits)")

class WithdrawalRequest(BaseModel):
    amount: Decimal = Field(..., description="Amount in the reporting currency")
    method: str = Field(..., description="Payout method")
    account_details: Optional[str] = None


# ---------
# helpers
# ---------

def _fmt_withdrawal(row: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(row)
    out["amount"] = fmt_money(row.get("amount"))
    for key in ("created_at", "updated_at"):
        if out.get(key) is not None:
            out[key] = out[key].isoformat()
    return out


# ---------
# endpoints
# ---------

@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/ib/{partner_id}/commission")
def commission_current(
    partner_id: int,
    from_datetime: datetime | None = Query(
        None,
        alias="from",
        description="Start datetime (inclusive) on trade close time (ISO 8601).",
    ),
    to_datetime: datetime | None = Query(
        None,
        alias="to",
        description="End datetime (exclusive) on trade close time (ISO 8601).",
    ),
):
    """
    current commission, recomputed from the trade ledger.
    the all-time figure is written through to the ledger cache.
    """
    try:
        totals = compute_commission_db(partner_id, since=from_datetime, until=to_datetime)
    except UpstreamUnavailable as e:
        logger.error("commission for partner %s unavailable: %s", partner_id, e)
        raise HTTPException(status_code=503, detail="Trade ledger unavailable")
    except Exception:
        logger.exception("commission computation failed for partner %s", partner_id)
        raise HTTPException(status_code=500, detail="Internal server error")

    response = {"partner_id": partner_id, **format_totals(totals)}
    if from_datetime is not None or to_datetime is not None:
        response["range"] = {
            "from": from_datetime.isoformat() if from_datetime else None,
            "to": to_datetime.isoformat() if to_datetime else None,
        }
    return response


@app.post("/api/ib/{partner_id}/commission/refresh")
def commission_refresh(
    partner_id: int,
    per_counterparty: bool = Query(False, description="Also cache one row per referred user"),
):
    try:
        totals = refresh_ledger_cache_db(partner_id, per_counterparty=per_counterparty)
    except UpstreamUnavailable as e:
        logger.error("ledger refresh for partner %s failed: %s", partner_id, e)
        raise HTTPException(status_code=503, detail="Trade ledger unavailable")
    except Exception:
        logger.exception("ledger refresh failed for partner %s", partner_id)
        raise HTTPException(status_code=500, detail="Internal server error")

    return {"partner_id": partner_id, **format_totals(totals)}


@app.get("/api/ib/{partner_id}/commission/last-known")
def commission_last_known(partner_id: int):
    """
    cached totals without recomputation. zeros if never computed.
    """
    try:
        entry = last_known_commission_db(partner_id)
    except UpstreamUnavailable as e:
        logger.error("ledger cache for partner %s unavailable: %s", partner_id, e)
        raise HTTPException(status_code=503, detail="Ledger cache unavailable")

    if entry is None:
        return {
            "partner_id": partner_id,
            "total_earned": "0.00",
            "fixed_earned": "0.00",
            "spread_earned": "0.00",
            "trade_count": 0,
            "total_lots": "0.00",
            "last_updated": None,
        }
    return format_totals(entry)


@app.get("/api/ib/{partner_id}/commission/structure")
def commission_structure(partner_id: int):
    try:
        structure = commission_structure_db(partner_id)
    except Exception:
        logger.exception("commission structure failed for partner %s", partner_id)
        raise HTTPException(status_code=500, detail="Internal server error")

    for row in structure["groups"] + structure["levels"]:
        row["usd_per_lot"] = fmt_money(row["usd_per_lot"])
        row["spread_share_percentage"] = fmt_money(row["spread_share_percentage"])
    return structure


@app.get("/api/ib/{partner_id}/balance")
def balance(partner_id: int):
    """
    total earned, paid out, pending and available balance.
    degrades to cached or zero earnings instead of failing.
    """
    try:
        summary = reconcile_balance_db(partner_id)
    except Exception:
        logger.exception("balance reconciliation failed for partner %s", partner_id)
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"partner_id": partner_id, **format_balance(summary)}


@app.get("/api/ib/{partner_id}/withdrawals")
def withdrawals(
    partner_id: int,
    status: Optional[str] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=500),
):
    try:
        rows = list_withdrawals_db(partner_id, status=status, limit=limit)
    except Exception:
        logger.exception("listing withdrawals failed for partner %s", partner_id)
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"partner_id": partner_id, "withdrawals": [_fmt_withdrawal(r) for r in rows]}


@app.post("/api/ib/{partner_id}/withdrawals", status_code=201)
def withdrawal_create(partner_id: int, payload: WithdrawalRequest):
    try:
        result = request_withdrawal_db(
            partner_id,
            payload.amount,
            payload.method,
            account_details=payload.account_details,
        )
    except PartnerNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamUnavailable:
        raise HTTPException(status_code=503, detail="Trade ledger unavailable")
    except Exception:
        logger.exception("withdrawal request failed for partner %s", partner_id)
        raise HTTPException(status_code=500, detail="Internal server error")

    return {
        "request": _fmt_withdrawal(result["request"]),
        "summary": format_balance(result["summary"]),
    }


@app.post("/api/ib/{partner_id}/referral-code")
def referral_code_issue(partner_id: int):
    """
    return the partner's referral code, issuing one if they don't have it yet.
    """
    try:
        code = issue_referral_code_db(partner_id)
    except PartnerNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ReferralCodeExhausted as e:
        logger.error(str(e))
        raise HTTPException(status_code=500, detail=str(e))
    except Exception:
        logger.exception("referral code issuance failed for partner %s", partner_id)
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"partner_id": partner_id, "referral_code": code}


@app.put("/api/ib/{partner_id}/referral-code")
def referral_code_update(partner_id: int, payload: ReferralCodeUpdateRequest):
    try:
        return update_referral_code_db(partner_id, payload.referral_code)
    except PartnerNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        # malformed or already taken; surfaced as-is
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("referral code update failed for partner %s", partner_id)
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/api/referral/register")
def referral_register(payload: ReferralRegisterRequest):
    """
    attach an applicant to the partner owning referral_code.
    wraps register_referral_db and normalizes errors into HTTP 400s.
    """
    try:
        return register_referral_db(
            child_id=payload.child_partner_id,
            referral_code=payload.referral_code,
        )
    except ValueError as e:
        # business rule violations (already has referrer, invalid code, cycle, etc.)
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("referral registration failed")
        raise HTTPException(status_code=500, detail="Internal server error")
