import logging
from typing import Dict, Any

from psycopg.errors import UniqueViolation

from config import get_settings
from db.db import get_conn
from db.repositories import (
    get_partner,
    get_partner_by_referral_code,
    get_partner_referrer_id,
    referral_code_taken,
    set_partner_referral_code,
    set_partner_referrer_id,
)
from errors import PartnerNotFound, ReferralCodeError, ReferralCodeExhausted
from referral_code import issue_referral_code, validate_referral_code
from referral_engine import ensure_acyclic

logger = logging.getLogger(__name__)

# retries after the storage-level unique index rejected a code
WRITE_ATTEMPTS = 3


def issue_referral_code_db(partner_id: int) -> str:
    """
    return an approved partner's referral code, issuing one if they have
    none. pending, rejected and banned partners raise PartnerNotFound.

    the partner row is locked for the duration, so concurrent calls for
    the same partner issue at most one code. the unique index on
    UPPER(referral_code) is the final guard across partners: a
    UniqueViolation rolls back and we issue again.
    """
    max_attempts = get_settings().REFERRAL_CODE_MAX_ATTEMPTS

    for attempt in range(1, WRITE_ATTEMPTS + 1):
        with get_conn() as conn:
            try:
                partner = get_partner(conn, partner_id, for_update=True)
                if partner is None:
                    raise PartnerNotFound(f"Partner {partner_id} not found")
                # codes are only handed out on approval
                if str(partner.get("status") or "").strip().lower() != "approved":
                    raise PartnerNotFound(f"Partner {partner_id} is not approved")

                if partner.get("referral_code"):
                    conn.commit()
                    return partner["referral_code"]

                code = issue_referral_code(
                    partner_id,
                    lambda candidate: referral_code_taken(conn, candidate),
                    max_attempts=max_attempts,
                )
                set_partner_referral_code(conn, partner_id, code)
                conn.commit()
                logger.info("issued referral code %s to partner %s", code, partner_id)
                return code
            except UniqueViolation:
                conn.rollback()
                logger.warning(
                    "referral code collision on write for partner %s (attempt %d/%d)",
                    partner_id,
                    attempt,
                    WRITE_ATTEMPTS,
                )
            except Exception:
                conn.rollback()
                raise

    raise ReferralCodeExhausted(f"Could not issue a free referral code for partner {partner_id}.")


def update_referral_code_db(partner_id: int, code: str) -> Dict[str, Any]:
    """
    replace a partner's referral code with a chosen one.

    rules:
      - non-empty, at most 8 chars, letters and digits only (stored upper-case)
      - not owned by a different partner
    """
    normalized = validate_referral_code(code)

    with get_conn() as conn:
        try:
            partner = get_partner(conn, partner_id, for_update=True)
            if partner is None:
                raise PartnerNotFound(f"Partner {partner_id} not found")

            if referral_code_taken(conn, normalized, exclude_partner_id=partner_id):
                raise ReferralCodeError("Referral code already exists. Please choose a different code.")

            set_partner_referral_code(conn, partner_id, normalized)
            conn.commit()
        except UniqueViolation:
            conn.rollback()
            raise ReferralCodeError("Referral code already exists. Please choose a different code.")
        except Exception:
            conn.rollback()
            raise

    logger.info("partner %s referral code set to %s", partner_id, normalized)
    return {"partner_id": partner_id, "referral_code": normalized}


def register_referral_db(child_id: int, referral_code: str) -> Dict[str, Any]:
    """
    DB-backed referral registration for a partner application.

    child_id: partner id of the applicant
    referral_code: code of the approved partner who referred them

    rules:
      - referrer must exist and be approved
      - applicant cannot already have a referrer
      - applicant cannot refer themselves (directly or via cycle)
    """
    with get_conn() as conn:
        try:
            # 1) resolve parent_id from referral_code
            parent_id = get_partner_by_referral_code(conn, referral_code)

            if parent_id == child_id:
                raise ValueError("Partner cannot refer themselves.")

            # 2) ensure child has no existing referrer
            existing_ref = get_partner_referrer_id(conn, child_id)
            if existing_ref is not None:
                raise ValueError(
                    f"Partner {child_id} already has a referrer ({existing_ref})."
                )

            # 3) cycle check: walk up from parent; must never hit child
            ensure_acyclic(child_id, parent_id, lambda node: get_partner_referrer_id(conn, node))

            # 4) safe to link
            set_partner_referrer_id(conn, child_id, parent_id)

            conn.commit()
            return {"status": "linked", "child_id": child_id, "parent_id": parent_id}
        except Exception:
            conn.rollback()
            raise
