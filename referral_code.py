import logging
import re
import secrets
import string
import time
from typing import Callable

from errors import ReferralCodeError, ReferralCodeExhausted

logger = logging.getLogger(__name__)

PREFIX = "IB"
MAX_LENGTH = 8
MIN_SUFFIX = 2
ALPHABET = string.digits + string.ascii_uppercase  # base 36
CODE_PATTERN = re.compile(r"^[A-Z0-9]+$")


def to_base36(n: int) -> str:
    if n < 0:
        raise ValueError("base36 encoding needs a non-negative integer")
    if n == 0:
        return "0"
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(ALPHABET[rem])
    return "".join(reversed(out))


def id_part(partner_id: int) -> str:
    """
    the partner-id segment of a code.

    the decimal id whenever 'IB' + id fits in 8; the random suffix shrinks
    to whatever room is left, possibly none. longer ids fall back to
    compact_id_part().
    """
    if partner_id < 0:
        raise ValueError(f"partner id must be non-negative, got {partner_id}")
    decimal = str(partner_id)
    if len(PREFIX) + len(decimal) <= MAX_LENGTH:
        return decimal
    return compact_id_part(partner_id)


def compact_id_part(partner_id: int) -> str:
    """
    the id in base 36 when it still leaves room for 2 random chars, else
    nothing (the code is then IB + 6 random chars).
    """
    encoded = to_base36(partner_id)
    if len(PREFIX) + len(encoded) + MIN_SUFFIX <= MAX_LENGTH:
        return encoded
    return ""


def suffix_length(partner_segment: str) -> int:
    return max(0, MAX_LENGTH - (len(PREFIX) + len(partner_segment)))


def random_suffix(length: int) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def clock_suffix(ticks: int, length: int) -> str:
    if length <= 0:
        return ""
    return to_base36(ticks)[-length:].rjust(length, "0")


def issue_referral_code(
    partner_id: int,
    is_taken: Callable[[str], bool],
    suffix: Callable[[int], str] = random_suffix,
    clock: Callable[[], int] = time.time_ns,
    max_attempts: int = 10,
    fallback_attempts: int = 10,
) -> str:
    """
    produce a free referral code: IB{id}{suffix}, at most 8 chars.

    is_taken is the uniqueness oracle (case-insensitive lookup against
    every partner). random suffixes are tried max_attempts times, then a
    clock-derived suffix that is re-checked as well, advancing one tick
    per try. a decimal id that leaves fewer than 2 suffix chars has only a
    handful of codes; once those are taken the compact id is used.
    raises ReferralCodeExhausted if nothing is free.
    """
    segment = id_part(partner_id)
    segments = [segment]
    if suffix_length(segment) < MIN_SUFFIX:
        segments.append(compact_id_part(partner_id))

    tried = set()

    def free(candidate: str) -> bool:
        if candidate in tried:
            return False
        tried.add(candidate)
        return not is_taken(candidate)

    for segment in segments:
        n = suffix_length(segment)

        for _ in range(max_attempts):
            candidate = f"{PREFIX}{segment}{suffix(n)}"[:MAX_LENGTH]
            if free(candidate):
                return candidate

        logger.warning(
            "referral code for partner %s: random candidates for IB%s taken, using clock suffix",
            partner_id,
            segment,
        )
        ticks = clock()
        for i in range(fallback_attempts):
            candidate = f"{PREFIX}{segment}{clock_suffix(ticks + i, n)}"[:MAX_LENGTH]
            if free(candidate):
                return candidate

    raise ReferralCodeExhausted(f"Could not issue a free referral code for partner {partner_id}.")


def validate_referral_code(code) -> str:
    """
    normalize a user-chosen code (trim, upper-case) and check its shape.
    returns the normalized code.
    """
    if code is None or not isinstance(code, str):
        raise ReferralCodeError("Referral code is required")

    normalized = code.strip().upper()
    if not normalized:
        raise ReferralCodeError("Referral code cannot be empty")
    if len(normalized) > MAX_LENGTH:
        raise ReferralCodeError(f"Referral code must be {MAX_LENGTH} characters or less")
    if not CODE_PATTERN.match(normalized):
        raise ReferralCodeError("Referral code must contain only letters and numbers")
    return normalized
