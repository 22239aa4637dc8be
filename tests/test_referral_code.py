import pytest

from errors import ReferralCodeError, ReferralCodeExhausted
from referral_code import (
    CODE_PATTERN,
    MAX_LENGTH,
    clock_suffix,
    id_part,
    issue_referral_code,
    suffix_length,
    to_base36,
    validate_referral_code,
)


def _never_taken(code):
    return False


def test_small_id_uses_decimal_id_and_fills_to_eight():
    code = issue_referral_code(7, _never_taken, suffix=lambda n: "X" * n)
    assert code == "IB7XXXXX"


def test_four_digit_id_keeps_minimum_suffix():
    assert suffix_length(id_part(1234)) == 2
    code = issue_referral_code(1234, _never_taken, suffix=lambda n: "Q" * n)
    assert code == "IB1234QQ"


def test_five_digit_id_keeps_decimal_id_with_short_suffix():
    assert suffix_length(id_part(12345)) == 1
    code = issue_referral_code(12345, _never_taken, suffix=lambda n: "Z" * n)
    assert code == "IB12345Z"


def test_six_digit_id_is_the_whole_code():
    """
    'IB123456' already fills 8 chars, so there is no random suffix at all.
    """
    assert suffix_length(id_part(123456)) == 0
    assert issue_referral_code(123456, _never_taken) == "IB123456"


def test_six_digit_id_widens_to_base36_once_taken():
    """
    the single decimal code is owned by someone else (a hand-picked code);
    the base 36 id still leaves room for 2 random chars.
    """
    calls = []

    def is_taken(code):
        calls.append(code)
        return code == "IB123456"

    code = issue_referral_code(123456, is_taken, suffix=lambda n: "Z" * n)
    assert to_base36(123456) == "2N9C"
    assert code == "IB2N9CZZ"
    # the lone decimal candidate is only looked up once
    assert calls.count("IB123456") == 1


def test_seven_digit_id_switches_to_base36():
    assert id_part(1234567) == to_base36(1234567)
    code = issue_referral_code(1234567, _never_taken, suffix=lambda n: "Q" * n)
    assert code == "IB" + to_base36(1234567) + "QQ"
    assert len(code) == MAX_LENGTH


def test_negative_partner_id_is_rejected():
    with pytest.raises(ValueError):
        id_part(-5)
    with pytest.raises(ValueError):
        issue_referral_code(-5, _never_taken)


def test_eight_digit_id_never_overflows_cap():
    """
    partner 12345678: max(2, 8 - 10) = 2 suffix chars would give 12 chars.
    the id is dropped instead and the code stays at 8.
    """
    assert id_part(12345678) == ""
    code = issue_referral_code(12345678, _never_taken)
    assert len(code) == MAX_LENGTH
    assert code.startswith("IB")
    assert CODE_PATTERN.match(code)


@pytest.mark.parametrize("partner_id", [0, 1, 9, 99, 999, 1000, 99999, 10 ** 6, 10 ** 9, 10 ** 15])
def test_codes_are_uppercase_alnum_and_at_most_eight(partner_id):
    code = issue_referral_code(partner_id, _never_taken)
    assert len(code) <= MAX_LENGTH
    assert CODE_PATTERN.match(code)


def test_distinct_partners_get_distinct_codes():
    issued = set()

    def is_taken(code):
        return code.upper() in issued

    for partner_id in range(1, 2001):
        code = issue_referral_code(partner_id, is_taken)
        assert code not in issued
        issued.add(code)

    assert len(issued) == 2000


def test_retries_until_oracle_accepts():
    suffixes = iter(["AAAAA", "BBBBB", "CCCCC"])
    taken = {"IB7AAAAA", "IB7BBBBB"}
    code = issue_referral_code(7, taken.__contains__, suffix=lambda n: next(suffixes))
    assert code == "IB7CCCCC"


def test_clock_fallback_is_rechecked_for_uniqueness():
    """
    all random candidates collide; the first clock candidate collides too,
    so the next tick is used.
    """
    taken = {"IB7AAAAA", "IB700000"}
    code = issue_referral_code(
        7,
        taken.__contains__,
        suffix=lambda n: "A" * n,
        clock=lambda: 0,
    )
    assert code == "IB700001"


def test_exhaustion_raises_after_bounded_attempts():
    calls = []

    def always_taken(code):
        calls.append(code)
        return True

    with pytest.raises(ReferralCodeExhausted):
        issue_referral_code(7, always_taken, max_attempts=10, fallback_attempts=10)

    assert len(calls) == 20


def test_clock_suffix_pads_and_truncates():
    assert clock_suffix(0, 3) == "000"
    assert clock_suffix(12345, 0) == ""
    assert clock_suffix(36 ** 4 + 35, 2) == "0Z"
    assert len(clock_suffix(1_700_000_000_000_000_000, 6)) == 6


def test_validate_normalizes_case_and_whitespace():
    assert validate_referral_code("  ab12cd ") == "AB12CD"


@pytest.mark.parametrize("bad", ["", "   ", "ABCDEFGHI", "AB-12", "ab 12", "ÄB12", None, 1234])
def test_validate_rejects_malformed_codes(bad):
    with pytest.raises(ReferralCodeError):
        validate_referral_code(bad)


def test_referral_code_error_is_a_value_error():
    with pytest.raises(ValueError):
        validate_referral_code("TOO-LONG-CODE")
