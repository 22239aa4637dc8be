from datetime import datetime, timezone

from attribution import is_commission_eligible, referred_user_ids, select_trades

PARTNER_ID = 7
OWN_USER = "u-partner"


def _trade(user_id, partner_id=PARTNER_ID, close_price=1.1, profit=12, closed_at=None, **extra):
    trade = {
        "user_id": user_id,
        "partner_id": partner_id,
        "group_id": "g1",
        "volume_lots": 1,
        "fixed_commission": 2,
        "close_price": close_price,
        "profit": profit,
        "closed_at": closed_at,
    }
    trade.update(extra)
    return trade


def test_eligibility_requires_close_price_and_profit():
    assert is_commission_eligible(_trade("u1"))
    assert is_commission_eligible(_trade("u1", profit=-5))  # losses count too
    assert not is_commission_eligible(_trade("u1", close_price=None))
    assert not is_commission_eligible(_trade("u1", close_price=0))
    assert not is_commission_eligible(_trade("u1", profit=0))
    assert not is_commission_eligible(_trade("u1", profit=None))


def test_referred_set_is_union_of_records_and_applications():
    referrals = [
        {"partner_id": PARTNER_ID, "user_id": "u1"},
        {"partner_id": PARTNER_ID, "user_id": None},
        {"partner_id": 99, "user_id": "u-other"},
    ]
    applications = [
        {"referred_by": PARTNER_ID, "user_id": 42},
        {"referred_by": PARTNER_ID, "user_id": "u1"},
        {"referred_by": None, "user_id": "u-free"},
    ]
    assert referred_user_ids(PARTNER_ID, referrals, applications) == {"u1", "42"}


def test_empty_referred_set_yields_no_trades():
    """
    a partner with no downline earns nothing, however busy the ledger is.
    """
    trades = [_trade("u1"), _trade("u2"), _trade(OWN_USER)]
    assert list(select_trades(PARTNER_ID, trades, set(), own_user_id=OWN_USER)) == []


def test_only_referred_users_count():
    trades = [_trade("u1"), _trade("u2"), _trade("u3")]
    selected = list(select_trades(PARTNER_ID, trades, {"u1", "u3"}))
    assert [t["user_id"] for t in selected] == ["u1", "u3"]


def test_own_account_is_always_excluded():
    trades = [_trade(OWN_USER), _trade("u1")]
    # even if the partner's own account slipped into the referred set
    selected = list(select_trades(PARTNER_ID, trades, {OWN_USER, "u1"}, own_user_id=OWN_USER))
    assert [t["user_id"] for t in selected] == ["u1"]


def test_trades_for_other_partners_and_open_trades_are_skipped():
    trades = [
        _trade("u1", partner_id=8),
        _trade("u1", close_price=0),
        _trade("u1", profit=0),
        _trade("u1", order_id="keep"),
    ]
    selected = list(select_trades(PARTNER_ID, trades, {"u1"}))
    assert [t.get("order_id") for t in selected] == ["keep"]


def test_user_ids_compared_as_text():
    trades = [_trade(42)]
    assert len(list(select_trades(PARTNER_ID, trades, {"42"}))) == 1


def test_time_window_is_half_open():
    jan = datetime(2025, 1, 1, tzinfo=timezone.utc)
    feb = datetime(2025, 2, 1, tzinfo=timezone.utc)
    mar = datetime(2025, 3, 1, tzinfo=timezone.utc)
    trades = [
        _trade("u1", closed_at=jan, order_id="jan"),
        _trade("u1", closed_at=feb, order_id="feb"),
        _trade("u1", closed_at=mar, order_id="mar"),
        _trade("u1", closed_at=None, order_id="unknown"),
    ]
    selected = list(select_trades(PARTNER_ID, trades, {"u1"}, since=feb, until=mar))
    assert [t["order_id"] for t in selected] == ["feb"]
