class PartnerNotFound(ValueError):
    """Partner (IB application) does not exist."""


class ReferralCodeError(ValueError):
    """Referral code is malformed or already owned by another partner."""


class ReferralCodeExhausted(RuntimeError):
    """No free referral code could be produced within the attempt bounds."""


class UpstreamUnavailable(RuntimeError):
    """Trade ledger or rule store could not be read during recomputation."""
