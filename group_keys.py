import re
from typing import List, Optional

_SEPARATORS = re.compile(r"[\\/]")


def normalize_group_key(raw: Optional[str]) -> str:
    """
    canonical key for a trading-group identifier.

    raw ids may be full paths with either separator, e.g.
    'real\\Retail\\Classic' or 'demo/retail/classic' -> 'classic'.
    None / empty -> ''.
    """
    if raw is None:
        return ""
    s = str(raw).strip().lower()
    if not s:
        return ""
    parts = [p for p in _SEPARATORS.split(s) if p.strip()]
    if not parts:
        return ""
    return parts[-1].strip()


def parse_csv(value: Optional[str]) -> List[str]:
    """
    split a comma-delimited column (partners.group_ids / partners.tier_names).
    blanks are dropped, order is kept.
    """
    if not value:
        return []
    return [item.strip() for item in str(value).split(",") if item.strip()]
