import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from group_keys import normalize_group_key, parse_csv
from money import to_decimal

logger = logging.getLogger(__name__)

Rule = Dict[str, Any]
RuleIndex = Dict[str, Rule]


def _rule_from_row(row: Dict[str, Any]) -> Rule:
    return {
        "group_id": row.get("group_id"),
        "usd_per_lot": to_decimal(row.get("usd_per_lot")),
        "spread_share_percentage": to_decimal(row.get("spread_share_percentage")),
    }


def build_rule_index(assignments: Iterable[Dict[str, Any]]) -> RuleIndex:
    """
    group assignments -> {key: rule}.

    every assignment is stored under its raw lower-cased group_id, its
    lower-cased group_name and the normalized path tail. later assignments
    win for a shared key. dict order is insertion order, which is what the
    'first rule' fallback relies on.
    """
    index: RuleIndex = {}
    for row in assignments:
        rule = _rule_from_row(row)
        keys = [
            str(row.get("group_id") or "").strip().lower(),
            str(row.get("group_name") or "").strip().lower(),
            normalize_group_key(row.get("group_id")),
        ]
        for key in keys:
            if key:
                index[key] = rule
    return index


# ---------
# matchers: (index, trade_group_id) -> rule or None
# ---------

def _match_exact(index: RuleIndex, group_id: Optional[str]) -> Optional[Rule]:
    key = normalize_group_key(group_id)
    return index.get(key) if key else None


def _match_raw(index: RuleIndex, group_id: Optional[str]) -> Optional[Rule]:
    key = str(group_id or "").strip().lower()
    return index.get(key) if key else None


def _match_partial(index: RuleIndex, group_id: Optional[str]) -> Optional[Rule]:
    key = normalize_group_key(group_id)
    if not key:
        return None
    for known_key, rule in index.items():
        if key in known_key or known_key in key:
            return rule
    return None


def _match_first(index: RuleIndex, group_id: Optional[str]) -> Optional[Rule]:
    for rule in index.values():
        return rule
    return None


MATCHERS: List[Tuple[str, Callable[[RuleIndex, Optional[str]], Optional[Rule]]]] = [
    ("exact", _match_exact),
    ("raw", _match_raw),
    ("partial", _match_partial),
    ("fallback", _match_first),
]


def resolve_rule(index: RuleIndex, group_id: Optional[str]) -> Tuple[Optional[Rule], Optional[str]]:
    """
    run the matcher chain in order; first hit wins.
    returns (rule, matcher_name), or (None, None) for an empty index.
    """
    for name, matcher in MATCHERS:
        rule = matcher(index, group_id)
        if rule is not None:
            return rule, name
    return None, None


def tier_levels(
    tier_rules: Iterable[Dict[str, Any]],
    tier_names: Union[str, List[str], None],
) -> List[Dict[str, Any]]:
    """
    ordered commission levels for a partner's primary tier.

    tier_names is the partner's comma-delimited tiers column (or a list);
    the first name is the primary tier. one rule per level, first one
    seen wins. if no rule carries the primary tier name we fall back to
    every rule given. the stack applies to all of the partner's groups.
    """
    names = parse_csv(tier_names) if isinstance(tier_names, str) or tier_names is None else list(tier_names)
    rules = list(tier_rules)
    if not names or not rules:
        return []

    primary = names[0]
    selected = [r for r in rules if str(r.get("tier_name") or "").strip().lower() == primary.lower()]
    if not selected:
        logger.info("no tier rules named %r, using all %d supplied rules", primary, len(rules))
        selected = rules

    levels: Dict[int, Dict[str, Any]] = {}
    for r in selected:
        level = int(r.get("level") or 1)
        if level in levels:
            continue
        levels[level] = {
            "level": level,
            "level_name": f"Level {level}",
            "tier_name": r.get("tier_name") or primary,
            "usd_per_lot": to_decimal(r.get("usd_per_lot")),
            "spread_share_percentage": to_decimal(r.get("spread_share_percentage")),
        }

    return [levels[k] for k in sorted(levels)]
