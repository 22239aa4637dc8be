MAX_DEPTH = 1000


def register_referral(child_id, parent_id, ref):
    """
    record that partner `parent_id` referred applicant `child_id`.
    ref: dict mapping child_id -> parent_id (the referred_by column)
    rules:
      - nobody refers themselves
      - a child can only have ONE referrer (cannot be overwritten)
      - adding the edge child -> parent must NOT create a cycle
    """
    if child_id == parent_id:
        raise ValueError("Partner cannot refer themselves.")

    # 1) child cannot already have a referrer
    if ref.get(child_id) is not None:
        raise ValueError(f"Partner {child_id} already has a referrer ({ref[child_id]}).")

    # 2) cycle check: walk UP from parent, we must never hit child
    ensure_acyclic(child_id, parent_id, ref.get)

    # 3) child is referred by parent
    ref[child_id] = parent_id


def ensure_acyclic(child_id, parent_id, get_parent, max_depth=MAX_DEPTH):
    """
    walk up from parent_id via get_parent(node) -> parent or None.
    raises ValueError if child_id is an ancestor of parent_id, if an
    existing loop is found, or if the chain is deeper than max_depth.
    """
    visited = set()
    current = parent_id
    while current is not None:
        if current == child_id:
            raise ValueError(
                f"Registering {parent_id} as referrer of {child_id} would create a cycle."
            )
        if current in visited or len(visited) >= max_depth:
            raise ValueError(f"Referral chain above {parent_id} is corrupt (loop or too deep).")
        visited.add(current)
        current = get_parent(current)


def get_upline(partner_id, ref, max_levels=3):
    """
    given partner_id and ref: child -> parent,
    return [L1, L2, L3,...] up to max_levels, padded with None.
    """
    upline = []
    current = partner_id
    seen = {partner_id}

    for _ in range(max_levels):
        parent = ref.get(current)
        if parent is None or parent in seen:
            break
        upline.append(parent)
        seen.add(parent)
        current = parent

    upline.extend([None] * (max_levels - len(upline)))
    return upline


def direct_referrals(partner_id, ref):
    """children of partner_id in ref, in insertion order."""
    return [child for child, parent in ref.items() if parent == partner_id]
