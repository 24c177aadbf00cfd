"""Rank tiers, thresholds and the two pure rank functions.

Every rank shown to a user, whether on a read endpoint or written by the
recalculation pass, must come from ``base_rank_for_xp`` or
``competitive_rank_for_position`` in this module.

Tiers are ordered by ``order`` (0 = Cadet, 16 = Police General).
"""

from __future__ import annotations

RANKS: list[dict] = [
    {"code": "Cadet", "name": "Cadet", "short_name": "Cadet", "category": "Cadet", "order": 0, "min_xp": 0},
    {"code": "Pat", "name": "Patrolman/Patrolwoman", "short_name": "Patrolman", "category": "Enlisted", "order": 1, "min_xp": 100},
    {"code": "PCpl", "name": "Police Corporal", "short_name": "Corporal", "category": "Enlisted", "order": 2, "min_xp": 250},
    {"code": "PSSg", "name": "Police Staff Sergeant", "short_name": "Staff Sgt", "category": "Enlisted", "order": 3, "min_xp": 500},
    {"code": "PMSg", "name": "Police Master Sergeant", "short_name": "Master Sgt", "category": "Enlisted", "order": 4, "min_xp": 800},
    {"code": "PSMS", "name": "Police Senior Master Sergeant", "short_name": "Senior MS", "category": "Enlisted", "order": 5, "min_xp": 1200},
    {"code": "PCMS", "name": "Police Chief Master Sergeant", "short_name": "Chief MS", "category": "Enlisted", "order": 6, "min_xp": 1700},
    {"code": "PEMS", "name": "Police Executive Master Sergeant", "short_name": "Exec MS", "category": "Enlisted", "order": 7, "min_xp": 2300},
    {"code": "PLT", "name": "Police Lieutenant", "short_name": "Lieutenant", "category": "Officer", "order": 8, "min_xp": 3000},
    {"code": "PCPT", "name": "Police Captain", "short_name": "Captain", "category": "Officer", "order": 9, "min_xp": 4000},
    {"code": "PMAJ", "name": "Police Major", "short_name": "Major", "category": "Officer", "order": 10, "min_xp": 5200},
    {"code": "PLTCOL", "name": "Police Lieutenant Colonel", "short_name": "Lt. Colonel", "category": "Officer", "order": 11, "min_xp": 6600},
    {"code": "PCOL", "name": "Police Colonel", "short_name": "Colonel", "category": "Officer", "order": 12, "min_xp": 8200},
    {"code": "PBGEN", "name": "Police Brigadier General", "short_name": "Brig. General", "category": "Officer", "order": 13, "min_xp": 10000},
    {"code": "PMGEN", "name": "Police Major General", "short_name": "Maj. General", "category": "Officer", "order": 14, "min_xp": 12500},
    {"code": "PLTGEN", "name": "Police Lieutenant General", "short_name": "Lt. General", "category": "Officer", "order": 15, "min_xp": 15500},
    {"code": "PGEN", "name": "Police General", "short_name": "General", "category": "Officer", "order": 16, "min_xp": 20000},
]

RANK_CODES: list[str] = [r["code"] for r in RANKS]
LOWEST_RANK = RANKS[0]["code"]
TOP_RANK = RANKS[-1]["code"]

# (rank, percentile ceiling), ascending ceilings. Position 1 is handled
# before the scan and always maps to TOP_RANK.
PERCENTILE_THRESHOLDS: list[tuple[str, float]] = [
    ("PLTGEN", 0.2),
    ("PMGEN", 1),
    ("PBGEN", 2),
    ("PCOL", 5),
    ("PLTCOL", 8),
    ("PMAJ", 10),
    ("PCPT", 12),
    ("PLT", 15),
    ("PEMS", 20),
    ("PCMS", 30),
    ("PSMS", 40),
    ("PMSg", 55),
    ("PSSg", 75),
    ("PCpl", 90),
    ("Pat", 99),
    ("Cadet", 100),
]

XP_PER_LEVEL = 100

_BY_CODE: dict[str, dict] = {r["code"]: r for r in RANKS}


def is_valid_rank(code: str) -> bool:
    return code in _BY_CODE


def get_rank_info(code: str) -> dict:
    """Return the tier definition for a rank code. Raises ValueError if unknown."""
    info = _BY_CODE.get(code)
    if info is None:
        raise ValueError(f"Unknown rank: {code}")
    return info


def rank_ordinal(code: str) -> int:
    return get_rank_info(code)["order"]


def compare_ranks(a: str, b: str) -> int:
    """Negative if a < b, zero if equal, positive if a > b."""
    return rank_ordinal(a) - rank_ordinal(b)


def displayed_rank(stored: str | None) -> str:
    """Competitive rank as shown on every read path: the last recalculated value.

    Unknown or missing stored codes read as the lowest tier.
    """
    return stored if stored is not None and is_valid_rank(stored) else LOWEST_RANK


def max_rank(*codes: str) -> str:
    """Highest-ordinal rank among the given codes."""
    return max(codes, key=rank_ordinal)


def get_next_rank(code: str) -> str | None:
    """The tier directly above ``code``, or None at the top."""
    order = rank_ordinal(code)
    if order + 1 >= len(RANKS):
        return None
    return RANKS[order + 1]["code"]


def base_rank_for_xp(xp: int) -> str:
    """XP track: the highest tier whose threshold is <= xp."""
    current = LOWEST_RANK
    for tier in RANKS:
        if xp >= tier["min_xp"]:
            current = tier["code"]
        else:
            break
    return current


def xp_to_next_base_rank(xp: int) -> int | None:
    """XP still needed for the next base tier, or None at the top tier."""
    nxt = get_next_rank(base_rank_for_xp(xp))
    if nxt is None:
        return None
    return get_rank_info(nxt)["min_xp"] - xp


def competitive_rank_for_position(position: int, total_users: int) -> str:
    """Competitive track: percentile band of a 1-based leaderboard position.

    Position 1 is always the top tier. Positions beyond the population
    (stale data) fall back to the lowest tier.
    """
    if position < 1:
        raise ValueError(f"Position must be >= 1, got {position}")
    if position == 1:
        return TOP_RANK
    if total_users < 1:
        return LOWEST_RANK

    percentile = position * 100 / total_users
    for code, ceiling in PERCENTILE_THRESHOLDS:
        if percentile <= ceiling:
            return code
    return LOWEST_RANK


def compute_level(total_xp: int) -> int:
    """Level derived from XP: one level per 100 XP, starting at 1."""
    return max(total_xp, 0) // XP_PER_LEVEL + 1
