"""
Bracket graph computation.

Pure functions: given participants (and, for swiss, standings) they return
match skeletons with slug, round and winner/loser linkage. Persisting the
skeletons and feeding results through the links is the orchestrator's job.
"""
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple, Set, FrozenSet


@dataclass
class BracketMatch:
    slug: str
    round: int
    match_number: int
    section: str = 'main'
    section_round: Optional[int] = None
    team1_id: Optional[str] = None
    team2_id: Optional[str] = None
    next_slug: Optional[str] = None
    next_slot: Optional[int] = None
    loser_next_slug: Optional[str] = None
    loser_next_slot: Optional[int] = None


def next_power_of_two(n: int) -> int:
    size = 1
    while size < n:
        size *= 2
    return size


def seed_order(size: int) -> List[int]:
    """Standard bracket seeding: 1 meets the lowest seed, top seeds meet last."""
    order = [1]
    while len(order) < size:
        total = len(order) * 2 + 1
        order = [x for seed in order for x in (seed, total - seed)]
    return order


def _first_round_slots(team_ids: List[str]) -> List[Tuple[Optional[str], Optional[str]]]:
    size = next_power_of_two(len(team_ids))
    order = seed_order(size)

    def team(seed):
        return team_ids[seed - 1] if seed <= len(team_ids) else None

    return [(team(order[i]), team(order[i + 1])) for i in range(0, size, 2)]


def _slot(index: int) -> int:
    return 1 if index % 2 == 1 else 2


def single_elimination(team_ids: List[str]) -> List[BracketMatch]:
    if len(team_ids) < 2:
        return []

    size = next_power_of_two(len(team_ids))
    rounds = int(math.log2(size))
    matches = []

    for r in range(1, rounds + 1):
        for i in range(1, (size >> r) + 1):
            m = BracketMatch(slug=f"r{r}m{i}", round=r, match_number=i, section_round=r)
            if r < rounds:
                m.next_slug = f"r{r + 1}m{(i + 1) // 2}"
                m.next_slot = _slot(i)
            matches.append(m)

    for m, (t1, t2) in zip(matches, _first_round_slots(team_ids)):
        m.team1_id, m.team2_id = t1, t2

    return matches


def double_elimination(team_ids: List[str]) -> List[BracketMatch]:
    """Winners bracket, losers bracket and a single grand final (no bracket reset).

    Global round of a match is one more than the latest round feeding it, so
    the losers bracket runs interleaved with the winners bracket.
    """
    if len(team_ids) < 2:
        return []

    size = next_power_of_two(len(team_ids))
    k = int(math.log2(size))
    lb_rounds = 2 * (k - 1)
    gf_round = max(k, lb_rounds + 1) + 1
    matches = []

    for r in range(1, k + 1):
        for i in range(1, (size >> r) + 1):
            m = BracketMatch(slug=f"r{r}m{i}", round=r, match_number=i,
                             section='winners', section_round=r)
            if r < k:
                m.next_slug, m.next_slot = f"r{r + 1}m{(i + 1) // 2}", _slot(i)
            else:
                m.next_slug, m.next_slot = 'gf', 1

            if k == 1:
                m.loser_next_slug, m.loser_next_slot = 'gf', 2
            elif r == 1:
                m.loser_next_slug, m.loser_next_slot = f"lb-r1m{(i + 1) // 2}", _slot(i)
            else:
                m.loser_next_slug, m.loser_next_slot = f"lb-r{2 * (r - 1)}m{i}", 2
            matches.append(m)

    for lr in range(1, lb_rounds + 1):
        count = size >> ((lr + 1) // 2 + 1)
        for i in range(1, count + 1):
            m = BracketMatch(slug=f"lb-r{lr}m{i}", round=lr + 1, match_number=i,
                             section='losers', section_round=lr)
            if lr == lb_rounds:
                m.next_slug, m.next_slot = 'gf', 2
            elif lr % 2 == 1:
                m.next_slug, m.next_slot = f"lb-r{lr + 1}m{i}", 1
            else:
                m.next_slug, m.next_slot = f"lb-r{lr + 1}m{(i + 1) // 2}", _slot(i)
            matches.append(m)

    matches.append(BracketMatch(slug='gf', round=gf_round, match_number=1,
                                section='grand_final', section_round=1))

    for m, (t1, t2) in zip(matches, _first_round_slots(team_ids)):
        m.team1_id, m.team2_id = t1, t2

    return matches


def round_robin(team_ids: List[str]) -> List[BracketMatch]:
    """Circle method; a team paired with the phantom slot sits the round out."""
    ids = list(team_ids)
    n = len(ids)
    if n < 2:
        return []
    if n % 2 == 1:
        ids.append(None)
        n += 1

    matches = []
    for round_idx in range(n - 1):
        round_num = round_idx + 1
        number = 0
        for i in range(n // 2):
            t1, t2 = ids[i], ids[n - 1 - i]
            if t1 is not None and t2 is not None:
                number += 1
                matches.append(BracketMatch(
                    slug=f"r{round_num}m{number}", round=round_num, match_number=number,
                    section='round_robin', section_round=round_num, team1_id=t1, team2_id=t2,
                ))
        ids = [ids[0]] + [ids[-1]] + ids[1:-1]

    return matches


def round_robin_rounds(team_count: int) -> int:
    if team_count < 2:
        return 0
    return team_count - 1 if team_count % 2 == 0 else team_count


def swiss_rounds(team_count: int) -> int:
    if team_count < 2:
        return 0
    return math.ceil(math.log2(team_count))


def swiss_pairings(
    ranked_team_ids: List[str],
    played: Set[FrozenSet[str]],
    had_bye: Set[str],
) -> Tuple[List[Tuple[str, str]], Optional[str]]:
    """Pair teams in standings order, avoiding rematches where possible.

    Returns (pairs, bye_team). With an odd count the lowest-ranked team that
    has not had a bye yet sits out.
    """
    pool = list(ranked_team_ids)
    bye = None
    if len(pool) % 2 == 1:
        candidates = [t for t in reversed(pool) if t not in had_bye]
        bye = candidates[0] if candidates else pool[-1]
        pool.remove(bye)

    pairs = []
    while pool:
        first = pool.pop(0)
        opponent_idx = next(
            (idx for idx, other in enumerate(pool) if frozenset((first, other)) not in played),
            0,
        )
        pairs.append((first, pool.pop(opponent_idx)))

    return pairs, bye
