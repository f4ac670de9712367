"""ELO-balanced team building for shuffle tournaments."""
from dataclasses import dataclass
from typing import Dict, List, Set, Tuple

MAX_SWAP_ITERATIONS = 10


@dataclass
class RatedPlayer:
    player_id: str
    name: str
    elo: int


def team_average(team: List[RatedPlayer]) -> float:
    if not team:
        return 0.0
    return sum(p.elo for p in team) / len(team)


def average_variance(teams: List[List[RatedPlayer]]) -> float:
    averages = [team_average(t) for t in teams]
    if not averages:
        return 0.0
    mean = sum(averages) / len(averages)
    return sum((a - mean) ** 2 for a in averages) / len(averages)


def select_participants(
    players: List[RatedPlayer],
    team_size: int,
    sat_out_last_round: Set[str],
    match_counts: Dict[str, int],
) -> Tuple[List[RatedPlayer], List[RatedPlayer]]:
    """Split registered players into (playing, sitting_out).

    Only whole teams play. Players who sat out last round go first, then
    players with fewer matches; registration order breaks ties.
    """
    team_count = len(players) // team_size
    needed = team_count * team_size
    if needed == len(players):
        return list(players), []

    order = {p.player_id: idx for idx, p in enumerate(players)}
    ranked = sorted(
        players,
        key=lambda p: (
            0 if p.player_id in sat_out_last_round else 1,
            match_counts.get(p.player_id, 0),
            order[p.player_id],
        ),
    )
    playing_ids = {p.player_id for p in ranked[:needed]}
    playing = [p for p in players if p.player_id in playing_ids]
    sitting = [p for p in players if p.player_id not in playing_ids]
    return playing, sitting


def balance_teams(players: List[RatedPlayer], team_size: int) -> List[List[RatedPlayer]]:
    """Greedy assignment by rating, then pairwise swaps that lower the variance of team averages."""
    team_count = len(players) // team_size
    if team_count == 0:
        return []

    teams: List[List[RatedPlayer]] = [[] for _ in range(team_count)]
    for player in sorted(players, key=lambda p: p.elo, reverse=True):
        open_teams = [t for t in teams if len(t) < team_size]
        target = min(open_teams, key=lambda t: (len(t) > 0, team_average(t)))
        target.append(player)

    for _ in range(MAX_SWAP_ITERATIONS):
        if not _best_swap(teams):
            break

    for team in teams:
        team.sort(key=lambda p: p.elo, reverse=True)
    return teams


def _best_swap(teams: List[List[RatedPlayer]]) -> bool:
    best = average_variance(teams)
    best_move = None
    for a in range(len(teams)):
        for b in range(a + 1, len(teams)):
            for i, pa in enumerate(teams[a]):
                for j, pb in enumerate(teams[b]):
                    if pa.elo == pb.elo:
                        continue
                    teams[a][i], teams[b][j] = pb, pa
                    variance = average_variance(teams)
                    teams[a][i], teams[b][j] = pa, pb
                    if variance < best - 1e-9:
                        best = variance
                        best_move = (a, i, b, j)
    if best_move is None:
        return False
    a, i, b, j = best_move
    teams[a][i], teams[b][j] = teams[b][j], teams[a][i]
    return True
