import math
from typing import List, Sequence, Tuple

from openskill.models import PlackettLuce

WIN = 1.0
DRAW = 0.5
LOSS = 0.0

# Display mapping: elo = ordinal * ELO_SCALE + ELO_OFFSET
ELO_OFFSET = 500
ELO_SCALE = 100
DEFAULT_SIGMA = 8.333
MIN_SIGMA = 2.0
SIGMA_DECAY_PER_MATCH = 0.2
MAX_SIGMA_DECAY = 6.33
ORDINAL_Z = 3


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def sigma_for(match_count: int) -> float:
    """Uncertainty for a rating entered by hand; experienced players start tighter."""
    return max(MIN_SIGMA, DEFAULT_SIGMA - min((match_count or 0) * SIGMA_DECAY_PER_MATCH, MAX_SIGMA_DECAY))


def mu_for(elo: float, sigma: float) -> float:
    """Skill mean whose conservative ordinal displays as ``elo``."""
    return (elo - ELO_OFFSET) / ELO_SCALE + ORDINAL_Z * sigma


class EloCalculator:
    """
    OpenSkill (Plackett-Luce) team rating behind an ELO-style display number.

    Each player keeps mu/sigma; the displayed ELO is the conservative ordinal
    (mu - 3 sigma) scaled to the admin-facing range.
    """

    def __init__(self, model: PlackettLuce = None):
        self.model = model or PlackettLuce()

    def rating(self, mu: float, sigma: float):
        return self.model.rating(mu=mu, sigma=sigma)

    def from_elo(self, elo: float, match_count: int = 0):
        sigma = sigma_for(match_count)
        return self.rating(mu_for(elo, sigma), sigma)

    @staticmethod
    def display_elo(rating) -> int:
        return round_half_up(rating.ordinal() * ELO_SCALE + ELO_OFFSET)

    @staticmethod
    def ranks_for(score_a: float) -> List[int]:
        """Lower rank is better; a draw shares the rank."""
        if score_a == DRAW:
            return [1, 1]
        return [1, 2] if score_a == WIN else [2, 1]

    def rate_teams(self, team_a: Sequence, team_b: Sequence, score_a: float) -> Tuple[list, list]:
        """
        New ratings for both rosters given side A's actual score.

        Args:
            team_a: OpenSkill ratings of side A's players
            team_b: OpenSkill ratings of side B's players
            score_a: WIN, DRAW or LOSS from side A's perspective

        Returns:
            (new_team_a, new_team_b) in roster order
        """
        new_a, new_b = self.model.rate([list(team_a), list(team_b)], ranks=self.ranks_for(score_a))
        return list(new_a), list(new_b)
