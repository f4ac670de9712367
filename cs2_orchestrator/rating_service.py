import logging
from typing import List, Optional

from .elo_calculator import EloCalculator, WIN, DRAW, LOSS
from .elo_templates import EloTemplateService
from .models import db, Match, Player, PlayerMatchStats, PlayerRatingHistory

logger = logging.getLogger(__name__)


class RatingService:
    """Applies ELO changes for a completed match, at most once per match."""

    def __init__(self, calculator: EloCalculator = None, templates: EloTemplateService = None,
                 default_elo: int = 3000, settings=None):
        self.calculator = calculator or EloCalculator()
        self.templates = templates or EloTemplateService()
        self._default_elo = default_elo
        self.settings = settings

    @property
    def default_elo(self) -> int:
        if self.settings is not None:
            return self.settings.get_default_player_elo()
        return self._default_elo

    def _players_for(self, team) -> List[Player]:
        if team is None:
            return []
        players = []
        for member in team.members:
            player = db.session.get(Player, member.steam_id)
            if player is None:
                player = Player(id=member.steam_id, name=member.name,
                                current_elo=self.default_elo, starting_elo=self.default_elo)
                db.session.add(player)
            players.append(player)
        return players

    def is_rateable(self, match: Match) -> bool:
        if match.ratings_applied or match.is_walkover:
            return False
        if match.team1_id is None or match.team2_id is None:
            return False
        return match.winner_id is not None or match.is_draw

    def apply_match(self, match: Match) -> List[PlayerRatingHistory]:
        """Update every player's rating for this match. Caller commits."""
        if not self.is_rateable(match):
            return []

        team1 = self._players_for(match.team1)
        team2 = self._players_for(match.team2)
        if not team1 or not team2:
            logger.warning(f"Match {match.slug} has an empty roster; ratings skipped")
            match.ratings_applied = True
            return []

        if match.is_draw:
            score1 = DRAW
        else:
            score1 = WIN if match.winner_id == match.team1_id else LOSS

        new1, new2 = self.calculator.rate_teams(
            [self.calculator.rating(p.openskill_mu, p.openskill_sigma) for p in team1],
            [self.calculator.rating(p.openskill_mu, p.openskill_sigma) for p in team2],
            score1,
        )
        template = self.templates.resolve_for_tournament(match.tournament.elo_template_id)
        stats = {
            s.player_id: s.stat_line()
            for s in PlayerMatchStats.query.filter_by(match_id=match.id).all()
        }

        history = []
        for players, ratings, score in ((team1, new1, score1), (team2, new2, 1 - score1)):
            result = 'draw' if score == DRAW else ('win' if score == WIN else 'loss')
            for player, rating in zip(players, ratings):
                before = player.current_elo
                base_after = self.calculator.display_elo(rating)
                adjustment = self.templates.calculate_adjustment(template, stats.get(player.id))
                after = base_after + adjustment
                entry = PlayerRatingHistory(
                    player_id=player.id,
                    match_id=match.id,
                    match_slug=match.slug,
                    elo_before=before,
                    elo_after=after,
                    elo_change=after - before,
                    base_elo_after=base_after,
                    stat_adjustment=adjustment,
                    mu_before=player.openskill_mu,
                    mu_after=rating.mu,
                    sigma_before=player.openskill_sigma,
                    sigma_after=rating.sigma,
                    template_id=template.id if template else None,
                    match_result=result,
                )
                db.session.add(entry)
                player.openskill_mu = rating.mu
                player.openskill_sigma = rating.sigma
                player.current_elo = after
                player.match_count = (player.match_count or 0) + 1
                history.append(entry)

        match.ratings_applied = True
        logger.info(f"Applied ratings for match {match.slug} to {len(history)} players")
        return history

    def apply_late_stats(self, match: Match, steam_id: str) -> Optional[PlayerRatingHistory]:
        """
        Re-apply one player's stat adjustment after ratings were already written.

        MatchZy can send a player's stat line after the series end. The
        adjustment is recomputed from the stored line and only the difference
        to what was applied before is added, so repeats change nothing.
        """
        if not match.ratings_applied:
            return None
        entry = PlayerRatingHistory.query.filter_by(match_id=match.id, player_id=steam_id).first()
        row = PlayerMatchStats.query.filter_by(match_id=match.id, player_id=steam_id).first()
        if entry is None or row is None:
            return None

        template = self.templates.resolve_for_tournament(match.tournament.elo_template_id)
        adjustment = self.templates.calculate_adjustment(template, row.stat_line())
        delta = adjustment - (entry.stat_adjustment or 0)
        if delta == 0:
            return entry

        entry.stat_adjustment = adjustment
        entry.elo_after += delta
        entry.elo_change += delta
        entry.template_id = template.id if template else None
        player = db.session.get(Player, steam_id)
        if player is not None:
            player.current_elo += delta
        logger.info(f"Late stats for {steam_id} in match {match.slug}: adjustment {delta:+d}")
        return entry


def record_player_stats(match: Match, steam_id: str, team_id, stats: dict) -> PlayerMatchStats:
    """Upsert a player's stat line; re-delivered stats overwrite rather than accumulate."""
    row = PlayerMatchStats.query.filter_by(match_id=match.id, player_id=steam_id).first()
    if row is None:
        row = PlayerMatchStats(match_id=match.id, player_id=steam_id)
        db.session.add(row)
    row.team_id = team_id
    for key, attr in PlayerMatchStats.STAT_FIELDS.items():
        if key in stats and stats[key] is not None:
            setattr(row, attr, stats[key])
    return row
