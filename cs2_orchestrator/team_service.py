import logging
from typing import List

from sqlalchemy import or_

from .elo_templates import slugify
from .errors import ValidationError, ConflictError, NotFoundError
from .models import db, Team, TeamMember, Tournament, Match
from .steam import is_steam64

logger = logging.getLogger(__name__)


class TeamService:
    """Persistent teams used by bracket tournaments. Shuffle teams are generated, not managed here."""

    def list_teams(self) -> List[Team]:
        return Team.query.filter(Team.tournament_id.is_(None)).order_by(Team.name).all()

    def get_team(self, team_id: str) -> Team:
        team = db.session.get(Team, team_id)
        if team is None:
            raise NotFoundError(f"Team '{team_id}' not found")
        return team

    def _roster(self, players) -> List[TeamMember]:
        if not isinstance(players, list) or not players:
            raise ValidationError('A team needs at least one player')
        members = []
        seen = set()
        for position, entry in enumerate(players):
            if not isinstance(entry, dict):
                raise ValidationError('Each player must be an object with steamId and name')
            steam_id = entry.get('steamId') or entry.get('steamid')
            if not is_steam64(steam_id):
                raise ValidationError(f"Invalid Steam64 id: {steam_id}")
            if steam_id in seen:
                raise ConflictError(f"Player {steam_id} is listed twice")
            seen.add(steam_id)
            name = entry.get('name')
            if not isinstance(name, str) or not name.strip():
                raise ValidationError(f"Player {steam_id} needs a name")
            members.append(TeamMember(position=position, steam_id=steam_id, name=name.strip()))
        return members

    def create_team(self, data: dict) -> Team:
        name = data.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('Team name is required')
        team_id = data.get('id') or slugify(name)
        if not team_id:
            raise ValidationError('Team id is required')
        if db.session.get(Team, team_id) is not None:
            raise ConflictError(f"Team '{team_id}' already exists")

        team = Team(id=team_id, name=name.strip(), tag=data.get('tag'))
        team.members = self._roster(data.get('players', []))
        db.session.add(team)
        db.session.commit()
        logger.info(f"Created team {team_id} with {len(team.members)} players")
        return team

    def update_team(self, team_id: str, data: dict) -> Team:
        team = self.get_team(team_id)
        if 'name' in data:
            if not isinstance(data['name'], str) or not data['name'].strip():
                raise ValidationError('Team name is required')
            team.name = data['name'].strip()
        if 'tag' in data:
            team.tag = data['tag']
        if 'players' in data:
            if self._in_active_match(team_id):
                raise ConflictError(f"Team '{team_id}' is playing a match; roster is locked")
            members = self._roster(data['players'])
            team.members.clear()
            db.session.flush()
            team.members.extend(members)
        db.session.commit()
        return team

    def delete_team(self, team_id: str):
        team = self.get_team(team_id)
        for tournament in Tournament.query.all():
            if team_id in (tournament.team_ids or []):
                raise ConflictError(f"Team '{team_id}' is part of tournament '{tournament.name}'")
        db.session.delete(team)
        db.session.commit()
        logger.info(f"Deleted team {team_id}")

    def _in_active_match(self, team_id: str) -> bool:
        return Match.query.filter(
            or_(Match.team1_id == team_id, Match.team2_id == team_id),
            Match.status.in_(['loaded', 'live']),
        ).first() is not None
