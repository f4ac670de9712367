import socket
import logging
from typing import Dict, List

logger = logging.getLogger(__name__)

END_MATCH_COMMAND = "css_restart"


class ServerChannel:
    """Control channel to a CS2 server running MatchZy.

    Implementations raise ExternalServiceError when the server cannot be reached.
    """

    def load_match(self, server, match_config: dict):
        raise NotImplementedError

    def send_commands(self, server, commands: List[str]):
        raise NotImplementedError

    def probe(self, server, timeout: float) -> bool:
        raise NotImplementedError


class RecordingChannel(ServerChannel):
    """Keeps pushed configs and commands in memory and probes reachability over TCP."""

    def __init__(self):
        self.loaded: Dict[str, dict] = {}
        self.commands: List[tuple] = []

    def load_match(self, server, match_config: dict):
        self.loaded[server.id] = match_config
        logger.info(f"Pushed match {match_config.get('matchid')} to server {server.id}")

    def send_commands(self, server, commands: List[str]):
        for command in commands:
            self.commands.append((server.id, command))

    def probe(self, server, timeout: float) -> bool:
        if server.is_fake:
            return True
        try:
            with socket.create_connection((server.host, server.port), timeout=timeout):
                return True
        except OSError as e:
            logger.info(f"Server {server.id} unreachable at {server.host}:{server.port}: {e}")
            return False


def matchzy_settings_commands(chat_prefix=None, admin_chat_prefix=None, knife_enabled=True) -> List[str]:
    commands = []
    if chat_prefix:
        commands.append(f'matchzy_chat_prefix "{chat_prefix}"')
    if admin_chat_prefix:
        commands.append(f'matchzy_admin_chat_prefix "{admin_chat_prefix}"')
    commands.append(f"matchzy_knife_enabled_default {'1' if knife_enabled else '0'}")
    return commands


def matchzy_webhook_commands(webhook_url: str, token: str = None) -> List[str]:
    """Point MatchZy's remote event log at this orchestrator."""
    return [
        f'matchzy_remote_log_url "{webhook_url.rstrip("/")}/api/events"',
        'matchzy_remote_log_header_key "X-MatchZy-Token"',
        f'matchzy_remote_log_header_value "{token or ""}"',
        'get5_check_auths true',
    ]


def build_match_config(match, tournament, expected_players: int) -> dict:
    """MatchZy match JSON for a ready match."""
    num_maps = {'bo1': 1, 'bo3': 3, 'bo5': 5}.get(tournament.format, 1)
    maplist = list(match.maps or [])[:num_maps]
    sides = (match.veto_state or {}).get('sides', {})

    def team_block(team):
        if team is None:
            return None
        return {
            'id': team.id,
            'name': team.name,
            'tag': team.tag or team.name[:4].upper(),
            'players': {m.steam_id: m.name for m in team.members},
        }

    return {
        'matchid': match.slug,
        'num_maps': num_maps,
        'players_per_team': expected_players // 2,
        'min_players_to_ready': expected_players // 2,
        'clinch_series': True,
        'wingman': False,
        'skip_veto': True,
        'maplist': maplist,
        'map_sides': [sides.get(m, 'knife') for m in maplist],
        'team1': team_block(match.team1),
        'team2': team_block(match.team2),
    }
