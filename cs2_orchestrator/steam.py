import logging
import re
from typing import Optional

import requests

from .errors import ValidationError, NotFoundError, ExternalServiceError

logger = logging.getLogger(__name__)

STEAM64_PATTERN = re.compile(r'^\d{17}$')
PROFILE_URL_PATTERN = re.compile(r'steamcommunity\.com/(id|profiles)/([^/?#]+)')


def is_steam64(value) -> bool:
    return isinstance(value, str) and bool(STEAM64_PATTERN.match(value))


class SteamClient:
    """Minimal Steam Web API client for resolving vanity URLs and player summaries."""

    def __init__(self, api_key: Optional[str], base_url: str = 'https://api.steampowered.com',
                 timeout: int = 10):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def _get(self, path: str, params: dict) -> dict:
        if not self.api_key:
            raise ValidationError('Steam API key is not configured')
        try:
            resp = requests.get(f"{self.base_url}{path}", params={'key': self.api_key, **params},
                                timeout=self.timeout)
            resp.raise_for_status()
            return resp.json().get('response', {})
        except requests.exceptions.RequestException as e:
            logger.warning(f"Steam API request to {path} failed: {e}")
            raise ExternalServiceError('Steam API request failed')
        except ValueError:
            raise ExternalServiceError('Steam API returned an invalid response')

    def resolve_vanity(self, vanity: str) -> str:
        data = self._get('/ISteamUser/ResolveVanityURL/v1/', {'vanityurl': vanity})
        if data.get('success') != 1 or not data.get('steamid'):
            raise NotFoundError(f"Steam profile '{vanity}' not found")
        return data['steamid']

    def resolve(self, query: str) -> str:
        """Accept a Steam64 id, a profile URL or a vanity name and return the Steam64 id."""
        if not isinstance(query, str) or not query.strip():
            raise ValidationError('Steam id or profile URL is required')
        query = query.strip()
        if is_steam64(query):
            return query
        url_match = PROFILE_URL_PATTERN.search(query)
        if url_match:
            kind, value = url_match.groups()
            if kind == 'profiles':
                if not is_steam64(value):
                    raise ValidationError(f"Invalid Steam64 id: {value}")
                return value
            return self.resolve_vanity(value)
        return self.resolve_vanity(query)

    def get_player_summary(self, steam_id: str) -> dict:
        data = self._get('/ISteamUser/GetPlayerSummaries/v2/', {'steamids': steam_id})
        players = data.get('players') or []
        if not players:
            raise NotFoundError(f"Steam profile '{steam_id}' not found")
        summary = players[0]
        return {
            'steamId': summary.get('steamid', steam_id),
            'name': summary.get('personaname'),
            'avatar': summary.get('avatarfull') or summary.get('avatar'),
            'profileUrl': summary.get('profileurl'),
        }

    def lookup(self, query: str) -> dict:
        return self.get_player_summary(self.resolve(query))
