import logging
from typing import Optional
from urllib.parse import urlparse

from .elo_calculator import round_half_up
from .errors import ValidationError
from .models import db, AppSetting, encrypt_secret, decrypt_secret

logger = logging.getLogger(__name__)

FALLBACK_PLAYER_ELO = 3000

ALLOWED_KEYS = [
    'webhook_url',
    'steam_api_key',
    'default_player_elo',
    'simulate_matches',
    'matchzy_chat_prefix',
    'matchzy_admin_chat_prefix',
    'matchzy_knife_enabled_default',
]

SECRET_KEYS = {'steam_api_key'}

# body field -> (setting key, accepted type, error message)
FIELD_RULES = {
    'webhookUrl': ('webhook_url', 'string', 'webhookUrl must be a string or null'),
    'steamApiKey': ('steam_api_key', 'string', 'steamApiKey must be a string or null'),
    'defaultPlayerElo': ('default_player_elo', 'number', 'defaultPlayerElo must be a number or null'),
    'simulateMatches': ('simulate_matches', 'boolean', 'simulateMatches must be a boolean or null'),
    'matchzyChatPrefix': ('matchzy_chat_prefix', 'string', 'matchzyChatPrefix must be a string or null'),
    'matchzyAdminChatPrefix': ('matchzy_admin_chat_prefix', 'string',
                               'matchzyAdminChatPrefix must be a string or null'),
    'matchzyKnifeEnabledDefault': ('matchzy_knife_enabled_default', 'boolean',
                                   'matchzyKnifeEnabledDefault must be a boolean or null'),
}

TRUTHY = {'1', 'true', 'yes', 'on', 'enabled'}


def _matches_type(value, kind: str) -> bool:
    if value is None:
        return True
    if kind == 'string':
        return isinstance(value, str)
    if kind == 'boolean':
        return isinstance(value, bool)
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize_url(url: str) -> str:
    return url.rstrip('/')


def validate_webhook_url(url: str):
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValidationError('Webhook URL must be a valid http(s) URL')


class SettingsService:
    def __init__(self, production: bool = False, fallback_elo: int = FALLBACK_PLAYER_ELO):
        self.production = production
        self.fallback_elo = fallback_elo

    def _raw(self, key: str) -> Optional[str]:
        if key not in ALLOWED_KEYS:
            raise ValidationError(f'Unknown setting: {key}')
        row = db.session.get(AppSetting, key)
        if row is None or row.value is None:
            return None
        if key in SECRET_KEYS:
            return decrypt_secret(row.value)
        return row.value

    def _store(self, key: str, value: Optional[str]):
        row = db.session.get(AppSetting, key)
        if row is None:
            row = AppSetting(key=key)
            db.session.add(row)
        if value is not None and key in SECRET_KEYS:
            value = encrypt_secret(value)
        row.value = value

    def _normalize(self, key: str, value) -> Optional[str]:
        """Convert a validated API value to its stored string form."""
        if value is None:
            return None
        if isinstance(value, bool):
            return '1' if value else '0'
        if isinstance(value, (int, float)):
            if value <= 0:
                raise ValidationError('Default player ELO must be a positive number')
            return str(round_half_up(value))

        trimmed = value.strip()
        if not trimmed:
            return None
        if key == 'webhook_url':
            validate_webhook_url(trimmed)
            return normalize_url(trimmed)
        if key == 'default_player_elo':
            try:
                parsed = float(trimmed)
            except ValueError:
                raise ValidationError('Default player ELO must be a positive number')
            return self._normalize(key, parsed)
        if key in ('simulate_matches', 'matchzy_knife_enabled_default'):
            return '1' if trimmed.lower() in TRUTHY else '0'
        return trimmed

    def set_setting(self, key: str, value):
        if key not in ALLOWED_KEYS:
            raise ValidationError(f'Unknown setting: {key}')
        self._store(key, self._normalize(key, value))
        db.session.commit()

    def update(self, body: dict) -> dict:
        """Validate every field, then write; a single bad field leaves storage untouched."""
        if not isinstance(body, dict):
            raise ValidationError('Request body must be a JSON object')

        pending = {}
        for field, (key, kind, message) in FIELD_RULES.items():
            if field not in body:
                continue
            value = body[field]
            if not _matches_type(value, kind):
                raise ValidationError(message)
            if field == 'simulateMatches' and self.production:
                logger.warning('Ignoring simulateMatches update in production')
                continue
            pending[key] = self._normalize(key, value)

        for key, value in pending.items():
            self._store(key, value)
            if key in SECRET_KEYS:
                logger.info(f"Setting {key} {'updated' if value else 'cleared'}")
            else:
                logger.info(f"Setting {key} set to {value!r}")
        db.session.commit()
        return self.to_dict()

    def get_webhook_url(self) -> Optional[str]:
        value = self._raw('webhook_url')
        return normalize_url(value) if value else None

    def get_steam_api_key(self) -> Optional[str]:
        value = self._raw('steam_api_key')
        return value.strip() if value else None

    def get_default_player_elo(self) -> int:
        value = self._raw('default_player_elo')
        try:
            parsed = float(value) if value is not None else 0
        except ValueError:
            parsed = 0
        return round_half_up(parsed) if parsed > 0 else self.fallback_elo

    def is_simulation_enabled(self) -> bool:
        if self.production:
            return False
        return self._raw('simulate_matches') == '1'

    def get_chat_prefix(self) -> Optional[str]:
        return self._raw('matchzy_chat_prefix')

    def get_admin_chat_prefix(self) -> Optional[str]:
        return self._raw('matchzy_admin_chat_prefix')

    def is_knife_enabled_by_default(self) -> bool:
        value = self._raw('matchzy_knife_enabled_default')
        if value is None:
            return True
        return value == '1'

    def to_dict(self) -> dict:
        webhook_url = self.get_webhook_url()
        steam_api_key = self.get_steam_api_key()
        return {
            'webhookUrl': webhook_url,
            'steamApiKey': steam_api_key,
            'steamApiKeySet': bool(steam_api_key),
            'webhookConfigured': bool(webhook_url),
            'defaultPlayerElo': self.get_default_player_elo(),
            'simulateMatches': self.is_simulation_enabled(),
            'matchzyChatPrefix': self.get_chat_prefix(),
            'matchzyAdminChatPrefix': self.get_admin_chat_prefix(),
            'matchzyKnifeEnabledDefault': self.is_knife_enabled_by_default(),
        }
