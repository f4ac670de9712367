"""
Unit tests for SettingsService.
Tests: update validation, normalization, production guard, defaults
"""
import pytest
from cs2_orchestrator.errors import ValidationError
from cs2_orchestrator.models import db, AppSetting
from cs2_orchestrator.settings_service import SettingsService, FALLBACK_PLAYER_ELO


@pytest.fixture
def settings(app, db_session):
    return SettingsService()


class TestDefaults:
    def test_empty_settings(self, settings):
        data = settings.to_dict()
        assert data['webhookUrl'] is None
        assert data['steamApiKeySet'] is False
        assert data['defaultPlayerElo'] == FALLBACK_PLAYER_ELO
        assert data['simulateMatches'] is False
        assert data['matchzyKnifeEnabledDefault'] is True

    def test_custom_fallback(self, app, db_session):
        assert SettingsService(fallback_elo=2500).get_default_player_elo() == 2500


class TestUpdate:
    """Tests for update."""

    def test_elo_rounded_and_stored_as_string(self, settings):
        """A fractional ELO is rounded before it is stored."""
        data = settings.update({'defaultPlayerElo': 3250.7})
        assert data['defaultPlayerElo'] == 3251
        assert db.session.get(AppSetting, 'default_player_elo').value == '3251'

    def test_elo_half_rounds_up(self, settings):
        assert settings.update({'defaultPlayerElo': 3250.5})['defaultPlayerElo'] == 3251
        assert settings.update({'defaultPlayerElo': '2999.5'})['defaultPlayerElo'] == 3000

    def test_non_positive_elo_rejected(self, settings):
        with pytest.raises(ValidationError):
            settings.update({'defaultPlayerElo': 0})

    def test_wrong_type_leaves_storage_untouched(self, settings):
        """One bad field rejects the whole update."""
        settings.update({'matchzyChatPrefix': '[Cup]'})
        with pytest.raises(ValidationError) as exc:
            settings.update({'matchzyChatPrefix': '[Other]', 'webhookUrl': 123})
        assert exc.value.message == 'webhookUrl must be a string or null'
        db.session.rollback()
        assert settings.get_chat_prefix() == '[Cup]'

    def test_webhook_url_trailing_slash_trimmed(self, settings):
        data = settings.update({'webhookUrl': ' https://hooks.example.com/cs2/ '})
        assert data['webhookUrl'] == 'https://hooks.example.com/cs2'
        assert data['webhookConfigured'] is True

    def test_invalid_webhook_url(self, settings):
        with pytest.raises(ValidationError):
            settings.update({'webhookUrl': 'ftp://example.com'})

    def test_null_clears_value(self, settings):
        settings.update({'matchzyChatPrefix': '[Cup]'})
        assert settings.update({'matchzyChatPrefix': None})['matchzyChatPrefix'] is None

    def test_blank_string_clears_value(self, settings):
        settings.update({'matchzyAdminChatPrefix': '[Admin]'})
        assert settings.update({'matchzyAdminChatPrefix': '   '})['matchzyAdminChatPrefix'] is None

    def test_steam_key_encrypted_at_rest(self, settings):
        settings.update({'steamApiKey': 'ABC123'})
        assert db.session.get(AppSetting, 'steam_api_key').value != 'ABC123'
        assert settings.get_steam_api_key() == 'ABC123'
        assert settings.to_dict()['steamApiKeySet'] is True

    def test_boolean_settings(self, settings):
        data = settings.update({'simulateMatches': True, 'matchzyKnifeEnabledDefault': False})
        assert data['simulateMatches'] is True
        assert data['matchzyKnifeEnabledDefault'] is False

    def test_boolean_type_enforced(self, settings):
        with pytest.raises(ValidationError):
            settings.update({'simulateMatches': 'yes'})

    def test_body_must_be_object(self, settings):
        with pytest.raises(ValidationError):
            settings.update(['webhookUrl'])


class TestProduction:
    """Simulation can never be switched on in production."""

    def test_simulate_update_ignored(self, app, db_session):
        settings = SettingsService(production=True)
        settings.update({'simulateMatches': True})
        assert db.session.get(AppSetting, 'simulate_matches') is None
        assert settings.is_simulation_enabled() is False

    def test_stored_flag_ignored(self, app, db_session):
        SettingsService().update({'simulateMatches': True})
        assert SettingsService(production=True).is_simulation_enabled() is False


class TestSetSetting:
    def test_unknown_key(self, settings):
        with pytest.raises(ValidationError):
            settings.set_setting('motd', 'hello')

    def test_string_elo_parsed(self, settings):
        settings.set_setting('default_player_elo', '2800.4')
        assert settings.get_default_player_elo() == 2800

    def test_garbage_stored_elo_falls_back(self, settings):
        db.session.add(AppSetting(key='default_player_elo', value='abc'))
        db.session.commit()
        assert settings.get_default_player_elo() == FALLBACK_PLAYER_ELO
