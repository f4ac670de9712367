"""
Unit tests for the Steam Web API client.
"""
import pytest
import requests
from cs2_orchestrator.errors import ValidationError, NotFoundError, ExternalServiceError
from cs2_orchestrator.steam import SteamClient, is_steam64

STEAM_ID = '76561197960287930'


def response(mocker, payload):
    resp = mocker.Mock()
    resp.json.return_value = {'response': payload}
    resp.raise_for_status.return_value = None
    return resp


@pytest.fixture
def client():
    return SteamClient('test-key', base_url='https://steam.test/')


class TestResolve:
    def test_is_steam64(self):
        assert is_steam64(STEAM_ID)
        assert not is_steam64('7656119796028793')
        assert not is_steam64(76561197960287930)

    def test_plain_id_needs_no_request(self, client, mocker):
        get = mocker.patch('cs2_orchestrator.steam.requests.get')
        assert client.resolve(f' {STEAM_ID} ') == STEAM_ID
        get.assert_not_called()

    def test_profiles_url(self, client):
        assert client.resolve(f'https://steamcommunity.com/profiles/{STEAM_ID}/') == STEAM_ID

    def test_vanity_url(self, client, mocker):
        get = mocker.patch('cs2_orchestrator.steam.requests.get',
                           return_value=response(mocker, {'success': 1, 'steamid': STEAM_ID}))
        assert client.resolve('https://steamcommunity.com/id/gabelogannewell') == STEAM_ID
        url = get.call_args.args[0]
        assert url == 'https://steam.test/ISteamUser/ResolveVanityURL/v1/'
        assert get.call_args.kwargs['params'] == {'key': 'test-key', 'vanityurl': 'gabelogannewell'}

    def test_unknown_vanity(self, client, mocker):
        mocker.patch('cs2_orchestrator.steam.requests.get',
                     return_value=response(mocker, {'success': 42}))
        with pytest.raises(NotFoundError):
            client.resolve('nobody-here')

    def test_empty_query(self, client):
        with pytest.raises(ValidationError):
            client.resolve('  ')


class TestLookup:
    """Tests for lookup and request failures."""

    def test_summary(self, client, mocker):
        mocker.patch('cs2_orchestrator.steam.requests.get', return_value=response(mocker, {
            'players': [{'steamid': STEAM_ID, 'personaname': 'Rabscuttle',
                         'avatarfull': 'https://avatars.test/full.jpg',
                         'profileurl': 'https://steamcommunity.com/id/gabelogannewell/'}],
        }))
        summary = client.lookup(STEAM_ID)
        assert summary == {
            'steamId': STEAM_ID,
            'name': 'Rabscuttle',
            'avatar': 'https://avatars.test/full.jpg',
            'profileUrl': 'https://steamcommunity.com/id/gabelogannewell/',
        }

    def test_no_players(self, client, mocker):
        mocker.patch('cs2_orchestrator.steam.requests.get', return_value=response(mocker, {'players': []}))
        with pytest.raises(NotFoundError):
            client.lookup(STEAM_ID)

    def test_network_error(self, client, mocker):
        mocker.patch('cs2_orchestrator.steam.requests.get',
                     side_effect=requests.exceptions.ConnectionError('boom'))
        with pytest.raises(ExternalServiceError):
            client.lookup(STEAM_ID)

    def test_missing_key(self, mocker):
        get = mocker.patch('cs2_orchestrator.steam.requests.get')
        with pytest.raises(ValidationError):
            SteamClient(None).lookup(STEAM_ID)
        get.assert_not_called()
