"""
Unit tests for ServerRegistry class.
Tests: create_server, update_server, delete_server, try_assign, release, status_report
"""
import pytest
from cs2_orchestrator.errors import ValidationError, ConflictError, NotFoundError
from cs2_orchestrator.models import db, Server


@pytest.fixture
def servers(app, db_session):
    return app.servers


def server_data(**overrides):
    data = {'name': 'Frankfurt 1', 'host': '10.0.0.5', 'port': 27015, 'password': 'rcon-secret'}
    data.update(overrides)
    return data


class TestCreateServer:
    """Tests for create_server."""

    def test_create(self, servers):
        server = servers.create_server(server_data())
        assert server.id == 'frankfurt-1'
        assert server.enabled is True
        assert server.password == 'rcon-secret'
        assert server.password_encrypted != 'rcon-secret'

    def test_password_not_serialized(self, servers):
        data = servers.create_server(server_data()).to_dict()
        assert 'password' not in data
        assert 'password_encrypted' not in data

    def test_duplicate_address(self, servers):
        servers.create_server(server_data())
        with pytest.raises(ConflictError):
            servers.create_server(server_data(name='Frankfurt 2'))

    def test_duplicate_id(self, servers):
        servers.create_server(server_data())
        with pytest.raises(ConflictError):
            servers.create_server(server_data(port=27016))

    @pytest.mark.parametrize('overrides', [
        {'name': ''},
        {'host': None},
        {'port': 0},
        {'port': 70000},
        {'port': '27015'},
        {'password': 42},
    ])
    def test_invalid(self, servers, overrides):
        with pytest.raises(ValidationError):
            servers.create_server(server_data(**overrides))


class TestUpdateDelete:
    def test_update_fields(self, servers):
        servers.create_server(server_data())
        server = servers.update_server('frankfurt-1', {'name': 'FRA', 'enabled': False, 'port': 27020})
        assert (server.name, server.enabled, server.port) == ('FRA', False, 27020)

    def test_move_onto_taken_address(self, servers):
        servers.create_server(server_data())
        servers.create_server(server_data(name='Frankfurt 2', port=27016))
        with pytest.raises(ConflictError):
            servers.update_server('frankfurt-2', {'port': 27015})

    def test_missing(self, servers):
        with pytest.raises(NotFoundError):
            servers.get_server('nope')

    def test_busy_server_locked(self, servers, engine, started_bracket, make_server):
        server = make_server()
        engine.load_match(engine.get_match('r1m1'), server.id)
        with pytest.raises(ConflictError):
            servers.delete_server(server.id)
        with pytest.raises(ConflictError):
            servers.update_server(server.id, {'host': '10.9.9.9'})

    def test_delete(self, servers):
        servers.create_server(server_data())
        servers.delete_server('frankfurt-1')
        assert db.session.get(Server, 'frankfurt-1') is None


class TestAssignment:
    """Compare-and-set assignment of servers to matches."""

    def test_try_assign_once(self, servers, engine, started_bracket, make_server):
        server = make_server()
        first = engine.get_match('r1m1')
        second = engine.get_match('r1m2')
        assert servers.try_assign(server.id, first) is True
        assert servers.try_assign(server.id, second) is False
        assert first.server_id == server.id
        assert second.server_id is None

    def test_release_only_own_match(self, servers, engine, started_bracket, make_server):
        server = make_server()
        first = engine.get_match('r1m1')
        second = engine.get_match('r1m2')
        servers.try_assign(server.id, first)
        second.server_id = server.id
        servers.release(second)
        assert db.session.get(Server, server.id).current_match_id == first.id

    def test_free_servers(self, servers, engine, started_bracket, make_server):
        busy = make_server()
        idle = make_server()
        servers.try_assign(busy.id, engine.get_match('r1m1'))
        assert [s.id for s in servers.free_servers()] == [idle.id]


class TestStatus:
    def test_fake_server_online(self, servers, make_server):
        report = servers.status_report(make_server())
        assert report['status'] == 'online'
        assert report['currentMatch'] is None

    def test_unreachable_server_offline(self, servers, mocker, make_server):
        mocker.patch('socket.create_connection', side_effect=OSError('refused'))
        server = make_server(host='10.255.0.1')
        assert servers.check_status(server) == 'offline'
