"""
Pytest configuration and fixtures for orchestrator tests.
"""
import os
import sys
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'

from cs2_orchestrator.app import create_app
from cs2_orchestrator.models import db, Team, TeamMember, Player, Server, Match


def steam_id(n: int) -> str:
    """Deterministic 17-digit Steam64 id."""
    return f"7656119800000{n:04d}"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing."""
    with app.app_context():
        # Clear all tables before each test
        db.session.remove()

        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        app.templates.ensure_default()
        app.channel.loaded.clear()
        app.channel.commands.clear()

        yield db.session

        db.session.rollback()


@pytest.fixture
def registry(app, db_session):
    return app.registry


@pytest.fixture
def engine(app, db_session):
    return app.engine


@pytest.fixture
def make_team(app, db_session):
    """Factory creating a persistent team with a full roster."""
    counter = {'player': 0}

    def _make(team_id: str, size: int = 5, name: str = None):
        team = Team(id=team_id, name=name or team_id.replace('-', ' ').title())
        for position in range(size):
            counter['player'] += 1
            team.members.append(TeamMember(
                position=position,
                steam_id=steam_id(1000 + counter['player']),
                name=f"{team_id}-p{position + 1}",
            ))
        db.session.add(team)
        db.session.commit()
        return team

    return _make


@pytest.fixture
def sample_teams(make_team):
    """Four bracket teams."""
    return [make_team(f'team-{i}') for i in range(1, 5)]


@pytest.fixture
def make_players(app, db_session):
    """Factory creating registered-to-be players with given ratings."""
    def _make(count: int, elo: int = 3000, start: int = 1):
        players = []
        for n in range(start, start + count):
            rating = elo(n) if callable(elo) else elo
            player = Player(id=steam_id(n), name=f'Player {n}', current_elo=rating, starting_elo=rating)
            db.session.add(player)
            players.append(player)
        db.session.commit()
        return players

    return _make


@pytest.fixture
def make_server(app, db_session):
    """Factory creating an enabled fake server (always reachable)."""
    counter = {'n': 0}

    def _make(server_id: str = None, host: str = '0.0.0.0'):
        counter['n'] += 1
        server = Server(id=server_id or f"server-{counter['n']}", name=f"Server {counter['n']}",
                        host=host, port=27014 + counter['n'], enabled=True)
        db.session.add(server)
        db.session.commit()
        return server

    return _make


@pytest.fixture
def started_bracket(registry, sample_teams):
    """A started 4-team single elimination tournament."""
    registry.create_tournament({
        'name': 'Cup',
        'type': 'single_elimination',
        'format': 'bo1',
        'maps': ['de_mirage'],
        'teamIds': [t.id for t in sample_teams],
    })
    registry.start()
    return registry.require_tournament()


def live_match(engine, match: Match, server_id: str) -> Match:
    """Load a ready match and bring it live through connect and going-live reports."""
    engine.load_match(match, server_id)
    for member in match.team1.members + match.team2.members:
        engine.player_connected(match, member.steam_id)
    engine.warmup_ended(match)
    db.session.commit()
    return match


@pytest.fixture
def mock_publisher(app, mocker):
    """Record published events instead of sending them to Redis."""
    return mocker.patch.object(app.publisher, 'publish')
