import os
import logging
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from shared.pubsub import PubSubClient, EventPublisher
from shared.state_machine import TransitionError
from .auth import login_manager
from .config import config
from .elo_calculator import EloCalculator
from .elo_templates import EloTemplateService
from .errors import OrchestratorError
from .map_pool_service import MapPoolService
from .match_engine import MatchEngine
from .match_events import MatchEventHandler
from .models import db
from .player_service import PlayerService
from .rating_service import RatingService
from .server_channel import RecordingChannel
from .server_registry import ServerRegistry
from .settings_service import SettingsService
from .team_service import TeamService
from .tournament_registry import TournamentRegistry

logger = logging.getLogger(__name__)


def create_app(config_name: str = None, channel=None, publisher: EventPublisher = None) -> Flask:
    """Application factory for the orchestrator service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    if not app.config.get('API_TOKEN'):
        app.config['LOGIN_DISABLED'] = True

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)

    # Create tables
    with app.app_context():
        db.create_all()

    init_services(app, channel=channel, publisher=publisher)
    register_error_handlers(app)
    register_blueprints(app)

    @app.route('/health')
    def health():
        redis_ok = app.publisher.client.ping() if app.publisher.enabled else None
        return jsonify({'status': 'healthy', 'service': 'cs2-orchestrator',
                        'pubsub': app.publisher.enabled, 'redis': redis_ok})

    if app.config.get('LOGIN_DISABLED'):
        logger.warning('API_TOKEN not set; admin API is unauthenticated')
    return app


def init_services(app: Flask, channel=None, publisher: EventPublisher = None):
    """Wire the services and store them on the app for access in routes."""
    cfg = app.config
    if publisher is None:
        client = PubSubClient(redis_url=cfg['REDIS_URL']) if cfg.get('REDIS_ENABLED') else None
        publisher = EventPublisher(client)

    settings = SettingsService(production=cfg.get('APP_ENV') == 'production',
                               fallback_elo=cfg['DEFAULT_PLAYER_ELO'])
    templates = EloTemplateService()
    channel = channel or RecordingChannel()
    servers = ServerRegistry(channel, status_timeout=cfg['SERVER_STATUS_TIMEOUT'])
    ratings = RatingService(EloCalculator(), templates,
                            default_elo=cfg['DEFAULT_PLAYER_ELO'], settings=settings)
    engine = MatchEngine(servers, ratings, channel, publisher=publisher, settings=settings,
                         webhook_token=cfg.get('WEBHOOK_TOKEN'))
    registry = TournamentRegistry(
        engine,
        templates=templates,
        publisher=publisher,
        expected_players=cfg['EXPECTED_PLAYERS_TOTAL'],
        default_team_size=cfg['DEFAULT_TEAM_SIZE'],
        auto_advance=cfg['AUTO_ADVANCE_ROUNDS'],
        auto_allocate=cfg['AUTO_ALLOCATE_SERVERS'],
    )
    engine.on_completed = registry.on_match_completed

    app.publisher = publisher
    app.settings_service = settings
    app.templates = templates
    app.channel = channel
    app.servers = servers
    app.ratings = ratings
    app.engine = engine
    app.registry = registry
    app.events = MatchEventHandler(engine)
    app.teams = TeamService()
    app.map_pools = MapPoolService()
    app.players = PlayerService(settings=settings, default_elo=cfg['DEFAULT_PLAYER_ELO'])

    with app.app_context():
        templates.ensure_default()
        app.map_pools.ensure_default()


def register_error_handlers(app: Flask):
    @app.errorhandler(OrchestratorError)
    def handle_orchestrator_error(e):
        db.session.rollback()
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e.message}")
        else:
            logger.info(f"Request rejected ({e.status_code}): {e.message}")
        return jsonify({'success': False, 'error': e.message}), e.status_code

    @app.errorhandler(TransitionError)
    def handle_transition_error(e):
        db.session.rollback()
        logger.info(f"Rejected transition {e.from_state} -> {e.to_state}: {e.reason}")
        return jsonify({'success': False, 'error': e.reason}), 409

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'success': False, 'error': e.description}), e.code


def register_blueprints(app: Flask):
    from .routes import settings, tournament, matches, events, servers, teams, players, map_pools, elo_templates

    for module in (settings, tournament, matches, events, servers, teams, players, map_pools, elo_templates):
        app.register_blueprint(module.bp)
