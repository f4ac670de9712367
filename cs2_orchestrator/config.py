import os


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-prod')
    APP_ENV = os.getenv('APP_ENV', os.getenv('FLASK_ENV', 'development'))
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Database
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///cs2_orchestrator.db')
    SQLALCHEMY_DATABASE_URI = os.getenv('SQLALCHEMY_DATABASE_URI', DATABASE_URL)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Redis event fan-out
    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379')
    REDIS_ENABLED = _env_flag('REDIS_ENABLED', 'false')

    # Auth: admin API bearer token and MatchZy webhook token
    API_TOKEN = os.getenv('API_TOKEN') or None
    WEBHOOK_TOKEN = os.getenv('WEBHOOK_TOKEN') or None

    # Match and rating defaults
    DEFAULT_TEAM_SIZE = int(os.getenv('DEFAULT_TEAM_SIZE', '5'))
    EXPECTED_PLAYERS_TOTAL = int(os.getenv('EXPECTED_PLAYERS_TOTAL', '10'))
    DEFAULT_PLAYER_ELO = int(os.getenv('DEFAULT_PLAYER_ELO', '3000'))

    # Orchestration behaviour
    AUTO_ADVANCE_ROUNDS = _env_flag('AUTO_ADVANCE_ROUNDS', 'true')
    AUTO_ALLOCATE_SERVERS = _env_flag('AUTO_ALLOCATE_SERVERS', 'true')
    SERVER_STATUS_TIMEOUT = float(os.getenv('SERVER_STATUS_TIMEOUT', '2'))

    # Steam Web API
    STEAM_API_URL = os.getenv('STEAM_API_URL', 'https://api.steampowered.com')
    STEAM_API_TIMEOUT = int(os.getenv('STEAM_API_TIMEOUT', '10'))


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False
    APP_ENV = 'production'
    REDIS_ENABLED = _env_flag('REDIS_ENABLED', 'true')


class TestingConfig(Config):
    TESTING = True
    APP_ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    REDIS_ENABLED = False
    API_TOKEN = None
    WEBHOOK_TOKEN = None
    AUTO_ALLOCATE_SERVERS = False
    AUTO_ADVANCE_ROUNDS = True
    SERVER_STATUS_TIMEOUT = 0.2


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
