import os

basedir = os.path.abspath(os.path.dirname(__file__))

DEFAULT_MAP_POOL = (
    'Dust II', 'Mirage', 'Inferno', 'Nuke', 'Overpass', 'Vertigo',
    'Ancient', 'Cache', 'Cobblestone', 'Anubis', 'Train', 'Aztec',
)


def _env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {'1', 'true', 'yes', 'on'}


def _env_int(name, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _env_list(name, default=()):
    raw = os.environ.get(name)
    if raw is None:
        return list(default)
    return [item.strip() for item in str(raw).split(',') if item.strip()]


def _normalize_database_url(raw_url):
    if not raw_url:
        return raw_url
    if raw_url.startswith('postgres://'):
        return raw_url.replace('postgres://', 'postgresql://', 1)
    return raw_url


class BaseConfig:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-prod')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_EXPIRATION_HOURS = _env_int('JWT_EXPIRATION_HOURS', 24 * 14)
    ADMIN_STEAM_IDS = os.environ.get('ADMIN_STEAM_IDS', '')
    ALLOW_DEV_LOGIN = _env_bool('ALLOW_DEV_LOGIN', False)
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '*')
    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'threading')

    # Matchmaking
    QUEUE_SIZE = _env_int('QUEUE_SIZE', 10)
    QUEUE_TTL_SECONDS = _env_int('QUEUE_TTL_SECONDS', 3600)
    ACCEPT_TIMEOUT_SECONDS = _env_int('ACCEPT_TIMEOUT_SECONDS', 20)
    PICK_TIMEOUT_SECONDS = _env_int('PICK_TIMEOUT_SECONDS', 60)
    BAN_TIMEOUT_SECONDS = _env_int('BAN_TIMEOUT_SECONDS', 30)
    ENFORCE_TURN_TIMEOUTS = _env_bool('ENFORCE_TURN_TIMEOUTS', True)
    SKIP_ACCEPT_PHASE = _env_bool('SKIP_ACCEPT_PHASE', False)
    MATCH_FIRST_ACCEPT = _env_bool('MATCH_FIRST_ACCEPT', False)
    MAP_POOL = _env_list('MAP_POOL', DEFAULT_MAP_POOL)
    MIN_TRUST_SCORE = _env_int('MIN_TRUST_SCORE', 50)
    AUTOMATED_PLAYER_PREFIXES = _env_list('AUTOMATED_PLAYER_PREFIXES', ('SIM_PLAYER_', 'test-'))
    QUEUE_ACTION_RATE_LIMIT = _env_int('QUEUE_ACTION_RATE_LIMIT', 20)
    QUEUE_ACTION_RATE_WINDOW_SECONDS = _env_int('QUEUE_ACTION_RATE_WINDOW_SECONDS', 10)
    DEADLINE_SCHEDULER = os.environ.get('DEADLINE_SCHEDULER', 'thread')
    RECONCILE_ON_START = _env_bool('RECONCILE_ON_START', True)
    RANDOM_SEED = _env_int('RANDOM_SEED', None)

    # Game server provisioning
    PROVISIONER = os.environ.get('PROVISIONER', 'null')
    SERVER_IP = os.environ.get('SERVER_IP', '')
    SERVER_PORT = _env_int('SERVER_PORT', 27015)
    SERVER_PASSWORD = os.environ.get('SERVER_PASSWORD', '')
    DATHOST_API_URL = os.environ.get('DATHOST_API_URL', 'https://dathost.net/api/0.1')
    DATHOST_EMAIL = os.environ.get('DATHOST_EMAIL', '')
    DATHOST_PASSWORD = os.environ.get('DATHOST_PASSWORD', '')
    DATHOST_SERVER_ID = os.environ.get('DATHOST_SERVER_ID', '')
    DATHOST_BOOT_ATTEMPTS = _env_int('DATHOST_BOOT_ATTEMPTS', 20)
    DATHOST_POLL_SECONDS = _env_int('DATHOST_POLL_SECONDS', 2)
    DATHOST_TIMEOUT_SECONDS = _env_int('DATHOST_TIMEOUT_SECONDS', 15)


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    ALLOW_DEV_LOGIN = _env_bool('ALLOW_DEV_LOGIN', True)
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(
        os.environ.get(
            'DATABASE_URL',
            'sqlite:///' + os.path.join(basedir, '..', 'scrimhub_dev.db')
        )
    )


class TestingConfig(BaseConfig):
    TESTING = True
    ALLOW_DEV_LOGIN = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    DEADLINE_SCHEDULER = 'manual'
    PROVISIONER = 'null'
    SKIP_ACCEPT_PHASE = False
    MATCH_FIRST_ACCEPT = False
    ENFORCE_TURN_TIMEOUTS = True
    QUEUE_SIZE = 10
    ACCEPT_TIMEOUT_SECONDS = 20
    MAP_POOL = list(DEFAULT_MAP_POOL)
    AUTOMATED_PLAYER_PREFIXES = ['SIM_PLAYER_']
    QUEUE_ACTION_RATE_LIMIT = 1000
    RECONCILE_ON_START = False


class ProductionConfig(BaseConfig):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(os.environ.get('DATABASE_URL'))


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}
