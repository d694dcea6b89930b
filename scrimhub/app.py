from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_socketio import SocketIO
from flask_cors import CORS
from scrimhub.config import config

db = SQLAlchemy()
socketio = SocketIO()


def _parse_allowed_origins(raw_origins):
    if not raw_origins:
        return '*'

    if isinstance(raw_origins, (list, tuple, set)):
        cleaned = [origin for origin in raw_origins if origin]
        return cleaned or '*'

    raw_text = str(raw_origins).strip()
    if not raw_text or raw_text == '*':
        return '*'

    origins = [origin.strip() for origin in raw_text.split(',') if origin.strip()]
    return origins or '*'


def _register_error_handlers(app):
    from scrimhub.errors import MatchmakingError

    @app.errorhandler(MatchmakingError)
    def _matchmaking_error(err):
        if err.status_code >= 500:
            app.logger.error('Matchmaking invariant broken: %s', err.message)
        return jsonify(err.to_dict()), err.status_code


def create_app(config_name='development'):
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    allowed_origins = _parse_allowed_origins(app.config.get('CORS_ALLOWED_ORIGINS', '*'))
    if str(config_name).strip().lower() == 'production':
        secret_key = str(app.config.get('SECRET_KEY') or '').strip()
        if not secret_key or secret_key == 'dev-secret-key-change-in-prod':
            raise RuntimeError('SECRET_KEY must be set to a non-default value in production')
        if not app.config.get('SQLALCHEMY_DATABASE_URI'):
            raise RuntimeError('DATABASE_URL must be set in production')

    db.init_app(app)
    socketio.init_app(
        app,
        cors_allowed_origins=allowed_origins,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'threading'),
    )
    CORS(app, resources={r'/api/*': {'origins': allowed_origins}})
    _register_error_handlers(app)

    from scrimhub.routes.auth import auth_bp
    from scrimhub.routes.matchmaking import queue_bp, match_bp
    from scrimhub.routes import sockets  # noqa: F401

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(queue_bp, url_prefix='/api/queue')
    app.register_blueprint(match_bp, url_prefix='/api/match')

    @app.route('/api/health')
    def health():
        return jsonify({'status': 'ok'})

    from scrimhub.services.hub import MatchmakingHub
    hub = MatchmakingHub(app, socketio)
    app.extensions['scrimhub'] = hub

    with app.app_context():
        from scrimhub import models  # noqa: F401
        db.create_all()
        if app.config.get('RECONCILE_ON_START'):
            summary = hub.reconciler.reconcile()
            app.logger.info('Startup reconcile: %s', summary)

    return app
