"""Matchmaking routes: blueprint registration."""
from flask import Blueprint

queue_bp = Blueprint('queue', __name__)
match_bp = Blueprint('match', __name__)

# Route modules register their routes on the blueprints above.
# These imports MUST come after the blueprints are defined.
from scrimhub.routes.matchmaking import queue, ready, match, admin  # noqa: E402, F401
