"""Container owning the matchmaking services and their collaborators.

One instance lives in ``app.extensions['scrimhub']``. Services reach their
collaborators through it, so tests can swap the notifier, provisioner,
clock or random source on a live app.
"""
import random

from flask import current_app

from scrimhub.services.automation import SimulatedCaptainStrategy
from scrimhub.services.locks import LockRegistry
from scrimhub.services.match_engine import MatchEngine
from scrimhub.services.notifier import SocketNotifier
from scrimhub.services.provisioning import build_provisioner
from scrimhub.services.queue_manager import QueueManager
from scrimhub.services.rate_limiter import SlidingWindowRateLimiter
from scrimhub.services.ready_coordinator import ReadyCoordinator
from scrimhub.services.reconcile import Reconciler
from scrimhub.services.scheduler import ManualScheduler, ThreadScheduler
from scrimhub.time_utils import utcnow_naive


class MatchmakingHub:
    def __init__(self, app, socketio):
        self.app = app
        self.config = app.config
        self.clock = utcnow_naive
        self.rng = random.Random(app.config.get('RANDOM_SEED'))
        self.locks = LockRegistry()
        self.notifier = SocketNotifier(socketio)
        self.provisioner = build_provisioner(app.config)
        self.automation = SimulatedCaptainStrategy(
            app.config.get('AUTOMATED_PLAYER_PREFIXES', ()), self.rng,
        )
        self.rate_limiter = SlidingWindowRateLimiter(
            app.config.get('QUEUE_ACTION_RATE_LIMIT', 0),
            app.config.get('QUEUE_ACTION_RATE_WINDOW_SECONDS', 0),
        )
        if str(app.config.get('DEADLINE_SCHEDULER', 'thread')).lower() == 'manual':
            self.scheduler = ManualScheduler(self.now)
        else:
            self.scheduler = ThreadScheduler(app)

        self.queue = QueueManager(self)
        self.ready = ReadyCoordinator(self)
        self.matches = MatchEngine(self)
        self.reconciler = Reconciler(self)

    def now(self):
        return self.clock()

    def setting(self, name, default=None):
        return self.config.get(name, default)

    @property
    def logger(self):
        return self.app.logger


def get_hub():
    return current_app.extensions['scrimhub']
