"""Turn-taking for simulated participants.

Seeded lobbies are padded with simulated players whose steam ids carry a
configured prefix. The match engine asks this strategy at every turn
boundary whether the captain on the clock is automated and, if so, which
player to pick or map to ban. The ready coordinator uses it to auto-accept.
"""
import random


class SimulatedCaptainStrategy:
    def __init__(self, prefixes=(), rng=None):
        self.prefixes = tuple(p for p in (prefixes or ()) if p)
        self.rng = rng or random.Random()

    def is_automated(self, steam_id):
        if not steam_id or not self.prefixes:
            return False
        return str(steam_id).startswith(self.prefixes)

    def choose_pick(self, match, side):
        candidates = [p.steam_id for p in match.undrafted()]
        return self.rng.choice(candidates) if candidates else None

    def choose_ban(self, match, side):
        maps = match.available_maps
        if len(maps) <= 1:
            return None
        return self.rng.choice(maps)
