"""Map veto order."""
from scrimhub.models import SIDE_ALPHA, SIDE_BETA


def build_veto_order(map_count):
    # One ban per map until a single map is left, alpha first.
    return [SIDE_ALPHA if i % 2 == 0 else SIDE_BETA for i in range(max(0, int(map_count) - 1))]


def normalize_map_name(raw_name, map_pool):
    """Match a client-sent map name against the pool, ignoring case."""
    wanted = str(raw_name or '').strip().lower()
    if not wanted:
        return None
    return next((name for name in map_pool if name.lower() == wanted), None)
