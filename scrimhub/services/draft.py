"""Captain draft: pick order and remainder assignment."""
from scrimhub.models import SIDE_ALPHA, SIDE_BETA


def build_pick_order(player_count=10):
    """Sides on the clock for each pick of a two-captain draft.

    Alpha picks twice, beta picks twice, then single alternating picks. For
    ten players that is ``A, A, B, B, A, B, A, B``.
    """
    picks = max(0, int(player_count) - 2)
    if picks < 4:
        return [SIDE_ALPHA if i % 2 == 0 else SIDE_BETA for i in range(picks)]

    order = [SIDE_ALPHA, SIDE_ALPHA, SIDE_BETA, SIDE_BETA]
    while len(order) < picks:
        order.append(SIDE_ALPHA if (len(order) - 4) % 2 == 0 else SIDE_BETA)
    return order


def remainder_side(alpha_size, beta_size):
    """Side that receives a leftover undrafted player (ties go to beta)."""
    return SIDE_ALPHA if alpha_size < beta_size else SIDE_BETA
