"""Reward curve: converts elapsed-vs-learned pace into points."""

from __future__ import annotations

import math

P_MAX = 12
PEAK_RATIO = 0.93
MIN_RATIO = 0.60
SIGMA_FAST = 0.18
SIGMA_SLOW = 0.28


def reward_score(elapsed_ms: float, avg_ms: float) -> float:
    """Unrounded curve value in [0, 1].

    An asymmetric bell curve in log-ratio space, peaking at 93% of the learned
    average. Anything faster than 60% of the average scores nothing, and the
    fast side falls off more steeply than the slow side.
    """
    if avg_ms <= 0:
        return 0.0
    ratio = elapsed_ms / avg_ms
    if ratio < MIN_RATIO:
        return 0.0
    dx = math.log(ratio) - math.log(PEAK_RATIO)
    sigma = SIGMA_FAST if ratio <= PEAK_RATIO else SIGMA_SLOW
    return math.exp(-(dx * dx) / (2 * sigma * sigma))


def calculate_points(elapsed_ms: float, avg_ms: float) -> int:
    # Halves round up.
    return int(math.floor(P_MAX * reward_score(elapsed_ms, avg_ms) + 0.5))


def points_message(points: int, ratio: float) -> str:
    if points == 0:
        if ratio < MIN_RATIO:
            return "No points - too fast to count"
        return "No points - timer likely forgotten"
    if 0.90 <= ratio <= 1.00:
        return f"+{points} points - right on pace"
    if ratio < 0.90:
        return f"+{points} points - ahead of schedule"
    if ratio <= 1.15:
        return f"+{points} points - a bit over average"
    return f"+{points} points - ran long"
