# backend/lib/ghost_core/health.py
from .models import Appearance, HealthSnapshot

NEUTRAL_HEALTH = 50

# (minimum health, appearance), checked top-down
APPEARANCE_BANDS = (
    (80, Appearance.VERY_HEALTHY),
    (60, Appearance.HEALTHY),
    (40, Appearance.NEUTRAL),
    (20, Appearance.BAD),
)


def compute_health(good: int, bad: int, alpha_milli: int) -> int:
    """
    Power-weighted share of good readings, as an integer percentage.

    health = floor(alpha * good * 100 / ((good + bad) * 1000)), clamped to
    [0, 100]. With no readings yet the ghost sits at the neutral prior of 50.
    """
    if good < 0 or bad < 0:
        raise ValueError("credits must be >= 0")
    total = good + bad
    if total == 0:
        return NEUTRAL_HEALTH
    health = (alpha_milli * good * 100) // (total * 1000)
    return min(100, max(0, health))


def get_appearance(health: int) -> Appearance:
    for minimum, appearance in APPEARANCE_BANDS:
        if health >= minimum:
            return appearance
    return Appearance.DEAD


def snapshot(good: int, bad: int, alpha_milli: int) -> HealthSnapshot:
    health = compute_health(good, bad, alpha_milli)
    return HealthSnapshot(health=health, appearance=get_appearance(health))
