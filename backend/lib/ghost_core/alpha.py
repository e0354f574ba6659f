# backend/lib/ghost_core/alpha.py
"""
Power-tier weighting ("alpha") derived from a device's power draw.

Alpha is kept as an integer scaled by 1000 (200 == 0.2, 1000 == 1.0) so the
health formula stays in exact integer arithmetic.
"""

# (exclusive upper bound in watts, alpha * 1000)
ALPHA_TIERS = (
    (5_000_000, 200),     # small data centre, < 5 MW
    (12_500_000, 400),    # medium, 5 - 12.5 MW
    (20_000_000, 600),    # large, 12.5 - 20 MW
    (60_000_000, 800),    # huge, 20 - 60 MW
)
MAX_ALPHA = 1000          # mega, 60 - 100 MW; anything above 100 MW clamps here
ALPHA_VALUES = frozenset([alpha for _, alpha in ALPHA_TIERS] + [MAX_ALPHA])


def classify(power_watts: int) -> int:
    """
    Map a power draw in watts to its alpha tier.

    Each tier includes its lower bound: classify(5_000_000) == 400 and
    classify(4_999_999) == 200. Readings above 100 MW are treated as the
    top tier rather than rejected.
    """
    if power_watts < 0:
        raise ValueError("power_watts must be >= 0")
    for upper_bound, alpha in ALPHA_TIERS:
        if power_watts < upper_bound:
            return alpha
    return MAX_ALPHA
