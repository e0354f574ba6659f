# backend/lib/ghost_core/units.py
from decimal import Decimal, ROUND_DOWN

WEI_PER_ETHER = 10 ** 18


def power_mw(power_watts: int) -> float:
    """
    Watts -> megawatts, truncated (not rounded) to 2 decimals.
    e.g. 70_129_999 W -> 70.12
    """
    mw = Decimal(power_watts) / Decimal(1_000_000)
    return float(mw.quantize(Decimal('0.01'), rounding=ROUND_DOWN))


def format_ether(wei: int) -> str:
    """
    Render an integer wei amount as a decimal ether string.
    Always keeps at least one fractional digit: 10**18 -> '1.0'
    """
    value = Decimal(wei) / Decimal(WEI_PER_ETHER)
    text = format(value.normalize(), 'f')
    if '.' not in text:
        text += '.0'
    return text


def parse_ether(text: str) -> int:
    """'1.5' -> 1500000000000000000"""
    value = Decimal(str(text)) * WEI_PER_ETHER
    if value < 0:
        raise ValueError("amount must be >= 0")
    return int(value.to_integral_value(rounding=ROUND_DOWN))
