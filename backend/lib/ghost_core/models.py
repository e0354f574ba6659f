# backend/lib/ghost_core/models.py
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Appearance(str, Enum):
    VERY_HEALTHY = "VeryHealthy"
    HEALTHY = "Healthy"
    NEUTRAL = "Neutral"
    BAD = "Bad"
    DEAD = "Dead"


class GridState(str, Enum):
    CLEAN = "CLEAN"
    DIRTY = "DIRTY"


@dataclass(frozen=True)
class DeviceReading:
    device_id: Optional[str]
    device_address: str
    timestamp: str
    power_usage: int  # watts
    signature: str
    public_key: Optional[str]
    version: int = 2
    # hex sha256 of the canonical payload, only sent by version 1 devices
    digest: Optional[str] = None


@dataclass
class CreditState:
    good: int
    bad: int
    token_id: int
    health: int = 50
    alpha: int = 0
    power_mw: int = 0


@dataclass(frozen=True)
class HealthSnapshot:
    health: int
    appearance: Appearance


@dataclass(frozen=True)
class GridStatus:
    status: GridState
    carbon_intensity: float  # gCO2/kWh


@dataclass
class Ghost:
    token_id: int
    device_address: str
    owner: str
    health: int = 50
    appearance: str = Appearance.NEUTRAL.value
    good_credits: int = 0
    bad_credits: int = 0
    current_alpha: int = 0
    current_power_mw: int = 0
    last_update: int = 0
    hardware_id: str = ""


@dataclass(frozen=True)
class LifetimeStats:
    total_rewards: int = 0
    total_penalties: int = 0

    @property
    def net_change(self) -> int:
        return self.total_rewards - self.total_penalties


@dataclass(frozen=True)
class ReadingResult:
    health: int
    old_health: int
    appearance: Appearance
    good_credits: int
    bad_credits: int
    alpha: int
    power_mw: float
    grid: GridStatus
    transaction_hash: str
    game_logic_hash: str
    deposit: Optional[int]
    integration_triggered: Optional[bool]
