"""Data types shared by the control loop components."""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class CpuFanLevel(Enum):
    """Discrete CPU zone fan level"""

    UNSET = "unset"
    LOW = "low"
    MED = "med"
    HIGH = "high"


class FanZone(Enum):
    """The two independently addressable fan zones"""

    CPU = "cpu"
    STORAGE = "storage"


class FanMode(Enum):
    """Supermicro IPMI fan modes, valued by their raw command code"""

    STANDARD = 0
    FULL = 1
    OPTIMAL = 2
    HEAVY_IO = 4

    @property
    def label(self) -> str:
        """Short name used in the PID log table"""
        return {
            FanMode.STANDARD: "Std",
            FanMode.FULL: "Full",
            FanMode.OPTIMAL: "Opt",
            FanMode.HEAVY_IO: "Hvy",
        }[self]


class PIDBranch(Enum):
    """Which branch of the storage controller produced a duty cycle"""

    PID = "pid"
    SAFETY = "safety"  # a drive reached the max allowed temperature
    INVALID = "invalid"  # no usable drive temperature


class VerifyOutcome(Enum):
    """Result of one verification cycle"""

    IDLE = "idle"  # still waiting out the dwell after a change
    CONFIRMED = "confirmed"
    UNREADABLE = "unreadable"
    MISMATCHED = "mismatched"


def is_valid_temperature(temp) -> bool:
    """True for a usable temperature reading.

    Sensor faults surface as None, zero, negative values or garbage
    strings; all of them count as invalid.
    """
    if temp is None or isinstance(temp, bool):
        return False
    try:
        value = float(temp)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0


def round_half_up(value: float) -> int:
    """Round a duty cycle the way the fan commands expect it"""
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class TemperatureSample:
    """CPU and storage temperatures captured in one polling cycle"""

    cpu_max: Optional[float]  # °C, None when unreadable
    hd_min: Optional[float]  # °C, None when there are no drive readings
    hd_max: Optional[float]
    hd_avg: Optional[float]
    hd_readings: Tuple[float, ...] = ()

    @property
    def storage_valid(self) -> bool:
        """Whether the storage aggregates can drive the PID loop"""
        return bool(self.hd_readings) and self.hd_max is not None and self.hd_max >= 0


@dataclass
class ControllerState:
    """Mutable state owned by the control loop

    Created once at process start and never persisted.
    """

    storage_duty: float  # persisted float duty, see round_half_up
    cpu_fan_level: CpuFanLevel = CpuFanLevel.UNSET

    # PID memory
    integral: float = 0.0
    previous_error: float = 0.0

    # Cross-zone overrides
    storage_override_active: bool = False
    cpu_override_active: bool = False

    # Verification bookkeeping, monotonic seconds
    last_change_time: float = 0.0
    unreadable_since: Optional[float] = None
    consecutive_verify_failures: int = 0

    # Loop bookkeeping
    last_storage_poll: Optional[float] = None
    last_cpu_temp: Optional[float] = None
    storage_devices: List[str] = field(default_factory=list)

    @property
    def storage_duty_command(self) -> int:
        """Integer duty actually sent to the storage zone by the PID loop"""
        return round_half_up(self.storage_duty)

    def touch(self, now: float):
        """Record a commanded fan change so verification waits for it"""
        self.last_change_time = now


@dataclass(frozen=True)
class PIDResult:
    """Output of one storage controller step"""

    duty: int
    duty_float: float
    branch: PIDBranch
    error: Optional[float] = None
    p: float = 0.0
    i: float = 0.0
    d: float = 0.0


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of one verification cycle

    Speed flags are None when the speed was unreadable or not checked.
    """

    outcome: VerifyOutcome
    cpu_speed_ok: Optional[bool] = None
    storage_speed_ok: Optional[bool] = None
    cpu_rpm: Optional[int] = None
    storage_rpm: Optional[int] = None
    bmc_reset: bool = False


@dataclass(frozen=True)
class StorageCycleRecord:
    """One row of the PID log, written every storage polling cycle"""

    device_count: int
    hd_min: Optional[float]
    hd_max: Optional[float]
    hd_avg: Optional[float]
    hd_readings: Tuple[float, ...]
    error: Optional[float]  # average temperature minus target
    fan_mode: Optional[FanMode]
    fan_rpm_avg: Optional[float]
    old_duty: int
    new_duty: int
    cpu_temp: Optional[float]
    p: float
    i: float
    d: float
    duty_float: float
