"""Cross-zone override coupling

CPU -> storage: when the CPU zone is HIGH and the CPU is hotter than
``cpu_hd_override_temp`` (or its temperature is unknown), the storage fans
are forced to full duty to move extra air through the case. The latch is
sticky: it only releases once the CPU zone leaves HIGH, at which point the
storage zone goes straight back to the PID-computed duty.

Storage -> CPU is decided by the PID controller (cpu_override_active) and
consumed by the CPU state machine.
"""

import logging
from enum import Enum

from .config import ControllerConfig
from .model import ControllerState, CpuFanLevel, FanZone, is_valid_temperature


class OverrideAction(Enum):
    """What the coordinator did to the storage zone this iteration"""

    NONE = "none"
    LATCHED = "latched"
    RELEASED = "released"


class OverrideCoordinator:
    """Applies the CPU-to-storage override to the storage zone"""

    def __init__(self, config: ControllerConfig, ipmi):
        self.config = config
        self.ipmi = ipmi
        self.logger = logging.getLogger(self.__class__.__name__)

    def update(self, state: ControllerState, cpu_temp, now: float) -> OverrideAction:
        """Latch or release the storage override for the current CPU level"""
        cfg = self.config

        if state.cpu_fan_level is CpuFanLevel.HIGH:
            hot = not is_valid_temperature(cpu_temp) or float(cpu_temp) >= cfg.cpu_hd_override_temp
            if cfg.hd_fans_cool_cpu and not state.storage_override_active and hot:
                state.storage_override_active = True
                self.logger.info(
                    "CPU Temp: %s >= %.0f, overriding HD fan zone to %d%%",
                    cpu_temp,
                    cfg.cpu_hd_override_temp,
                    cfg.hd_duty_high,
                )
                self.ipmi.set_fan_duty(cfg.zone_id(FanZone.STORAGE), cfg.hd_duty_high)
                state.touch(now)
                return OverrideAction.LATCHED
        elif state.storage_override_active:
            state.storage_override_active = False
            duty = state.storage_duty_command
            self.logger.info("Restoring HD fan zone to %d%%", duty)
            self.ipmi.set_fan_duty(cfg.zone_id(FanZone.STORAGE), duty)
            state.touch(now)
            return OverrideAction.RELEASED

        return OverrideAction.NONE

    def expected_storage_duty(self, state: ControllerState) -> int:
        """Duty the storage zone should currently be running at"""
        if state.storage_override_active:
            return self.config.hd_duty_high
        return state.storage_duty_command
