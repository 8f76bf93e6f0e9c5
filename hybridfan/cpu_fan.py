"""CPU zone fan level state machine

A modern CPU can heat up from 35°C to 60°C in a second or two, so the CPU
zone uses three discrete levels with hysteresis instead of a PID loop:

    temp >= high_temp                      -> HIGH
    temp >= med_temp                       -> MED
    low_temp < temp, coming from HIGH      -> MED (no jump from HIGH to LOW)
    temp <= low_temp                       -> LOW
    otherwise                              -> unchanged (dead zone)
"""

import logging

from .config import ControllerConfig
from .model import CpuFanLevel, is_valid_temperature

logger = logging.getLogger(__name__)


def decide_cpu_fan_level(
    cpu_temp,
    current_level: CpuFanLevel,
    override_active: bool,
    config: ControllerConfig,
) -> CpuFanLevel:
    """Decide the CPU zone fan level

    Args:
        cpu_temp: Max core temperature [°C], None or garbage when unreadable
        current_level: Level currently commanded
        override_active: Storage zone asked the CPU fans to help cool drives
        config: Thresholds

    Returns:
        The new level; equal to current_level when no rule fires
    """
    if override_active:
        if current_level is not CpuFanLevel.HIGH:
            logger.info("CPU fan set to high to help cool HDs")
        return CpuFanLevel.HIGH

    if not is_valid_temperature(cpu_temp):
        logger.warning("Unexpected CPU Temp (%r), assuming worst-case and going high", cpu_temp)
        return CpuFanLevel.HIGH

    temp = float(cpu_temp)
    if temp >= config.cpu_high_temp:
        new_level = CpuFanLevel.HIGH
    elif temp >= config.cpu_med_temp:
        new_level = CpuFanLevel.MED
    elif temp > config.cpu_low_temp and current_level in (CpuFanLevel.HIGH, CpuFanLevel.UNSET):
        new_level = CpuFanLevel.MED
    elif temp <= config.cpu_low_temp:
        new_level = CpuFanLevel.LOW
    else:
        new_level = current_level

    if new_level is not current_level:
        logger.info("CPU Temp: %.1f, CPU Fan going %s", temp, new_level.value)
    return new_level


def cpu_level_duty(level: CpuFanLevel, config: ControllerConfig) -> int:
    """Duty cycle for a CPU fan level, HIGH for anything unrecognized"""
    if level is CpuFanLevel.LOW:
        return config.cpu_duty_low
    if level is CpuFanLevel.MED:
        return config.cpu_duty_med
    return config.cpu_duty_high
