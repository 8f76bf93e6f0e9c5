"""Fan speed verification and BMC recovery

After every commanded change the verifier waits ``fan_speed_change_delay``
seconds, then reads back one header per zone and checks that high zones
are spinning fast and low zones slow. Medium CPU levels and intermediate
storage duties are not checked.

    unreadable speed  -> retry until bmc_reboot_grace_time, then reset the BMC
    wrong speed       -> re-send FULL mode and both duties, up to
                         bmc_fail_threshold times, then reset the BMC
    all good          -> wait verify_steady_interval before the next check

A BMC reset returns fan control to an unknown default, so it is always
followed by re-asserting FULL mode and both zone duties.
"""

import logging
from typing import Optional

from .config import ControllerConfig
from .cpu_fan import cpu_level_duty
from .model import (
    ControllerState,
    CpuFanLevel,
    FanMode,
    FanZone,
    VerificationResult,
    VerifyOutcome,
)


class FanVerifier:
    """Confirms commanded fan states are physically realized"""

    def __init__(self, config: ControllerConfig, ipmi):
        self.config = config
        self.ipmi = ipmi
        self.logger = logging.getLogger(self.__class__.__name__)

    def check_cpu_speed(self, level: CpuFanLevel, rpm: int) -> Optional[bool]:
        """Whether the CPU zone speed matches its level, None if not checked"""
        reference = self.config.cpu_reference_speed
        if level is CpuFanLevel.HIGH:
            if rpm < reference:
                self.logger.warning("CPU fan speed should be high, but %d < %.0f", rpm, reference)
                return False
            return True
        if level is CpuFanLevel.LOW:
            if rpm > reference:
                self.logger.warning("CPU fan speed should be low, but %d > %.0f", rpm, reference)
                return False
            return True
        return None

    def check_storage_speed(self, duty: int, rpm: int) -> Optional[bool]:
        """Whether the storage zone speed matches its duty, None if not checked"""
        cfg = self.config
        reference = cfg.hd_reference_speed
        if duty >= cfg.hd_duty_high:
            if rpm < reference:
                self.logger.warning("HD fan speed should be high, but %d < %.0f", rpm, reference)
                return False
            return True
        if duty <= cfg.hd_duty_low:
            if rpm > reference:
                self.logger.warning("HD fan speed should be low, but %d > %.0f", rpm, reference)
                return False
            return True
        return None

    def verify(self, state: ControllerState, storage_duty: int, now: float) -> VerificationResult:
        """Run one verification cycle

        Args:
            state: Controller state holding the timers and failure counter
            storage_duty: Duty the storage zone should be running at
            now: Monotonic time [s]
        """
        cfg = self.config
        if now - state.last_change_time <= cfg.fan_speed_change_delay:
            return VerificationResult(VerifyOutcome.IDLE)

        extra_delay = 0.0
        cpu_rpm = self.ipmi.read_fan_speed(cfg.cpu_fan_header)
        hd_rpm = self.ipmi.read_fan_speed(cfg.hd_fan_header)

        if cpu_rpm is None or hd_rpm is None:
            result = self._unreadable(state, cpu_rpm, hd_rpm, storage_duty, now)
        else:
            # Both speeds were read, so the BMC is responding
            state.unreadable_since = None
            cpu_ok = self.check_cpu_speed(state.cpu_fan_level, cpu_rpm)
            hd_ok = self.check_storage_speed(storage_duty, hd_rpm)

            if cpu_ok is False or hd_ok is False:
                reset = self._mismatched(state, storage_duty)
                result = VerificationResult(
                    VerifyOutcome.MISMATCHED, cpu_ok, hd_ok, cpu_rpm, hd_rpm, bmc_reset=reset
                )
            else:
                self.logger.debug("Verified fan levels, CPU: %d, HD: %d. All good.", cpu_rpm, hd_rpm)
                state.consecutive_verify_failures = 0
                extra_delay = cfg.verify_steady_interval - cfg.fan_speed_change_delay
                result = VerificationResult(VerifyOutcome.CONFIRMED, cpu_ok, hd_ok, cpu_rpm, hd_rpm)

        state.last_change_time = now + extra_delay
        return result

    def _unreadable(self, state, cpu_rpm, hd_rpm, storage_duty, now) -> VerificationResult:
        cfg = self.config
        if state.unreadable_since is None:
            state.unreadable_since = now

        # Still report on the zone that could be read
        cpu_ok = None if cpu_rpm is None else self.check_cpu_speed(state.cpu_fan_level, cpu_rpm)
        hd_ok = None if hd_rpm is None else self.check_storage_speed(storage_duty, hd_rpm)

        unreadable_for = now - state.unreadable_since
        reset = False
        if unreadable_for > cfg.bmc_reboot_grace_time:
            self.logger.critical(
                "Fan speeds are unreadable after %.0f seconds, rebooting BMC", cfg.bmc_reboot_grace_time
            )
            self.reset_and_reassert(state, storage_duty)
            state.unreadable_since = None
            reset = True
        else:
            self.logger.info("Fan speeds are unreadable after %.0f seconds, will try again", unreadable_for)

        return VerificationResult(
            VerifyOutcome.UNREADABLE,
            cpu_speed_ok=cpu_ok,
            storage_speed_ok=hd_ok,
            cpu_rpm=cpu_rpm,
            storage_rpm=hd_rpm,
            bmc_reset=reset,
        )

    def _mismatched(self, state: ControllerState, storage_duty: int) -> bool:
        cfg = self.config
        state.consecutive_verify_failures += 1

        if state.consecutive_verify_failures <= cfg.bmc_fail_threshold:
            self.logger.warning("Fan speeds are not where they should be, will try again")
            self.reassert(state, storage_duty)
            return False

        self.logger.critical(
            "Fan speeds are still not where they should be after %d attempts, will reboot BMC",
            state.consecutive_verify_failures,
        )
        self.reset_and_reassert(state, storage_duty)
        state.consecutive_verify_failures = 0
        return True

    def reassert(self, state: ControllerState, storage_duty: int):
        """Put the BMC back in FULL mode and re-send both zone duties"""
        cfg = self.config
        self.ipmi.set_fan_mode(FanMode.FULL)
        if state.cpu_fan_level is not CpuFanLevel.UNSET:
            self.ipmi.set_fan_duty(cfg.zone_id(FanZone.CPU), cpu_level_duty(state.cpu_fan_level, cfg))
        self.ipmi.set_fan_duty(cfg.zone_id(FanZone.STORAGE), storage_duty)

    def reset_and_reassert(self, state: ControllerState, storage_duty: int):
        """Cold reset the BMC, then take manual control of the fans again"""
        self.ipmi.reset_bmc()
        self.reassert(state, storage_duty)
